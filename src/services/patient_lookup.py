"""Patient lookup across both datasets.

The two datasets are fully independent; this service is the query boundary
where they meet. A lookup returns whatever each dataset knows about the id,
plus the institution metadata of the validated device.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from src.adapters.record_store import RecordStore
from src.domain.device_trust import DeviceTrustController
from src.domain.ports import NotFoundError, PreconditionError, Result
from src.domain.records import Dataset, Record, SigiresPatient

logger = logging.getLogger(__name__)

MISSING_VALUE = "N/A"


def safe_value(record: Optional[Mapping[str, Any]], key: str) -> str:
    """Display value for a field: "N/A" when the record, field or value is missing/blank."""
    if record is None:
        return MISSING_VALUE
    value = record.get(key)
    if value is None:
        return MISSING_VALUE
    text = str(value).strip()
    return text or MISSING_VALUE


@dataclass
class PatientMatch:
    """Result of a lookup: one optional record per dataset."""

    patient_id: str
    rocky: Optional[Record] = None
    sigires: Optional[Record] = None
    institution: Dict[str, str] = field(default_factory=dict)

    def found(self) -> bool:
        return self.rocky is not None or self.sigires is not None

    def sigires_patient(self) -> Optional[SigiresPatient]:
        return SigiresPatient.from_record(self.sigires) if self.sigires is not None else None


class PatientLookupService:
    """Join lookups across the Variant A and Variant B datasets.

    Example Usage:
        ```python
        lookup = PatientLookupService(store, controller, rocky=rocky, sigires=sigires)
        result = lookup.lookup("1020304050")
        if result.is_success():
            match = result.value
        ```
    """

    def __init__(
        self,
        store: RecordStore,
        controller: DeviceTrustController,
        rocky: Optional[Dataset] = None,
        sigires: Optional[Dataset] = None
    ):
        self.store = store
        self.controller = controller
        self.rocky = rocky
        self.sigires = sigires

    def _find(self, dataset: Optional[Dataset], patient_id: str) -> Optional[Record]:
        if dataset is None or not dataset.is_loaded():
            return None
        return self.store.find_by_key(dataset, patient_id)

    def lookup(self, patient_id: str) -> Result[PatientMatch]:
        """Find a patient in both datasets.

        Stale datasets are still searched: the caller decides what to do with
        the expiry signal (see DeviceTrustController.check_expiry()).

        Returns:
            Result[PatientMatch]: Failure with NotFoundError when neither
            dataset has the id
        """
        wanted = (patient_id or "").strip()
        if not wanted:
            return Result.failure_result(PreconditionError("Patient id is required"))

        match = PatientMatch(
            patient_id=wanted,
            rocky=self._find(self.rocky, wanted),
            sigires=self._find(self.sigires, wanted),
        )
        if not match.found():
            return Result.failure_result(NotFoundError(f"Patient {wanted} not found", source=wanted))

        payload = self.controller.identity().validation_payload
        if payload is not None:
            match.institution = payload.institution_metadata()

        logger.debug(
            f"Lookup: rocky={'hit' if match.rocky else 'miss'}, "
            f"sigires={'hit' if match.sigires else 'miss'}"
        )
        return Result.success_result(match)
