"""Wiring of the lookup core from configuration.

Builds the datasets, record store, trust controller and services once per
process, the way the CLI (or any other front end) needs them.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from src.adapters.platform import HostPlatform
from src.adapters.record_store import RecordStore
from src.adapters.remote.validation_client import ValidationClient
from src.adapters.state.device_state_store import DeviceStateStore
from src.domain.device_trust import DeviceTrustController
from src.domain.ports import DevicePlatformPort, StateStorePort, ValidationServicePort
from src.domain.records import VARIANT_A, VARIANT_B, Dataset, DatasetSchema
from src.infrastructure.config_manager import AppConfig
from src.infrastructure.encryption.encryption_service import EncryptionService
from src.services.dataset_import import DatasetImportService
from src.services.patient_lookup import PatientLookupService

logger = logging.getLogger(__name__)

ROCKY = "rocky"
SIGIRES = "sigires"

DATASET_SCHEMAS: Dict[str, DatasetSchema] = {
    ROCKY: VARIANT_A,
    SIGIRES: VARIANT_B,
}


@dataclass
class LookupApp:
    """Everything a front end needs, built from one AppConfig."""

    config: AppConfig
    store: RecordStore
    controller: DeviceTrustController
    datasets: Dict[str, Dataset]
    importer: DatasetImportService
    lookup: PatientLookupService

    def dataset(self, tag: str) -> Dataset:
        if tag not in self.datasets:
            raise ValueError(f"Unknown dataset tag: {tag}. Known: {', '.join(self.datasets)}")
        return self.datasets[tag]

    def restore_datasets(self) -> Dict[str, bool]:
        """Reload every previously imported dataset from its backing file."""
        restored = {}
        for tag, dataset in self.datasets.items():
            if self.controller.backing_path(tag) is None:
                restored[tag] = False
                continue
            restored[tag] = self.importer.restore(dataset).is_success()
        return restored


def build_app(
    config: AppConfig,
    service: Optional[ValidationServicePort] = None,
    state_store: Optional[StateStorePort] = None,
    platform: Optional[DevicePlatformPort] = None
) -> LookupApp:
    """Create the lookup core from configuration.

    Parameters:
        config: Application configuration
        service: Override for the remote validation service
        state_store: Override for the persisted device state
        platform: Override for platform probes
    """
    if state_store is None:
        encryption = None
        if config.storage.encryption_key is not None:
            encryption = EncryptionService(key=config.storage.encryption_key.get_secret_value().encode("utf-8"))
        state_store = DeviceStateStore(config.storage.state_path, encryption=encryption)

    store = RecordStore()
    controller = DeviceTrustController(
        service=service or ValidationClient(config.service),
        state_store=state_store,
        platform=platform or HostPlatform(),
        dataset_tags=tuple(DATASET_SCHEMAS),
    )
    datasets = {
        tag: Dataset(tag=tag, schema=schema, backing_path=config.storage.backing_path(tag))
        for tag, schema in DATASET_SCHEMAS.items()
    }
    return LookupApp(
        config=config,
        store=store,
        controller=controller,
        datasets=datasets,
        importer=DatasetImportService(store, controller),
        lookup=PatientLookupService(store, controller, rocky=datasets[ROCKY], sigires=datasets[SIGIRES]),
    )
