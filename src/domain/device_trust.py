"""Device Trust Controller - Licensing and access gating.

This module owns the device identity and decides whether the device may use
its offline datasets. Access rests on three pieces of state:

    Unregistered -> Registered (awaiting key) -> Validated -> Expired

Registration and validation go through the remote validation service. Expiry
is reached only through time: each dataset carries its own TTL, and the
device counts as expired only when *every* dataset is expired, so one fresh
dataset keeps the device usable.

Security Impact:
    - Access fails closed: missing state or an unreachable service means "not valid"
    - Keys and passwords are never logged
    - Every remote call is attempted exactly once; nothing retries

Architecture:
    - Pure domain logic over three ports (service, state store, platform)
    - All outcomes are returned as Result objects; nothing here raises to the caller
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union

from src.domain.license_clock import add_days, excel_day_number, is_past
from src.domain.ports import (
    ConnectivityError,
    DevicePlatformPort,
    PreconditionError,
    RemoteError,
    Result,
    StaleStateError,
    StateStorePort,
    ValidationServicePort,
)
from src.domain.records import Dataset, DeviceIdentity, ValidationPayload

logger = logging.getLogger(__name__)

# Persisted state keys
KEY_INSTITUTION_CODE = "cod_ips"
KEY_DEVICE_ID = "device_id"
KEY_REGISTRATION_KEY = "generated_key"
KEY_BACKEND_DEVICE_ID = "id_device_backend"
KEY_VALIDATION_PAYLOAD = "device_validation"
KEY_VALIDATION_KEY = "device_key"
KEY_VALIDATED = "device_validated"
KEY_PHONE_NUMBER = "phone_number"

DATE_SAVED_FORMAT = "%d/%m/%Y"

# today, yesterday, two days ago
TOKEN_WINDOW_DAYS = 3

ACCEPTED_SOURCE_SUFFIX = ".csv"

NO_CONNECTIVITY_MESSAGE = "No internet connection, check your network and try again."
DEFAULT_INSTITUTION_NAME = "Usuario"


def dataset_key(tag: str, name: str) -> str:
    return f"dataset.{tag}.{name}"


class DeviceState(str, Enum):
    """Licensing state of the device."""
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    VALIDATED = "validated"
    EXPIRED = "expired"


class DeviceTrustController:
    """State machine gating all data access on one device.

    Example Usage:
        ```python
        controller = DeviceTrustController(service, state_store, platform)
        result = controller.register("IPS001")
        if result.is_success():
            controller.validate(key_from_provider)
        if controller.state == DeviceState.VALIDATED:
            ...
        ```
    """

    def __init__(
        self,
        service: ValidationServicePort,
        state_store: StateStorePort,
        platform: DevicePlatformPort,
        dataset_tags: Sequence[str] = ("rocky", "sigires"),
        now_fn: Callable[[], datetime] = datetime.now
    ):
        """Initialize controller.

        Parameters:
            service: Remote validation service
            state_store: Persisted device state (reloaded at startup by the store)
            platform: Device id, name and connectivity probes
            dataset_tags: Datasets that participate in the expiry policy
            now_fn: Wall clock
        """
        self.service = service
        self.state_store = state_store
        self.platform = platform
        self.dataset_tags = tuple(dataset_tags)
        self.now_fn = now_fn

    # ------------------------------------------------------------------
    # Identity and state
    # ------------------------------------------------------------------

    def identity(self) -> DeviceIdentity:
        """Current device identity as stored."""
        payload_data = self.state_store.get(KEY_VALIDATION_PAYLOAD)
        payload = ValidationPayload.model_validate(payload_data) if isinstance(payload_data, dict) else None
        return DeviceIdentity(
            institution_code=self.state_store.get(KEY_INSTITUTION_CODE),
            device_id=self.state_store.get(KEY_DEVICE_ID),
            registration_key=self.state_store.get(KEY_REGISTRATION_KEY),
            backend_device_id=self.state_store.get(KEY_BACKEND_DEVICE_ID),
            validation_payload=payload,
            validation_key=self.state_store.get(KEY_VALIDATION_KEY),
            phone_number=self.state_store.get(KEY_PHONE_NUMBER),
            validated=bool(self.state_store.get(KEY_VALIDATED, False)),
        )

    @property
    def state(self) -> DeviceState:
        identity = self.identity()
        if not identity.is_registered():
            return DeviceState.UNREGISTERED
        if not identity.validated or identity.validation_payload is None:
            return DeviceState.REGISTERED
        # A device that never loaded a dataset has nothing to expire yet
        if self._has_any_expiry() and self.is_expired():
            return DeviceState.EXPIRED
        return DeviceState.VALIDATED

    # ------------------------------------------------------------------
    # Registration and validation
    # ------------------------------------------------------------------

    def register(self, institution_code: str) -> Result[str]:
        """Register this device for an institution.

        Requires connectivity (checked first, no retry). On success stores the
        institution code, device id and server-issued registration key, and
        drops any previous validation.

        Returns:
            Result[str]: The registration key
        """
        code = (institution_code or "").strip()
        if not code:
            return Result.failure_result(PreconditionError("Institution code is required"))

        if not self.platform.has_connectivity():
            return Result.failure_result(ConnectivityError(NO_CONNECTIVITY_MESSAGE))

        device_id = self.platform.device_id()
        device_name = self.platform.device_name()

        try:
            data = self.service.register_device(device_name, device_id, code)
        except RemoteError as e:
            logger.info(f"Registration rejected for institution {code}: HTTP {e.status_code}")
            return Result.failure_result(e)

        registration_key = str(data.get("clave") or "")
        self.state_store.set(KEY_INSTITUTION_CODE, code)
        self.state_store.set(KEY_DEVICE_ID, device_id)
        self.state_store.set(KEY_REGISTRATION_KEY, registration_key)
        backend_id = data.get("id_device")
        self.state_store.set(KEY_BACKEND_DEVICE_ID, None if backend_id is None else str(backend_id))
        for key in (KEY_VALIDATION_PAYLOAD, KEY_VALIDATION_KEY, KEY_PHONE_NUMBER):
            self.state_store.delete(key)
        self.state_store.set(KEY_VALIDATED, False)

        logger.info(f"Device registered for institution {code}")
        return Result.success_result(registration_key)

    def validate(self, key: str) -> Result[ValidationPayload]:
        """Validate a key obtained from the provider.

        Requires a registered device. On success the full response payload is
        stored verbatim, the key is cached for later re-confirmation and the
        optional phone number is stored separately.

        Returns:
            Result[ValidationPayload]: Parsed view of the stored payload
        """
        identity = self.identity()
        if not identity.is_registered():
            return Result.failure_result(PreconditionError("Device data not found; register the device first"))

        candidate = (key or "").strip()
        if not candidate:
            return Result.failure_result(PreconditionError("Validation key is required"))

        try:
            data = self.service.validate_device_key(identity.institution_code, identity.device_id, candidate)
        except RemoteError as e:
            logger.info(f"Key validation rejected: HTTP {e.status_code}")
            return Result.failure_result(e)

        self.state_store.set(KEY_VALIDATION_PAYLOAD, data)
        self.state_store.set(KEY_VALIDATION_KEY, candidate)
        self.state_store.set(KEY_VALIDATED, True)
        if data.get("phone_number") is not None:
            self.state_store.set(KEY_PHONE_NUMBER, str(data["phone_number"]))

        logger.info("Device validated")
        return Result.success_result(ValidationPayload.model_validate(data))

    def login(self, password: str) -> Result[str]:
        """Check a typed password against the stored validation payload.

        Returns:
            Result[str]: Institution display name on success
        """
        typed = (password or "").strip()
        if not typed:
            return Result.failure_result(PreconditionError("Password is required"))

        payload = self.identity().validation_payload
        if payload is None:
            return Result.failure_result(PreconditionError("No validation data stored on this device"))

        if payload.password != typed:
            return Result.failure_result("Incorrect password", error_type="AuthenticationError")

        return Result.success_result(payload.name_ips or DEFAULT_INSTITUTION_NAME)

    def check_validity_remote(self) -> bool:
        """Re-confirm the stored key with the service.

        Fails closed: missing key, an unreachable service or any answer other
        than is_valid == "true" means not valid.
        """
        identity = self.identity()
        if not identity.device_id or not identity.validation_key:
            logger.info("Validity check skipped: device has no stored key")
            return False

        try:
            data = self.service.check_key_validity(identity.device_id, identity.validation_key)
        except RemoteError as e:
            logger.info(f"Validity check failed: {e}")
            return False

        is_valid = str(data.get("is_valid")).strip().lower() == "true"
        if not is_valid:
            logger.info(f"Stored key no longer valid: {data.get('mensaje', 'no reason given')}")
        return is_valid

    # ------------------------------------------------------------------
    # Rolling token window
    # ------------------------------------------------------------------

    def _institution_code(self, institution_code: Optional[str]) -> Optional[str]:
        code = institution_code if institution_code is not None else self.state_store.get(KEY_INSTITUTION_CODE)
        return code.strip() if code else None

    @staticmethod
    def token_input(institution_code: str, day: datetime) -> str:
        return f"{institution_code}-{excel_day_number(day)}"

    def current_token(self, institution_code: Optional[str] = None) -> Result[str]:
        """Hash token for today."""
        code = self._institution_code(institution_code)
        if not code:
            return Result.failure_result(PreconditionError("Register the institution code first"))
        try:
            return Result.success_result(self.service.compute_hash(self.token_input(code, self.now_fn())))
        except RemoteError as e:
            return Result.failure_result(e)

    def rolling_token_window(self, institution_code: Optional[str] = None) -> Result[List[str]]:
        """Tokens for today, yesterday and two days ago.

        A day whose hash request fails is left out of the window. The call
        fails only when no token at all could be obtained.

        Parameters:
            institution_code: Code to hash (default: the registered one)

        Returns:
            Result[List[str]]: Tokens, newest first
        """
        code = self._institution_code(institution_code)
        if not code:
            return Result.failure_result(PreconditionError("Register the institution code first"))

        today = self.now_fn()
        tokens: List[str] = []
        last_error: Optional[RemoteError] = None
        for offset in range(TOKEN_WINDOW_DAYS):
            try:
                tokens.append(self.service.compute_hash(self.token_input(code, today - timedelta(days=offset))))
            except RemoteError as e:
                logger.warning(f"Token for day -{offset} unavailable: {e}")
                last_error = e

        if not tokens:
            return Result.failure_result(last_error or RemoteError("No tokens available"))
        return Result.success_result(tokens)

    @staticmethod
    def accept_source_file(filename: Union[str, Path], tokens: Iterable[str]) -> Result[str]:
        """Check a distributed file name against the token window.

        The file must have a .csv extension and its stem must equal one of
        the tokens, case-insensitively.
        """
        path = Path(filename)
        if path.suffix.lower() != ACCEPTED_SOURCE_SUFFIX:
            return Result.failure_result(PreconditionError("The file must have a .csv extension"))

        stem = path.stem.strip().lower()
        if any(stem == token.strip().lower() for token in tokens):
            return Result.success_result(path.name)
        return Result.failure_result(
            "The file name is not valid for the current date",
            error_type="FileNameMismatch",
            error_details={"filename": path.name}
        )

    # ------------------------------------------------------------------
    # Dataset expiry
    # ------------------------------------------------------------------

    def dataset_expiry(self, ttl_days: int) -> datetime:
        """now + ttl_days."""
        return add_days(ttl_days, self.now_fn())

    def record_dataset_load(self, dataset: Dataset, ttl_days: int) -> datetime:
        """Stamp a freshly loaded dataset with its expiry and persist the load event."""
        now = self.now_fn()
        expires_at = self.dataset_expiry(ttl_days)
        dataset.expires_at = expires_at
        self.state_store.set(dataset_key(dataset.tag, "expiration_date"), expires_at.isoformat())
        self.state_store.set(dataset_key(dataset.tag, "date_saved"), now.strftime(DATE_SAVED_FORMAT))
        if dataset.backing_path is not None:
            self.state_store.set(dataset_key(dataset.tag, "backing_path"), str(dataset.backing_path))
        logger.info(f"Dataset '{dataset.tag}' valid until {expires_at:%Y-%m-%d %H:%M}")
        return expires_at

    def dataset_expires_at(self, tag: str) -> Optional[datetime]:
        value = self.state_store.get(dataset_key(tag, "expiration_date"))
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            logger.warning(f"Stored expiry for dataset '{tag}' is unreadable")
            return None

    def backing_path(self, tag: str) -> Optional[Path]:
        value = self.state_store.get(dataset_key(tag, "backing_path"))
        return Path(value) if value else None

    def last_loaded(self, tag: str) -> Optional[str]:
        """Human-readable "dataset last loaded" date (dd/mm/yyyy)."""
        return self.state_store.get(dataset_key(tag, "date_saved"))

    def days_since_loaded(self, tag: str) -> Optional[int]:
        value = self.last_loaded(tag)
        if not value:
            return None
        try:
            loaded = datetime.strptime(value, DATE_SAVED_FORMAT)
        except ValueError:
            return None
        return (self.now_fn().date() - loaded.date()).days

    def _has_any_expiry(self) -> bool:
        return any(self.dataset_expires_at(tag) is not None for tag in self.dataset_tags)

    def is_expired(self, dataset_tag: Optional[str] = None) -> bool:
        """Expiry check.

        With a tag: whether that dataset's expiry has passed (no stored
        expiry counts as expired). Without a tag: the device-wide answer,
        True only when every dataset is expired.
        """
        if dataset_tag is not None:
            expires_at = self.dataset_expires_at(dataset_tag)
            if expires_at is None:
                return True
            return is_past(expires_at, self.now_fn())
        return all(self.is_expired(tag) for tag in self.dataset_tags)

    def expiry_status(self) -> Dict[str, bool]:
        return {tag: self.is_expired(tag) for tag in self.dataset_tags}

    def check_expiry(self) -> Result[List[str]]:
        """Policy signal for callers.

        Returns:
            Result[List[str]]: Success with the list of individually stale
            datasets while the device is usable; failure with StaleStateError
            when every dataset is expired.
        """
        stale = [tag for tag, expired in self.expiry_status().items() if expired]
        if len(stale) == len(self.dataset_tags):
            return Result.failure_result(StaleStateError("All datasets have expired", tags=stale))
        return Result.success_result(stale)
