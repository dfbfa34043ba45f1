"""Shared fixtures for the lookup core tests."""

import hashlib
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest

from src.adapters.record_store import RecordStore
from src.adapters.state.device_state_store import InMemoryStateStore
from src.domain.device_trust import DeviceTrustController
from src.domain.ports import DevicePlatformPort, RemoteError, ValidationServicePort
from src.domain.records import VARIANT_A, VARIANT_B, Dataset

FIXED_NOW = datetime(2024, 3, 15, 10, 30)


class FakeValidationService(ValidationServicePort):
    """In-process stand-in for the remote validation service.

    Hashes with MD5 like the real service; failures are injected per method.
    """

    def __init__(self):
        self.calls: List[tuple] = []
        self.registration_response: Dict[str, Any] = {"clave": "REG-KEY-1", "id_device": 77}
        self.validation_response: Dict[str, Any] = {
            "password": "s3cret",
            "name_ips": "IPS San Rafael",
            "name_municipality": "Tunja",
            "name_department": "Boyacá",
            "phone_number": 3001234567,
            "mensaje": "Validación exitosa",
        }
        self.validity_response: Dict[str, Any] = {"is_valid": True}
        self.errors: Dict[str, RemoteError] = {}
        self.failing_hash_inputs: set = set()

    def _maybe_fail(self, name: str) -> None:
        if name in self.errors:
            raise self.errors[name]

    def register_device(self, device_name: str, device_id: str, institution_code: str) -> Dict[str, Any]:
        self.calls.append(("register_device", device_name, device_id, institution_code))
        self._maybe_fail("register_device")
        return dict(self.registration_response)

    def validate_device_key(self, institution_code: str, device_id: str, key: str) -> Dict[str, Any]:
        self.calls.append(("validate_device_key", institution_code, device_id, key))
        self._maybe_fail("validate_device_key")
        return dict(self.validation_response)

    def check_key_validity(self, device_id: str, key: str) -> Dict[str, Any]:
        self.calls.append(("check_key_validity", device_id, key))
        self._maybe_fail("check_key_validity")
        return dict(self.validity_response)

    def compute_hash(self, data: str) -> str:
        self.calls.append(("compute_hash", data))
        self._maybe_fail("compute_hash")
        if data in self.failing_hash_inputs:
            raise RemoteError("Hash service unavailable")
        return hashlib.md5(data.encode("utf-8")).hexdigest()

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


class FakePlatform(DevicePlatformPort):
    def __init__(self, online: bool = True):
        self.online = online

    def device_id(self) -> str:
        return "device-abc-123"

    def device_name(self) -> str:
        return "Samsung Galaxy Tab A"

    def has_connectivity(self) -> bool:
        return self.online


class MutableClock:
    """Callable clock that tests can move."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def service() -> FakeValidationService:
    return FakeValidationService()


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def state_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def controller(service, state_store, platform, clock) -> DeviceTrustController:
    return DeviceTrustController(service, state_store, platform, now_fn=clock)


@pytest.fixture
def validated_controller(controller) -> DeviceTrustController:
    assert controller.register("IPS001").is_success()
    assert controller.validate("VALID-KEY").is_success()
    return controller


@pytest.fixture
def store(clock) -> RecordStore:
    return RecordStore(now_fn=clock)


@pytest.fixture
def rocky() -> Dataset:
    return Dataset(tag="rocky", schema=VARIANT_A)


@pytest.fixture
def sigires() -> Dataset:
    return Dataset(tag="sigires", schema=VARIANT_B)


@pytest.fixture
def write_file(tmp_path):
    """Write text (or bytes) to a file under tmp_path and return its path."""

    def _write(name: str, content, encoding: Optional[str] = "utf-8"):
        path = tmp_path / name
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_bytes(content.encode(encoding))
        return path

    return _write


SIGIRES_HEADER = (
    "TIPO_ID;NUMERO_ID;PRIMER_APELLIDO;SEGUNDO_APELLIDO;PRIMER_NOMBRE;SEGUNDO_NOMBRE;"
    "FECHA_NACIMIENTO;SEXO;EDAD;TELEFONO;REGIMEN;Control de Placa Bacteriana;"
    "Control Recién Nacido;Consulta de Crecimiento y Desarrollo Primera vez;"
    "Consulta de Joven Primera vez;Consulta de Adulto Primera vez;EXTRA_COLUMN"
)

SIGIRES_ROW = (
    "CC;1020304050;Pérez;Gómez;Ana;María;1990-05-01;F;33;3001112233;Subsidiado;"
    "Pendiente;No aplica;No aplica;No aplica;Pendiente;ignored"
)


@pytest.fixture
def sigires_text() -> str:
    return f"{SIGIRES_HEADER}\n{SIGIRES_ROW}\n"
