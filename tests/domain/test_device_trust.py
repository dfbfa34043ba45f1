"""Unit tests for the device trust controller.

Tests cover:
- Registration and validation state transitions
- Local precondition failures (no network involved)
- Remote failures surfaced with the server message
- Rolling token window and file name acceptance
- Per-dataset expiry and the "every dataset must be expired" device policy

Security Impact:
    - Access must fail closed when the service cannot confirm the key
    - A single fresh dataset keeps the device usable
"""

import hashlib
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from src.domain.device_trust import (
    KEY_BACKEND_DEVICE_ID,
    KEY_DEVICE_ID,
    KEY_INSTITUTION_CODE,
    KEY_PHONE_NUMBER,
    KEY_REGISTRATION_KEY,
    KEY_VALIDATED,
    KEY_VALIDATION_KEY,
    KEY_VALIDATION_PAYLOAD,
    DeviceState,
    DeviceTrustController,
    dataset_key,
)
from src.domain.license_clock import excel_day_number
from src.domain.ports import RemoteError
from src.domain.records import VARIANT_A, Dataset


def md5(text):
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def set_expiry(state_store, tag, when):
    state_store.set(dataset_key(tag, "expiration_date"), when.isoformat())


class TestRegister:
    """Test device registration."""

    def test_initial_state(self, controller):
        assert controller.state == DeviceState.UNREGISTERED
        assert not controller.identity().is_registered()

    def test_register_success(self, controller, service, state_store):
        result = controller.register(" IPS001 ")

        assert result.is_success()
        assert result.value == "REG-KEY-1"
        assert controller.state == DeviceState.REGISTERED
        assert state_store.get(KEY_INSTITUTION_CODE) == "IPS001"
        assert state_store.get(KEY_DEVICE_ID) == "device-abc-123"
        assert state_store.get(KEY_REGISTRATION_KEY) == "REG-KEY-1"
        assert state_store.get(KEY_BACKEND_DEVICE_ID) == "77"
        assert service.calls == [("register_device", "Samsung Galaxy Tab A", "device-abc-123", "IPS001")]

    def test_backend_device_id_omitted(self, controller, service, state_store):
        service.registration_response = {"clave": "REG-KEY-1"}

        assert controller.register("IPS001").is_success()

        assert state_store.get(KEY_BACKEND_DEVICE_ID) is None
        assert controller.identity().backend_device_id is None

    def test_empty_code(self, controller, service):
        result = controller.register("   ")
        assert result.is_failure()
        assert result.error_type == "PreconditionError"
        assert service.calls == []

    def test_no_connectivity_short_circuits(self, controller, service, platform):
        platform.online = False

        result = controller.register("IPS001")

        assert result.is_failure()
        assert result.error_type == "ConnectivityError"
        assert service.calls == []
        assert controller.state == DeviceState.UNREGISTERED

    def test_server_rejection(self, controller, service, state_store):
        """The server message is surfaced verbatim and state is unchanged."""
        service.errors["register_device"] = RemoteError(
            "Código IPS no existe", status_code=404, server_message="Código IPS no existe"
        )

        result = controller.register("IPS999")

        assert result.is_failure()
        assert result.error == "Código IPS no existe"
        assert result.error_type == "RemoteError"
        assert result.error_details["status_code"] == 404
        assert controller.state == DeviceState.UNREGISTERED
        assert state_store.get(KEY_INSTITUTION_CODE) is None

    def test_reregistration_drops_validation(self, validated_controller, state_store):
        assert validated_controller.state == DeviceState.VALIDATED

        validated_controller.register("IPS002")

        assert validated_controller.state == DeviceState.REGISTERED
        assert state_store.get(KEY_VALIDATION_PAYLOAD) is None
        assert state_store.get(KEY_VALIDATION_KEY) is None
        assert state_store.get(KEY_VALIDATED) is False


class TestValidate:
    """Test key validation."""

    def test_validate_before_register(self, controller, service):
        """Missing registration is a local precondition failure."""
        result = controller.validate("KEY")

        assert result.is_failure()
        assert result.error_type == "PreconditionError"
        assert "validate_device_key" not in service.call_names()

    def test_empty_key(self, controller, service):
        controller.register("IPS001")
        result = controller.validate("  ")
        assert result.error_type == "PreconditionError"
        assert "validate_device_key" not in service.call_names()

    def test_validate_success(self, controller, service, state_store):
        controller.register("IPS001")

        result = controller.validate(" VALID-KEY ")

        assert result.is_success()
        assert result.value.name_ips == "IPS San Rafael"
        assert result.value.password == "s3cret"
        assert controller.state == DeviceState.VALIDATED
        assert state_store.get(KEY_VALIDATION_PAYLOAD) == service.validation_response
        assert state_store.get(KEY_VALIDATION_KEY) == "VALID-KEY"
        assert state_store.get(KEY_PHONE_NUMBER) == "3001234567"
        assert service.calls[-1] == ("validate_device_key", "IPS001", "device-abc-123", "VALID-KEY")

    def test_payload_kept_verbatim(self, controller, service, state_store):
        service.validation_response["extra_field"] = {"nested": [1, 2]}
        controller.register("IPS001")
        controller.validate("KEY")
        assert state_store.get(KEY_VALIDATION_PAYLOAD)["extra_field"] == {"nested": [1, 2]}

    def test_no_phone_number(self, controller, service, state_store):
        del service.validation_response["phone_number"]
        controller.register("IPS001")
        controller.validate("KEY")
        assert state_store.get(KEY_PHONE_NUMBER) is None

    def test_rejected_key(self, controller, service):
        controller.register("IPS001")
        service.errors["validate_device_key"] = RemoteError("Clave inválida", status_code=400)

        result = controller.validate("BAD")

        assert result.is_failure()
        assert result.error == "Clave inválida"
        assert controller.state == DeviceState.REGISTERED


class TestLogin:
    """Test the local password check."""

    def test_login_success(self, validated_controller):
        result = validated_controller.login("s3cret")
        assert result.is_success()
        assert result.value == "IPS San Rafael"

    def test_wrong_password(self, validated_controller):
        result = validated_controller.login("guess")
        assert result.is_failure()
        assert result.error_type == "AuthenticationError"

    def test_default_name(self, controller, service):
        del service.validation_response["name_ips"]
        controller.register("IPS001")
        controller.validate("KEY")
        assert controller.login("s3cret").value == "Usuario"

    def test_login_without_payload(self, controller):
        controller.register("IPS001")
        assert controller.login("s3cret").error_type == "PreconditionError"


class TestCheckValidityRemote:
    """Test re-confirmation of the stored key, which fails closed."""

    def test_valid(self, validated_controller, service):
        assert validated_controller.check_validity_remote() is True
        assert service.calls[-1] == ("check_key_validity", "device-abc-123", "VALID-KEY")

    @pytest.mark.parametrize("flag", ["true", "True", True])
    def test_truthy_flags(self, validated_controller, service, flag):
        service.validity_response = {"is_valid": flag}
        assert validated_controller.check_validity_remote() is True

    @pytest.mark.parametrize("response", [{"is_valid": False}, {"is_valid": "no"}, {}])
    def test_not_confirmed(self, validated_controller, service, response):
        service.validity_response = response
        assert validated_controller.check_validity_remote() is False

    def test_unreachable(self, validated_controller, service):
        service.errors["check_key_validity"] = RemoteError("Network error")
        assert validated_controller.check_validity_remote() is False

    def test_no_stored_key(self, controller, service):
        controller.register("IPS001")
        assert controller.check_validity_remote() is False
        assert "check_key_validity" not in service.call_names()


class TestRollingTokenWindow:
    """Test the three-day filename acceptance window."""

    def test_window_inputs(self, controller, service, clock):
        result = controller.rolling_token_window("IPS001")

        assert result.is_success()
        today = excel_day_number(clock.now)
        assert [call[1] for call in service.calls] == [
            f"IPS001-{today}",
            f"IPS001-{today - 1}",
            f"IPS001-{today - 2}",
        ]
        assert result.value == [md5(call[1]) for call in service.calls]

    def test_three_distinct_tokens(self, controller):
        tokens = controller.rolling_token_window("IPS001").value
        assert len(tokens) == 3
        assert len(set(tokens)) == 3

    def test_defaults_to_registered_code(self, controller, service, clock):
        controller.register("IPS001")
        controller.rolling_token_window()
        assert service.calls[-1] == ("compute_hash", f"IPS001-{excel_day_number(clock.now) - 2}")

    def test_yesterday_accepted_four_days_ago_rejected(self, controller, clock):
        tokens = controller.rolling_token_window("IPS001").value
        yesterday = md5(f"IPS001-{excel_day_number(clock.now - timedelta(days=1))}")
        four_days_ago = md5(f"IPS001-{excel_day_number(clock.now - timedelta(days=4))}")

        assert controller.accept_source_file(f"{yesterday}.csv", tokens).is_success()
        rejected = controller.accept_source_file(f"{four_days_ago}.csv", tokens)
        assert rejected.is_failure()
        assert rejected.error_type == "FileNameMismatch"

    def test_case_insensitive_match(self, controller):
        tokens = controller.rolling_token_window("IPS001").value
        assert controller.accept_source_file(Path("/sdcard") / f"{tokens[0].upper()}.CSV", tokens).is_success()

    def test_extension_required(self, controller):
        tokens = controller.rolling_token_window("IPS001").value
        result = controller.accept_source_file(f"{tokens[0]}.txt", tokens)
        assert result.error_type == "PreconditionError"

    def test_failed_day_is_skipped(self, controller, service, clock):
        service.failing_hash_inputs.add(f"IPS001-{excel_day_number(clock.now) - 1}")
        result = controller.rolling_token_window("IPS001")
        assert result.is_success()
        assert len(result.value) == 2

    def test_all_days_failed(self, controller, service):
        service.errors["compute_hash"] = RemoteError("Hash service unavailable", status_code=503)
        result = controller.rolling_token_window("IPS001")
        assert result.is_failure()
        assert result.error_type == "RemoteError"

    def test_no_code(self, controller, service):
        result = controller.rolling_token_window()
        assert result.error_type == "PreconditionError"
        assert service.calls == []

    def test_current_token(self, controller, clock):
        result = controller.current_token("IPS001")
        assert result.value == md5(f"IPS001-{excel_day_number(clock.now)}")


class TestDatasetExpiry:
    """Test per-dataset TTLs and the device-wide expiry policy."""

    def test_dataset_expiry(self, controller, clock):
        assert controller.dataset_expiry(16) == clock.now + timedelta(days=16)

    def test_record_dataset_load(self, controller, state_store, clock, tmp_path):
        dataset = Dataset(tag="rocky", schema=VARIANT_A, backing_path=tmp_path / "rocky.csv")

        expires_at = controller.record_dataset_load(dataset, 16)

        assert expires_at == datetime(2024, 3, 31, 10, 30)
        assert dataset.expires_at == expires_at
        assert controller.dataset_expires_at("rocky") == expires_at
        assert controller.last_loaded("rocky") == "15/03/2024"
        assert controller.backing_path("rocky") == tmp_path / "rocky.csv"

    def test_days_since_loaded(self, controller, clock):
        controller.record_dataset_load(Dataset(tag="rocky", schema=VARIANT_A), 16)
        clock.now += timedelta(days=3)
        assert controller.days_since_loaded("rocky") == 3
        assert controller.days_since_loaded("sigires") is None

    def test_never_loaded_is_expired(self, controller):
        assert controller.is_expired("rocky") is True
        assert controller.is_expired() is True

    def test_one_fresh_dataset_keeps_device_usable(self, controller, state_store, clock):
        """Expiries 2 days ago and 10 days ahead: the device is not expired."""
        set_expiry(state_store, "rocky", clock.now - timedelta(days=2))
        set_expiry(state_store, "sigires", clock.now + timedelta(days=10))

        assert controller.is_expired("rocky") is True
        assert controller.is_expired("sigires") is False
        assert controller.is_expired() is False
        assert controller.expiry_status() == {"rocky": True, "sigires": False}

    def test_all_expired(self, controller, state_store, clock):
        set_expiry(state_store, "rocky", clock.now - timedelta(days=2))
        set_expiry(state_store, "sigires", clock.now - timedelta(minutes=1))
        assert controller.is_expired() is True

    def test_expiry_reached_through_time(self, validated_controller, state_store, clock):
        set_expiry(state_store, "rocky", clock.now + timedelta(days=1))
        set_expiry(state_store, "sigires", clock.now + timedelta(days=5))
        assert validated_controller.state == DeviceState.VALIDATED

        clock.now += timedelta(days=2)
        assert validated_controller.state == DeviceState.VALIDATED

        clock.now += timedelta(days=4)
        assert validated_controller.state == DeviceState.EXPIRED

    def test_validated_without_datasets_is_not_expired(self, validated_controller):
        assert validated_controller.state == DeviceState.VALIDATED

    def test_check_expiry_signal(self, controller, state_store, clock):
        set_expiry(state_store, "sigires", clock.now + timedelta(days=10))

        result = controller.check_expiry()

        assert result.is_success()
        assert result.value == ["rocky"]

    def test_check_expiry_all_stale(self, controller):
        result = controller.check_expiry()
        assert result.is_failure()
        assert result.error_type == "StaleStateError"
        assert result.error_details["tags"] == ["rocky", "sigires"]

    def test_unreadable_expiry(self, controller, state_store):
        state_store.set(dataset_key("rocky", "expiration_date"), "mañana")
        assert controller.dataset_expires_at("rocky") is None
        assert controller.is_expired("rocky") is True

    def test_custom_tags(self, service, state_store, platform, clock):
        controller = DeviceTrustController(service, state_store, platform, dataset_tags=("only",), now_fn=clock)
        set_expiry(state_store, "only", clock.now + timedelta(days=1))
        assert controller.is_expired() is False
