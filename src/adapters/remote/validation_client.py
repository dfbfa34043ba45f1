"""Remote Device Validation Client.

This adapter implements the ValidationServicePort contract over HTTPS with
JSON bodies. Each method performs exactly one request; there is no retry.

Security Impact:
    - Keys are sent only in request bodies, never in URLs or logs
    - Server error messages are passed through verbatim when decodable
    - Transport failures become RemoteError with a generic message

Architecture:
    - Implements ValidationServicePort (Hexagonal Architecture)
    - Uses a requests.Session so tests can substitute the transport
"""

import json
import logging
from typing import Any, Dict, Optional

import requests

from src.domain.ports import RemoteError, ValidationServicePort
from src.infrastructure.config_manager import ServiceConfig

logger = logging.getLogger(__name__)

NETWORK_ERROR_MESSAGE = "Network error while contacting the validation service"
UNKNOWN_ERROR_MESSAGE = "Unknown error"

# Field names the service uses for human-readable messages
MESSAGE_FIELDS = ("mensaje", "message", "detail")


def extract_server_message(response: requests.Response) -> str:
    """Best-effort human message from an error response.

    Returns the JSON message field when present, "Unknown error" for JSON
    without one, and "Error: <body>" when the body is not JSON.
    """
    try:
        data = response.json()
    except ValueError:
        body = (response.text or "").strip()
        return f"Error: {body}" if body else f"Error: HTTP {response.status_code}"

    if isinstance(data, dict):
        for name in MESSAGE_FIELDS:
            if data.get(name):
                return str(data[name])
    return UNKNOWN_ERROR_MESSAGE


class ValidationClient(ValidationServicePort):
    """HTTP client for the device registration and validation service.

    Example Usage:
        ```python
        client = ValidationClient(ServiceConfig(base_url="https://example.org/api/v1"))
        payload = client.validate_device_key("IPS001", "device-123", "ABCD-1234")
        ```
    """

    def __init__(self, config: Optional[ServiceConfig] = None, session: Optional[requests.Session] = None):
        """Initialize validation client.

        Parameters:
            config: Service configuration (default: ServiceConfig())
            session: HTTP session (default: new requests.Session)
        """
        self.config = config or ServiceConfig()
        self.session = session or requests.Session()
        self.adapter_name = "validation_client"

    def _request(
        self,
        method: str,
        path: str,
        expected_status: int,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        url = self.config.url_for(path)
        try:
            response = self.session.request(
                method,
                url,
                json=body,
                params=params,
                headers={"Content-Type": "application/json"},
                timeout=self.config.timeout_seconds,
            )
        except requests.RequestException as e:
            logger.warning(f"{method} {path} failed: {type(e).__name__}")
            raise RemoteError(NETWORK_ERROR_MESSAGE) from e

        if response.status_code != expected_status:
            message = extract_server_message(response)
            logger.info(f"{method} {path} returned HTTP {response.status_code}")
            raise RemoteError(message, status_code=response.status_code, server_message=message)

        try:
            data = response.json()
        except ValueError as e:
            raise RemoteError(
                f"Error: {response.text}",
                status_code=response.status_code
            ) from e
        if not isinstance(data, dict):
            raise RemoteError(
                f"Unexpected response from validation service: {json.dumps(data)[:200]}",
                status_code=response.status_code
            )
        return data

    def register_device(self, device_name: str, device_id: str, institution_code: str) -> Dict[str, Any]:
        """POST the device identity; the service answers 201 with a key."""
        return self._request(
            "POST",
            self.config.register_path,
            expected_status=201,
            body={
                "device_name": device_name,
                "device_id": device_id,
                "cod_ips": institution_code,
            },
        )

    def validate_device_key(self, institution_code: str, device_id: str, key: str) -> Dict[str, Any]:
        """POST a candidate key; the service answers 200 with the validation payload."""
        return self._request(
            "POST",
            self.config.validate_path,
            expected_status=200,
            body={"cod_ips": institution_code, "device_id": device_id, "key": key},
        )

    def check_key_validity(self, device_id: str, key: str) -> Dict[str, Any]:
        """POST the stored key; the service answers 200 with an is_valid flag."""
        return self._request(
            "POST",
            self.config.validity_path,
            expected_status=200,
            body={"device_id": device_id, "key": key},
        )

    def compute_hash(self, data: str) -> str:
        """GET the hash token for data."""
        response = self._request(
            "GET",
            self.config.hash_path,
            expected_status=200,
            params={"data": data},
        )
        token = response.get("md5")
        if not token:
            raise RemoteError("Hash endpoint returned no token")
        return str(token)
