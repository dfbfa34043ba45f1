"""Persisted Device State Store.

This adapter implements the StateStorePort contract with a single JSON file:
flat key/value entries (strings, booleans, opaque JSON blobs) that survive
process restarts. The file is reloaded at startup and written through on
every change.

Security Impact:
    - Optional Fernet encryption at rest (validation payload echoes the password)
    - A corrupt or undecryptable file is reported, never silently reset

Architecture:
    - Implements StateStorePort (Hexagonal Architecture)
    - Single process-wide record; no concurrent writers are assumed
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from src.domain.ports import FormatError, StateStorePort
from src.infrastructure.encryption.encryption_service import DecryptionError, EncryptionService

logger = logging.getLogger(__name__)


class DeviceStateStore(StateStorePort):
    """JSON-file backed key/value store for device identity and dataset metadata.

    Example Usage:
        ```python
        store = DeviceStateStore("data/device_state.json")
        store.set("cod_ips", "IPS001")
        store.get("cod_ips")
        ```
    """

    def __init__(self, path: Union[str, Path], encryption: Optional[EncryptionService] = None):
        """Initialize and load the state file.

        Parameters:
            path: State file location (created on first write)
            encryption: If given, the file content is Fernet-encrypted

        Raises:
            FormatError: If an existing file cannot be parsed or decrypted
        """
        self.path = Path(path)
        self.encryption = encryption
        self._data: Dict[str, Any] = self._read()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        raw = self.path.read_bytes()
        if not raw.strip():
            return {}
        try:
            if self.encryption is not None:
                return self.encryption.decrypt_record(raw.strip())
            return json.loads(raw.decode("utf-8"))
        except (DecryptionError, ValueError) as e:
            raise FormatError(f"Device state file is unreadable: {e}", source=str(self.path)) from e

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if self.encryption is not None:
            self.path.write_bytes(self.encryption.encrypt_record(self._data))
        else:
            self.path.write_text(json.dumps(self._data, indent=2, sort_keys=True), encoding="utf-8")

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._write()
        logger.debug(f"Device state key '{key}' updated")

    def delete(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._write()


class InMemoryStateStore(StateStorePort):
    """Non-persistent state store, for dry runs and tests."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)
