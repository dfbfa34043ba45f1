"""Host platform probes.

Implements DevicePlatformPort: a stable device identifier, a display name
and a quick reachability check used before registration.
"""

import logging
import platform
import socket
import uuid
from pathlib import Path
from typing import Sequence, Tuple

from src.domain.ports import DevicePlatformPort

logger = logging.getLogger(__name__)

MACHINE_ID_PATHS = ("/etc/machine-id", "/var/lib/dbus/machine-id")

# Public resolvers: any one accepting a TCP connection counts as online
CONNECTIVITY_PROBES: Tuple[Tuple[str, int], ...] = (("8.8.8.8", 53), ("1.1.1.1", 53))


class HostPlatform(DevicePlatformPort):
    """Device facts for the machine the process runs on."""

    def __init__(
        self,
        probes: Sequence[Tuple[str, int]] = CONNECTIVITY_PROBES,
        probe_timeout: float = 3.0
    ):
        self.probes = tuple(probes)
        self.probe_timeout = probe_timeout

    def device_id(self) -> str:
        """machine-id when available, else a hash of the hardware address."""
        for candidate in MACHINE_ID_PATHS:
            path = Path(candidate)
            try:
                value = path.read_text(encoding="utf-8").strip()
            except OSError:
                continue
            if value:
                return value
        return uuid.uuid5(uuid.NAMESPACE_OID, f"{uuid.getnode():012x}").hex

    def device_name(self) -> str:
        system = platform.system() or "Unknown"
        machine = platform.machine()
        node = platform.node()
        return " ".join(part for part in (system, machine, node) if part)

    def has_connectivity(self) -> bool:
        for host, port in self.probes:
            try:
                with socket.create_connection((host, port), timeout=self.probe_timeout):
                    return True
            except OSError:
                continue
        logger.info("No network connectivity detected")
        return False
