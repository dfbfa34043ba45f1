"""Domain Ports - Outcome Type, Error Taxonomy and Collaborator Contracts.

This module defines the Port interfaces (abstract contracts) that Adapters must
implement for the lookup core. Following Hexagonal Architecture, the Domain Core
defines what it needs from the remote validation service, the persisted device
state and the hosting platform, not how those are provided.

Security Impact:
    - Remote and local failures are reported, never swallowed
    - Validation keys and passwords never appear in error messages
    - Every operation returns an explicit success/failure outcome

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - Adapters (HTTP client, JSON state file, platform probes) implement these ports
    - Domain Core is isolated from transport and storage specifics
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Generic, Iterable, Optional, TypeVar, Union

# Type variable for Result generic
T = TypeVar('T')


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    Nothing in the lookup core is fatal to the caller: registration,
    validation, dataset loads and exports all hand back a Result so that the
    screen (or CLI) decides how to present the outcome.

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Error message (only present if success=False)
        error_type: Type of error (NotFoundError, RemoteError, etc.)
        error_details: Additional error context (dataset tag, status code, etc.)

    Example:
        ```python
        result = controller.register("IPS001")
        if result.is_success():
            print(result.value)
        else:
            print(result.error_type, result.error)
        ```
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None

    @classmethod
    def success_result(cls, value: T) -> 'Result[T]':
        """Create a successful result.

        Parameters:
            value: The successful result value

        Returns:
            Result: Success result with the value
        """
        return cls(
            success=True,
            value=value,
            error=None,
            error_type=None,
            error_details=None
        )

    @classmethod
    def failure_result(
        cls,
        error: Union[str, Exception],
        error_type: Optional[str] = None,
        error_details: Optional[dict] = None
    ) -> 'Result[T]':
        """Create a failure result.

        Parameters:
            error: Error message or exception
            error_type: Type of error (e.g., "PreconditionError", "RemoteError")
            error_details: Additional context (dataset tag, status code, etc.)

        Returns:
            Result: Failure result with error information
        """
        error_message = str(error) if isinstance(error, Exception) else error
        error_type_name = error_type or (type(error).__name__ if isinstance(error, Exception) else "UnknownError")
        details = dict(error_details or {})
        if isinstance(error, LookupCoreError):
            for key, value in error.details.items():
                details.setdefault(key, value)

        return cls(
            success=False,
            value=None,
            error=error_message,
            error_type=error_type_name,
            error_details=details
        )

    def is_success(self) -> bool:
        """Check if result is successful."""
        return self.success

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return not self.success


# ============================================================================
# Custom Exception Hierarchy
# ============================================================================

class LookupCoreError(Exception):
    """Base exception for all lookup-core errors.

    Attributes:
        details: Additional error context, copied into Result.error_details
    """

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(LookupCoreError):
    """Raised when a file or record is absent.

    Recoverable: the caller decides how to tell the user.

    Attributes:
        source: The path or key that could not be found
    """

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message, details={"source": source} if source else None)
        self.source = source


class FormatError(LookupCoreError):
    """Raised when a source file has no recognizable header or cannot be read.

    The load is aborted and no partial dataset is retained.

    Attributes:
        source: The source file that failed to parse
    """

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message, details={"source": source} if source else None)
        self.source = source


class PreconditionError(LookupCoreError):
    """Raised when an operation is attempted before its required prior state.

    Example: validating a key before the device was registered. Purely local,
    no network is involved.
    """
    pass


class RemoteError(LookupCoreError):
    """Raised when the validation service is unreachable or returns a failure.

    Attributes:
        status_code: HTTP status code, if a response was received
        server_message: Message decoded from the response body, if any
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        server_message: Optional[str] = None
    ):
        details = {}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details=details)
        self.status_code = status_code
        self.server_message = server_message


class ConnectivityError(RemoteError):
    """Raised when the device has no network connection at all."""
    pass


class StaleStateError(LookupCoreError):
    """Policy signal that a dataset or the device is considered expired.

    Not a hard failure: the record store performs no enforcement and callers
    may still read stale data if they choose to ignore the signal.

    Attributes:
        tags: Dataset tags that are stale
    """

    def __init__(self, message: str, tags: Optional[Iterable[str]] = None):
        tag_list = list(tags or [])
        super().__init__(message, details={"tags": tag_list})
        self.tags = tag_list


# ============================================================================
# Collaborator Ports
# ============================================================================

class ValidationServicePort(ABC):
    """Abstract contract for the remote device validation service.

    The service is an opaque external collaborator. Each method performs
    exactly one point-in-time call; no retry happens at this layer.

    Implementations must raise RemoteError (or ConnectivityError) on any
    non-success outcome, carrying the server's message when decodable.
    """

    @abstractmethod
    def register_device(self, device_name: str, device_id: str, institution_code: str) -> Dict[str, Any]:
        """Register a device for an institution.

        Returns:
            dict: Response body containing at least the registration key
                  ("clave") and the backend device identifier ("id_device")
        """
        pass

    @abstractmethod
    def validate_device_key(self, institution_code: str, device_id: str, key: str) -> Dict[str, Any]:
        """Validate a candidate key for a registered device.

        Returns:
            dict: Full validation payload (institution metadata, password echo,
                  optional phone number)
        """
        pass

    @abstractmethod
    def check_key_validity(self, device_id: str, key: str) -> Dict[str, Any]:
        """Re-confirm a stored key.

        Returns:
            dict: Response body with an "is_valid" flag
        """
        pass

    @abstractmethod
    def compute_hash(self, data: str) -> str:
        """Compute the server-side hash token for a "<code>-<dayNumber>" string."""
        pass


class StateStorePort(ABC):
    """Abstract contract for persisted scalar/opaque device state.

    Entries are flat key/value pairs; values are strings, booleans or opaque
    JSON blobs. There is no relational structure.
    """

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value for key, or default."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a value and write it through to persistent storage."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key if present."""
        pass


class DevicePlatformPort(ABC):
    """Abstract contract for platform-derived device facts."""

    @abstractmethod
    def device_id(self) -> str:
        """Stable identifier of the physical device."""
        pass

    @abstractmethod
    def device_name(self) -> str:
        """Human-readable device name (manufacturer and model)."""
        pass

    @abstractmethod
    def has_connectivity(self) -> bool:
        """Whether the network appears reachable."""
        pass
