"""Custom exceptions for the attendance recognition pipeline."""
from typing import Optional


class RollcallError(Exception):
    """Base exception for attendance recognition operations."""

    def __init__(self, message: str, details: Optional[dict] = None):
        """
        Initialize attendance recognition error.

        Args:
            message: Error description
            details: Additional error context
        """
        super().__init__(message)
        self.details = details or {}


class InvalidImageError(RollcallError):
    """Raised when the provided image is invalid or cannot be processed."""
    pass


class ModelUnavailableError(RollcallError):
    """Raised when the detection/embedding capability cannot be loaded or reached."""
    pass


class DimensionMismatchError(RollcallError):
    """Raised when a descriptor's length differs from the gallery dimension."""

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Descriptor has {actual} dimensions, gallery expects {expected}",
            details={"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


class PersistenceError(RollcallError):
    """Raised when an external store rejects a read or write."""
    pass


class DuplicateArrivalError(PersistenceError):
    """Raised by attendance stores when an arrival for (identity, day) already exists."""
    pass


class CameraUnavailableError(RollcallError):
    """Raised when the media source cannot be opened or read."""
    pass


class CaptureInProgressError(RollcallError):
    """Raised when a capture is requested while another one is in flight."""
    pass


class SessionNotActiveError(RollcallError):
    """Raised when a capture is requested on a session that is not running."""
    pass


class AlertRuleNotFoundError(RollcallError):
    """Raised when an alert rule id is unknown."""
    pass


class InvalidCutoffError(RollcallError):
    """Raised when a cutoff time is out of range or malformed."""
    pass


class ServiceNotInitializedError(RollcallError):
    """Raised when a service is requested before the container is initialized."""
    pass
