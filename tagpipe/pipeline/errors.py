"""Exception types for the event pipeline.

These errors are raised between pipeline components. The public surfaces
(``Tracker.track_event`` and the consent actions) catch them and degrade to
dropping or reducing the fidelity of a single event, so none of them ever
reaches the host application.
"""

from typing import Optional


class TagPipeError(Exception):
    """Base class for all pipeline errors."""
    pass


class ConfigurationError(TagPipeError):
    """Raised when a send cannot proceed because configuration is incomplete."""
    pass


class StorageError(TagPipeError):
    """Raised when a durable storage slot cannot be read or written."""
    pass


class DeliveryError(TagPipeError):
    """Raised when a transport strategy fails to deliver a payload."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EncryptionError(TagPipeError):
    """Raised when payload encryption or decryption fails."""
    pass


class SecurityValidationError(TagPipeError):
    """Raised when a request is blocked by client-side security checks."""

    def __init__(self, reason: str):
        super().__init__(f"Security validation failed: {reason}")
        self.reason = reason


class QueueClosedError(TagPipeError):
    """Raised when attempting to operate on a closed queue."""
    pass
