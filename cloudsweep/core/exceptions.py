"""
Error taxonomy for CloudSweep.

Exception hierarchy::

    CloudSweepError (base)
    ├── ValidationError            malformed input, rejected before orchestration
    ├── NotFoundError              resource / policy / scan / account absent
    ├── ProviderError              factory or Scanner/Cleaner failure
    │   ├── ProviderUnsupportedError
    │   └── CredentialsInvalidError
    ├── PersistenceError           durable-store read/write failure
    ├── UnsupportedOperationError  unknown action/provider combination
    └── ScanStateError             illegal scan state transition
        └── ScanCancelledError
"""

from typing import Any


class CloudSweepError(Exception):
    """
    Base exception for all CloudSweep errors.

    Args:
        message: Human-readable error message
        details: Additional context about the error
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for task results."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(CloudSweepError):
    """Malformed input (e.g. unparsable identifiers, empty region list)."""


class NotFoundError(CloudSweepError):
    """A resource, policy, scan or cloud account does not exist."""


class ProviderError(CloudSweepError):
    """Provider-side failure, often transient."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = dict(details or {})
        if provider:
            details["provider"] = provider
        super().__init__(message, details)
        self.provider = provider


class ProviderUnsupportedError(ProviderError):
    """No executor is registered for the requested provider."""


class CredentialsInvalidError(ProviderError):
    """Credentials are malformed or rejected by the provider."""


class PersistenceError(CloudSweepError):
    """Durable-store write or read failure."""


class UnsupportedOperationError(CloudSweepError):
    """Unknown action or action not supported for a resource type."""


class ScanStateError(CloudSweepError):
    """A scan transition violates the scan state machine."""


class ScanCancelledError(ScanStateError):
    """The scan was cancelled by an external request."""
