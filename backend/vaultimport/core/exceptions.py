"""Domain exceptions for import, dedup and rollback operations.

Every error carries a stable ``code`` that is recorded on jobs and returned
to API callers, so clients can tell retryable outcomes from terminal ones.
"""

from __future__ import annotations


class VaultImportError(Exception):
    """Base exception for all vault import errors."""

    code = "internal_error"
    retryable = False

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


class ValidationError(VaultImportError):
    """Raised when a request is malformed for the target resource."""

    code = "validation_error"


class NotFoundError(VaultImportError):
    """Raised when a source, job, scan or group does not exist."""

    code = "not_found"

    def __init__(self, resource: str, resource_id: str):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} {resource_id} not found")


class ForbiddenError(VaultImportError):
    """Raised when an owner touches another account's resource."""

    code = "forbidden"

    def __init__(self, resource: str, resource_id: str):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} {resource_id} belongs to another account")


class ServiceUnavailableError(VaultImportError):
    """Raised when connecting to an inactive provider."""

    code = "service_unavailable"


class ServiceUnderReviewError(ServiceUnavailableError):
    """Raised when the provider integration is still awaiting app review."""

    code = "service_under_review"


class AuthFailedError(VaultImportError):
    """Raised when provider credentials are invalid or expired.

    Never retried automatically; the account holder must reconnect.
    """

    code = "auth_failed"


class ProviderUnavailableError(VaultImportError):
    """Raised when a provider stays unavailable after bounded retries."""

    code = "provider_unavailable"
    retryable = True


class RateLimitedError(ProviderUnavailableError):
    """Raised by connectors for a single throttled or 5xx response.

    ``with_backoff`` retries these and converts exhaustion into a plain
    ``ProviderUnavailableError``.
    """

    def __init__(self, message: str = "Provider rate limit hit", retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class QuotaExceededError(VaultImportError):
    """Raised when the account plan has no room for more assets."""

    code = "quota_exceeded"
    retryable = True

    def __init__(self, message: str, remaining: int = 0):
        super().__init__(message)
        self.remaining = remaining


class StateConflictError(VaultImportError):
    """Raised when an operation is invalid for the resource's current state."""

    code = "state_conflict"


class StorageFailureError(VaultImportError):
    """Raised when transferring or persisting one asset fails."""

    code = "storage_failure"


class LeaseLostError(VaultImportError):
    """Raised inside a worker when another worker took over its job."""

    code = "lease_lost"


class AssetUnavailableError(StorageFailureError):
    """Raised when one asset vanished from the provider after enumeration.

    Counted as a failed asset; the rest of the import carries on.
    """
