"""
Custom application exceptions.
"""
from typing import Optional


class TaskfuseAppException(Exception):
    """Base exception for the sync service."""
    pass


class IntegrationNotFoundError(TaskfuseAppException):
    """Raised when an integration is not found."""
    pass


class UnsupportedProviderError(TaskfuseAppException):
    """Raised when no sync adapter is registered for a provider."""
    pass


class SyncInProgressError(TaskfuseAppException):
    """Raised when another sync pass holds the integration lock."""
    pass


class SyncError(TaskfuseAppException):
    """Base class for failures raised during a sync pass.

    ``fatal`` errors abort the pass and move the integration to ``error``;
    the others are recorded per item and the pass continues.
    """

    code = "sync_error"
    fatal = True

    def __init__(self, message: str, *, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class MissingRefreshCredentialError(SyncError):
    """Raised when the access token is expired and no refresh token is stored."""

    code = "missing_refresh_credential"


class RefreshFailedError(SyncError):
    """Raised when the provider rejects a refresh-token exchange."""

    code = "refresh_failed"


class AuthenticationFailedError(SyncError):
    """Raised when the provider rejects the access token."""

    code = "authentication_failed"


class PaginationLimitExceededError(SyncError):
    """Raised when a paginated listing does not terminate within the page ceiling."""

    code = "pagination_limit_exceeded"


class ProviderRequestError(SyncError):
    """Raised when a listing request fails outside of a skippable container."""

    code = "provider_request_failed"


class RemoteRecordError(SyncError):
    """Raised when a remote record cannot be mapped to a local record."""

    code = "remote_record_invalid"
    fatal = False


class PersistenceError(SyncError):
    """Raised when a local write fails."""

    code = "persistence_failed"
    fatal = False


class UnreadableCredentialError(SyncError):
    """Raised when a stored credential cannot be decrypted."""

    code = "credential_unreadable"
