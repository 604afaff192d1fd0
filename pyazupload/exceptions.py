"""Exceptions raised by pyazupload."""

from __future__ import annotations

from typing import Optional


class AzUploadError(Exception):
    """Base exception for all pyazupload errors."""


class ConfigError(AzUploadError):
    """Required configuration is missing or unreadable."""

    def __init__(self, message: str, missing: Optional[list[str]] = None):
        super().__init__(message)
        self.missing = list(missing or [])

    @classmethod
    def for_missing(cls, missing: list[str]) -> ConfigError:
        """Build an error that names every missing key."""
        return cls(f"Missing configuration: {', '.join(missing)}", missing=missing)


class NotFoundError(AzUploadError):
    """Remote resource does not exist (HTTP 404)."""


class AuthenticationError(AzUploadError):
    """Credentials were rejected (HTTP 401)."""


class PermissionDeniedError(AzUploadError):
    """Credentials lack access to the resource (HTTP 403)."""


class RateLimitError(AzUploadError):
    """Provider throttled the request (HTTP 429)."""


class ServerError(AzUploadError):
    """Provider returned a 5xx response."""


class NetworkError(AzUploadError):
    """Connection-level failure talking to the provider."""


class InvalidResponseError(AzUploadError):
    """Provider returned a response we could not interpret."""


class UploadError(AzUploadError):
    """A blob upload failed."""


class EntryProcessingError(AzUploadError):
    """Processing one file or subtree failed during a walk.

    These are collected on the walk result rather than raised, so sibling
    entries keep going.
    """

    def __init__(self, path: str, cause: BaseException):
        super().__init__(f"{path}: {cause}")
        self.path = path
        self.cause = cause


class PurgeBatchError(AzUploadError):
    """A CDN purge batch failed; later batches were not submitted."""

    def __init__(
        self,
        batch_index: int,
        cause: BaseException,
        completed: Optional[list[int]] = None,
    ):
        super().__init__(f"Purge batch {batch_index + 1} failed: {cause}")
        self.batch_index = batch_index
        self.cause = cause
        self.completed = list(completed or [])


class SyncCancelledError(AzUploadError):
    """The run was cancelled between batches."""

    def __init__(self, message: str = "Sync cancelled", partial: Optional[list] = None):
        super().__init__(message)
        self.partial = list(partial or [])
