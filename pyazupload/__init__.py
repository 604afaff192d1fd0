"""Azure Upload - incremental directory sync to Azure Blob Storage with CDN purge."""

from .cdn import CdnClient
from .config import Config, load_config
from .exceptions import (
    AuthenticationError,
    AzUploadError,
    ConfigError,
    EntryProcessingError,
    InvalidResponseError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    PurgeBatchError,
    RateLimitError,
    ServerError,
    SyncCancelledError,
    UploadError,
)
from .storage import BlobStorageClient
from .utils import compute_content_md5

__version__ = "0.1.0"

__all__ = [
    "BlobStorageClient",
    "CdnClient",
    "Config",
    "load_config",
    "AzUploadError",
    "AuthenticationError",
    "ConfigError",
    "EntryProcessingError",
    "InvalidResponseError",
    "NetworkError",
    "NotFoundError",
    "PermissionDeniedError",
    "PurgeBatchError",
    "RateLimitError",
    "ServerError",
    "SyncCancelledError",
    "UploadError",
    "compute_content_md5",
]
