"""Utility functions for pyazupload."""

import base64
import hashlib
import mimetypes
from pathlib import Path
from typing import Optional

# =============================================================================
# Constants
# =============================================================================

# Number of entries processed concurrently per directory batch
DEFAULT_MAX_WORKERS: int = 10

# Read size used when hashing files (1 MB)
HASH_CHUNK_SIZE: int = 1024 * 1024

# Read size used when streaming a file to a blob (1 MB)
UPLOAD_CHUNK_SIZE: int = 1024 * 1024


# =============================================================================
# Content digest utilities
# =============================================================================


def compute_content_md5(file_path: Path, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """Compute the base64-encoded MD5 digest of a file.

    This is the form Azure Blob Storage keeps in a blob's ``Content-MD5``
    property, so the result can be compared with it directly.

    Args:
        file_path: File to hash
        chunk_size: Bytes read per iteration

    Returns:
        Base64-encoded MD5 digest (e.g. ``'XUFAKrxLKna5cZ2REBfFkg=='`` for
        ``b"hello"``)
    """
    hasher = hashlib.md5()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            hasher.update(chunk)
    return base64.b64encode(hasher.digest()).decode("ascii")


# =============================================================================
# MIME utilities
# =============================================================================


def guess_content_type(file_path: Path) -> Optional[str]:
    """Guess the MIME type from the file name.

    Returns:
        MIME type, or None when the extension is unknown

    Examples:
        >>> guess_content_type(Path("index.html"))
        'text/html'
        >>> guess_content_type(Path("data.unknownext")) is None
        True
    """
    mime_type, _ = mimetypes.guess_type(file_path.name)
    return mime_type


def to_relative_path(path: Path, base_path: Path) -> str:
    """Relative path with forward slashes, for use as a blob name."""
    return path.relative_to(base_path).as_posix()
