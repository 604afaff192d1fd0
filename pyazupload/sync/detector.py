"""Content-digest change detection."""

import logging
from dataclasses import dataclass
from pathlib import Path

from ..exceptions import NotFoundError
from ..storage import BlobStorageClient
from ..utils import compute_content_md5

logger = logging.getLogger(__name__)


@dataclass
class ChangeDecision:
    """Whether a local file needs uploading."""

    should_upload: bool
    """True if the remote blob is missing or has a different digest"""

    local_digest: str
    """Base64 MD5 of the local file"""

    existed_remotely: bool
    """True if a blob already exists at the relative path"""

    reason: str = ""
    """Human-readable reason for this decision"""


class ChangeDetector:
    """Compares a local file's digest with the digest stored on its blob."""

    def __init__(self, client: BlobStorageClient, container: str):
        """Initialize change detector.

        Args:
            client: Blob storage client used for the metadata lookup
            container: Container holding the remote copies
        """
        self.client = client
        self.container = container

    def decide(self, local_path: Path, relative_path: str) -> ChangeDecision:
        """Decide whether ``local_path`` must be uploaded to ``relative_path``.

        Only a not-found lookup is treated as "absent"; every other lookup
        failure propagates.

        Args:
            local_path: File on disk
            relative_path: Blob name inside the container

        Returns:
            ChangeDecision for this file
        """
        local_digest = compute_content_md5(local_path)

        try:
            properties = self.client.get_blob_properties(self.container, relative_path)
        except NotFoundError:
            return ChangeDecision(
                should_upload=True,
                local_digest=local_digest,
                existed_remotely=False,
                reason="New blob",
            )

        if properties.content_md5 == local_digest:
            return ChangeDecision(
                should_upload=False,
                local_digest=local_digest,
                existed_remotely=True,
                reason="Digest unchanged",
            )

        logger.debug(
            "Digest mismatch for %s: local %s, remote %s",
            relative_path,
            local_digest,
            properties.content_md5,
        )
        return ChangeDecision(
            should_upload=True,
            local_digest=local_digest,
            existed_remotely=True,
            reason="Digest changed",
        )
