"""Blob upload with digest tagging."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..storage import BlobStorageClient, FileBody
from ..utils import guess_content_type
from .detector import ChangeDetector

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    """Outcome of processing one walk entry."""

    changed: bool = False
    """True if content was (or, in a dry run, would be) uploaded"""

    observed_date: Optional[float] = None
    """Modification time of an entry confirmed already in sync"""

    uploaded_path: Optional[str] = None
    """Relative path of an existing blob that was overwritten"""


class Uploader:
    """Uploads files whose content differs from their blob."""

    def __init__(
        self,
        client: BlobStorageClient,
        container: str,
        detector: Optional[ChangeDetector] = None,
        dry_run: bool = False,
    ):
        """Initialize uploader.

        Args:
            client: Blob storage client
            container: Destination container
            detector: Change detector (one is created for ``client`` if omitted)
            dry_run: Only decide; never transfer content
        """
        self.client = client
        self.container = container
        self.detector = detector or ChangeDetector(client, container)
        self.dry_run = dry_run

    def upload(self, local_path: Path, relative_path: str, digest: str) -> None:
        """Transfer ``local_path`` to ``relative_path``, overwriting any blob.

        The digest is stored on the blob so the next run can detect that
        nothing changed.
        """
        content_type = guess_content_type(local_path)
        if content_type is None:
            logger.warning("Unknown content type for %s", local_path)

        self.client.put_blob(
            self.container,
            relative_path,
            FileBody(local_path),
            content_md5=digest,
            content_type=content_type,
        )

    def process_file(
        self, local_path: Path, relative_path: str, mtime: float
    ) -> UploadResult:
        """Detect changes for one file and upload it if needed.

        Returns:
            UploadResult. ``observed_date`` is only set for files already in
            sync; ``uploaded_path`` is only set when an existing blob was
            overwritten. Blobs created for the first time have no cached
            copy to purge, so they carry no path.
        """
        decision = self.detector.decide(local_path, relative_path)
        if not decision.should_upload:
            logger.debug("Unchanged: %s", relative_path)
            return UploadResult(changed=False, observed_date=mtime)

        if self.dry_run:
            logger.info("Would upload %s (%s)", relative_path, decision.reason)
        else:
            logger.info("Uploading %s (%s)", relative_path, decision.reason)
            self.upload(local_path, relative_path, decision.local_digest)

        if decision.existed_remotely:
            return UploadResult(changed=True, uploaded_path=relative_path)
        logger.debug("New blob %s, no cache to purge", relative_path)
        return UploadResult(changed=True)
