"""Newest-first directory walker with watermark pruning.

Each directory is listed, sorted by modification time (newest first) and
processed in batches of at most ``max_workers`` entries. Files already in
sync report their modification time; the largest such time becomes the
directory's *watermark*. Once an entry older than the watermark is reached,
the rest of the directory is assumed to be in sync and is skipped.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from ..exceptions import EntryProcessingError, SyncCancelledError
from ..utils import DEFAULT_MAX_WORKERS, to_relative_path
from .uploader import Uploader, UploadResult

logger = logging.getLogger(__name__)


@dataclass
class DirEntry:
    """One entry of a directory listing."""

    path: Path
    name: str
    mtime: float
    is_dir: bool

    @property
    def is_hidden(self) -> bool:
        return self.name.startswith(".")


class BatchEnd(str, Enum):
    """Why batch forming stopped."""

    MORE = "more"
    """Batch is full and entries remain"""

    PRUNED = "pruned"
    """An entry older than the watermark was reached"""

    EXHAUSTED = "exhausted"
    """Every entry of the listing was consumed"""


@dataclass
class WalkResult:
    """Aggregated outcome of walking a directory."""

    watermark: Optional[float] = None
    changed_paths: list[str] = field(default_factory=list)
    errors: list[EntryProcessingError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def list_entries(
    directory: Path, errors: Optional[list[tuple[Path, OSError]]] = None
) -> list[DirEntry]:
    """List ``directory`` sorted by modification time, newest first.

    Entries that cannot be stat'ed (dangling symlinks, files removed while
    listing) are left out. When ``errors`` is given, each one is appended
    to it as ``(path, error)``; hidden entries are dropped silently.
    """
    entries = []
    with os.scandir(directory) as it:
        for item in it:
            try:
                mtime = item.stat().st_mtime
                is_dir = item.is_dir()
            except OSError as e:
                logger.debug("Cannot stat %s: %s", item.path, e)
                if errors is not None and not item.name.startswith("."):
                    errors.append((Path(item.path), e))
                continue
            entries.append(
                DirEntry(path=Path(item.path), name=item.name, mtime=mtime, is_dir=is_dir)
            )
    entries.sort(key=lambda e: e.mtime, reverse=True)
    return entries


def form_batch(
    entries: list[DirEntry],
    start: int,
    watermark: Optional[float],
    batch_size: int,
    process_all: bool = False,
) -> tuple[list[DirEntry], int, BatchEnd]:
    """Take the next batch of entries starting at ``start``.

    Hidden entries are skipped without counting toward the batch. Unless
    ``process_all`` is set, reaching an entry strictly older than
    ``watermark`` ends the batch and marks it as the last one.

    Returns:
        Tuple of (batch, index of the next unconsumed entry, BatchEnd)
    """
    batch: list[DirEntry] = []
    index = start
    while index < len(entries):
        entry = entries[index]
        if entry.is_hidden:
            index += 1
            continue
        if not process_all and watermark is not None and entry.mtime < watermark:
            logger.debug("Pruning at %s (older than watermark)", entry.path)
            return batch, index, BatchEnd.PRUNED
        if len(batch) >= batch_size:
            return batch, index, BatchEnd.MORE
        batch.append(entry)
        index += 1
    return batch, index, BatchEnd.EXHAUSTED


class TreeWalker:
    """Walks a local tree and uploads changed files."""

    def __init__(
        self,
        uploader: Uploader,
        max_workers: int = DEFAULT_MAX_WORKERS,
        process_all: bool = False,
        cancel_event: Optional[threading.Event] = None,
        on_result: Optional[Callable[[str, UploadResult], None]] = None,
    ):
        """Initialize tree walker.

        Args:
            uploader: Uploader handling each file
            max_workers: Batch size and worker count per directory batch
            process_all: Disable watermark pruning
            cancel_event: Checked between batches; when set, no new batch starts
            on_result: Called with (relative_path, result) after each file
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.uploader = uploader
        self.max_workers = max_workers
        self.process_all = process_all
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()
        self.on_result = on_result

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def walk(self, root: Path, watermark: Optional[float] = None) -> WalkResult:
        """Walk ``root`` and upload every changed file.

        Args:
            root: Local directory to synchronize
            watermark: Initial watermark (None to start unbounded)

        Returns:
            WalkResult with the final watermark, changed paths and the
            per-entry errors

        Raises:
            ValueError: If root is not an existing directory
            OSError: If root itself cannot be listed
            SyncCancelledError: If the cancel event was set during the walk
        """
        if not root.exists():
            raise ValueError(f"Local directory does not exist: {root}")
        if not root.is_dir():
            raise ValueError(f"Local path is not a directory: {root}")

        result = self._walk_dir(root, root, watermark)
        if self.cancelled:
            raise SyncCancelledError(partial=result.changed_paths)
        return result

    def _walk_dir(
        self, root: Path, directory: Path, watermark: Optional[float]
    ) -> WalkResult:
        unreadable: list[tuple[Path, OSError]] = []
        entries = list_entries(directory, unreadable)
        result = WalkResult(
            watermark=watermark,
            errors=[
                EntryProcessingError(to_relative_path(path, root), e)
                for path, e in unreadable
            ],
        )

        start = 0
        batch_num = 0
        while not self.cancelled:
            batch, start, end = form_batch(
                entries, start, result.watermark, self.max_workers, self.process_all
            )
            if batch:
                batch_num += 1
                logger.debug(
                    "%s: batch %d with %d entries", directory, batch_num, len(batch)
                )
                self._run_batch(root, batch, result)
            if end != BatchEnd.MORE:
                break

        return result

    def _run_batch(self, root: Path, batch: list[DirEntry], result: WalkResult) -> None:
        """Process a batch concurrently and fold the outcomes into ``result``.

        All workers rejoin before the watermark moves. On Ctrl-C the cancel
        event is set first, so workers recursing into subdirectories stop at
        their next batch boundary instead of draining their subtree.
        """
        watermark = result.watermark

        executor = ThreadPoolExecutor(max_workers=min(self.max_workers, len(batch)))
        try:
            futures = [
                executor.submit(self._process_entry, root, entry, watermark)
                for entry in batch
            ]
            try:
                for future in as_completed(futures):
                    future.result()
            except KeyboardInterrupt:
                logger.warning("Interrupted, finishing entries already running")
                self.cancel_event.set()
                executor.shutdown(wait=True, cancel_futures=True)
            except BaseException:
                self.cancel_event.set()
                raise
        finally:
            executor.shutdown(wait=True)

        outcomes = [f.result() for f in futures if not f.cancelled()]

        dates = [o.watermark for o in outcomes if o.watermark is not None]
        if watermark is not None:
            dates.append(watermark)
        result.watermark = max(dates) if dates else None
        for outcome in outcomes:
            result.changed_paths.extend(outcome.changed_paths)
            result.errors.extend(outcome.errors)

    def _process_entry(
        self, root: Path, entry: DirEntry, watermark: Optional[float]
    ) -> WalkResult:
        """Recurse into a directory or run a file through the uploader."""
        relative_path = to_relative_path(entry.path, root)
        try:
            if entry.is_dir:
                return self._walk_dir(root, entry.path, watermark)

            upload = self.uploader.process_file(entry.path, relative_path, entry.mtime)
            if self.on_result is not None:
                self.on_result(relative_path, upload)
            return WalkResult(
                watermark=upload.observed_date,
                changed_paths=[upload.uploaded_path] if upload.uploaded_path else [],
            )
        except Exception as e:
            logger.debug("Failed to process %s: %s", relative_path, e)
            return WalkResult(errors=[EntryProcessingError(relative_path, e)])
