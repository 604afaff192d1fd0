"""Incremental sync engine: change detection, tree walk and cache purge."""

from .detector import ChangeDecision, ChangeDetector
from .invalidator import (
    CacheInvalidator,
    PurgeBatchResult,
    PurgeSettings,
    cache_paths,
    chunk_paths,
)
from .uploader import Uploader, UploadResult
from .walker import BatchEnd, DirEntry, TreeWalker, WalkResult, form_batch, list_entries

__all__ = [
    "ChangeDecision",
    "ChangeDetector",
    "Uploader",
    "UploadResult",
    "TreeWalker",
    "WalkResult",
    "DirEntry",
    "BatchEnd",
    "form_batch",
    "list_entries",
    "CacheInvalidator",
    "PurgeSettings",
    "PurgeBatchResult",
    "cache_paths",
    "chunk_paths",
]
