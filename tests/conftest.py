"""Shared fixtures for pyazupload tests."""

import os
import tempfile
from pathlib import Path

import pytest

from pyazupload.config import ENV_VARS
from pyazupload.exceptions import NotFoundError, UploadError
from pyazupload.storage import BlobProperties


class FakeBlobStore:
    """In-memory stand-in for BlobStorageClient."""

    def __init__(self):
        self.blobs: dict[str, dict] = {}
        self.head_calls: list[str] = []
        self.put_calls: list[str] = []
        self.fail_on: set[str] = set()
        self.closed = False

    def seed(self, name: str, content_md5: str) -> None:
        self.blobs[name] = {"data": b"", "content_md5": content_md5, "content_type": None}

    def get_blob_properties(self, container: str, name: str) -> BlobProperties:
        self.head_calls.append(name)
        if name not in self.blobs:
            raise NotFoundError(f"Resource not found: /{container}/{name}")
        blob = self.blobs[name]
        return BlobProperties(
            name=name,
            content_md5=blob["content_md5"],
            content_type=blob["content_type"],
        )

    def put_blob(self, container, name, data, content_md5=None, content_type=None):
        if name in self.fail_on:
            raise UploadError(f"Unexpected status 500 uploading {name}")
        self.put_calls.append(name)
        self.blobs[name] = {
            "data": data if isinstance(data, bytes) else b"".join(data),
            "content_md5": content_md5,
            "content_type": content_type,
        }

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_store():
    return FakeBlobStore()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove Azure settings from the environment."""
    for var in list(ENV_VARS) + ["AZURE_UPLOAD_CONFIG"]:
        monkeypatch.delenv(var, raising=False)


def write_file(path: Path, content: str, mtime: float) -> Path:
    """Create a file with the given content and modification time."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def make_file():
    return write_file
