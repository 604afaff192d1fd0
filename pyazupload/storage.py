"""Azure Blob Storage REST client."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from email.utils import formatdate
from pathlib import Path
from typing import Any, Iterator, Optional, Union
from urllib.parse import quote

import httpx

from .api import AzureRestClient
from .exceptions import ConfigError, UploadError
from .utils import UPLOAD_CHUNK_SIZE

logger = logging.getLogger(__name__)

API_VERSION = "2020-10-02"

# Standard headers that take part in the Shared Key string-to-sign, in order
_SIGNED_HEADERS = (
    "Content-Encoding",
    "Content-Language",
    "Content-Length",
    "Content-MD5",
    "Content-Type",
    "Date",
    "If-Modified-Since",
    "If-Match",
    "If-None-Match",
    "If-Unmodified-Since",
    "Range",
)


@dataclass
class BlobProperties:
    """Properties of a remote blob as returned by a HEAD request."""

    name: str
    """Blob name (container-relative path)"""

    content_md5: Optional[str]
    """Base64 MD5 stored on the blob, if any"""

    content_type: Optional[str] = None
    content_length: Optional[int] = None
    last_modified: Optional[str] = None

    @classmethod
    def from_headers(cls, name: str, headers: httpx.Headers) -> BlobProperties:
        length = headers.get("Content-Length")
        return cls(
            name=name,
            content_md5=headers.get("Content-MD5"),
            content_type=headers.get("Content-Type"),
            content_length=int(length) if length and length.isdigit() else None,
            last_modified=headers.get("Last-Modified"),
        )


def sign_request(request: httpx.Request, account: str, access_key: str) -> None:
    """Add a Shared Key ``Authorization`` header to ``request`` in place."""
    headers = request.headers

    standard = []
    for name in _SIGNED_HEADERS:
        value = headers.get(name, "")
        if name == "Content-Length" and value == "0":
            value = ""
        standard.append(value)

    ms_headers = sorted(
        (k.lower(), v.strip()) for k, v in headers.items() if k.lower().startswith("x-ms-")
    )
    canonical_headers = "".join(f"{k}:{v}\n" for k, v in ms_headers)

    canonical_resource = f"/{account}{request.url.raw_path.decode('ascii').split('?')[0]}"
    params: dict[str, list[str]] = {}
    for key, value in request.url.params.multi_items():
        params.setdefault(key.lower(), []).append(value)
    for key in sorted(params):
        canonical_resource += f"\n{key}:{','.join(sorted(params[key]))}"

    string_to_sign = (
        request.method.upper()
        + "\n"
        + "\n".join(standard)
        + "\n"
        + canonical_headers
        + canonical_resource
    )
    digest = hmac.new(
        base64.b64decode(access_key),
        string_to_sign.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    signature = base64.b64encode(digest).decode("ascii")
    headers["Authorization"] = f"SharedKey {account}:{signature}"


class FileBody:
    """Upload body that streams a local file in chunks.

    Each iteration reopens the file, so a retried request sends the whole
    content again.
    """

    def __init__(self, path: Path, chunk_size: int = UPLOAD_CHUNK_SIZE):
        self.path = Path(path)
        self.chunk_size = chunk_size
        self.size = self.path.stat().st_size

    def __len__(self) -> int:
        return self.size

    def __iter__(self) -> Iterator[bytes]:
        with open(self.path, "rb") as f:
            while True:
                chunk = f.read(self.chunk_size)
                if not chunk:
                    break
                yield chunk


class BlobStorageClient(AzureRestClient):
    """Minimal client for the blob operations a sync needs.

    Authenticates with a SAS token when one is given, otherwise with the
    account's Shared Key.
    """

    def __init__(
        self,
        account: str,
        access_key: Optional[str] = None,
        sas_token: Optional[str] = None,
        endpoint: Optional[str] = None,
        **kwargs: Any,
    ):
        """Initialize the storage client.

        Args:
            account: Storage account name
            access_key: Base64 account key (Shared Key auth)
            sas_token: SAS token query string (takes precedence over access_key)
            endpoint: Blob service URL (defaults to the public Azure endpoint)
            **kwargs: Passed to AzureRestClient
        """
        super().__init__(**kwargs)
        if not account:
            raise ConfigError.for_missing(["storage_account"])
        if not access_key and not sas_token:
            raise ConfigError.for_missing(["storage_access_key"])
        self.account = account
        self.access_key = access_key
        self.sas_token = sas_token.lstrip("?") if sas_token else None
        self.endpoint = (endpoint or f"https://{account}.blob.core.windows.net").rstrip("/")

    def blob_url(self, container: str, name: str) -> str:
        """Build the URL of a blob."""
        return f"{self.endpoint}/{quote(container)}/{quote(name, safe='/')}"

    def _build_request(self, method: str, url: str, **kwargs: Any) -> httpx.Request:
        headers = dict(kwargs.pop("headers", None) or {})
        headers["x-ms-version"] = API_VERSION
        headers["x-ms-date"] = formatdate(usegmt=True)
        if self.sas_token:
            url = f"{url}?{self.sas_token}"
        request = super()._build_request(method, url, headers=headers, **kwargs)
        if not self.sas_token:
            sign_request(request, self.account, self.access_key or "")
        return request

    def get_blob_properties(self, container: str, name: str) -> BlobProperties:
        """Fetch the properties of a blob.

        Raises:
            NotFoundError: If the blob does not exist
            AzUploadError: For any other failure
        """
        response = self._send("HEAD", self.blob_url(container, name))
        return BlobProperties.from_headers(name, response.headers)

    def put_blob(
        self,
        container: str,
        name: str,
        data: Union[bytes, FileBody],
        content_md5: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> None:
        """Create or overwrite a block blob with ``data``.

        Args:
            container: Container name
            name: Blob name
            data: Blob content, as bytes or a FileBody streamed from disk
            content_md5: Base64 MD5 stored as the blob's Content-MD5 property
            content_type: MIME type stored on the blob
        """
        headers = {"x-ms-blob-type": "BlockBlob"}
        if content_md5:
            headers["x-ms-blob-content-md5"] = content_md5
        if content_type:
            headers["x-ms-blob-content-type"] = content_type
        if isinstance(data, FileBody):
            # Block blobs reject chunked transfer encoding
            headers["Content-Length"] = str(len(data))

        response = self._send(
            "PUT", self.blob_url(container, name), headers=headers, content=data
        )
        if response.status_code != 201:
            raise UploadError(
                f"Unexpected status {response.status_code} uploading {name}"
            )
        logger.debug("Uploaded %s/%s (%d bytes)", container, name, len(data))
