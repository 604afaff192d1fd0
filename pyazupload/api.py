"""Shared HTTP plumbing for the Azure REST clients."""

from __future__ import annotations

import logging
import random
import time
from typing import Any

import httpx

from .exceptions import (
    AuthenticationError,
    AzUploadError,
    NetworkError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ServerError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0
DEFAULT_TIMEOUT = 60.0


class AzureRestClient:
    """Base client with retry logic and status-code mapping.

    Subclasses customise :meth:`_build_request` to add authentication.
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            timeout: Request timeout in seconds (default: 60.0)
            transport: Optional httpx transport (used by tests)
        """
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> AzureRestClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _should_retry(self, exception: Exception, attempt: int) -> bool:
        """Determine if a request should be retried.

        Only transient failures (network, throttling, 5xx) are retried.
        """
        if attempt >= self.max_retries:
            return False
        return isinstance(exception, (NetworkError, RateLimitError, ServerError))

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Exponential backoff with +/- 25% jitter."""
        base_delay = self.retry_delay * (2**attempt)
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def _map_status_error(self, e: httpx.HTTPStatusError) -> AzUploadError:
        """Translate an HTTP error status into our exception taxonomy."""
        response = e.response
        status_code = response.status_code
        detail = ""
        error_code = response.headers.get("x-ms-error-code")
        if error_code:
            detail = f" ({error_code})"

        if status_code == 401:
            return AuthenticationError(f"Authentication failed{detail}")
        if status_code == 403:
            return PermissionDeniedError(f"Access forbidden{detail}")
        if status_code == 404:
            return NotFoundError(f"Resource not found: {response.request.url.path}")
        if status_code == 429:
            return RateLimitError("Rate limit exceeded")
        if 500 <= status_code < 600:
            return ServerError(f"Server error {status_code}{detail}")

        message = f"Request failed with status {status_code}{detail}"
        try:
            if response.content:
                data = response.json()
                if isinstance(data, dict):
                    error = data.get("error")
                    msg = error.get("message") if isinstance(error, dict) else error
                    if msg:
                        message = f"{message}: {msg}"
        except ValueError:
            # Non-JSON error body (e.g. XML from blob storage)
            pass
        return AzUploadError(message)

    def _retry_after(self, response: httpx.Response | None) -> float | None:
        if response is None:
            return None
        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            return float(retry_after)
        return None

    def _build_request(self, method: str, url: str, **kwargs: Any) -> httpx.Request:
        """Build the request to send; subclasses add authentication here."""
        return self._get_client().build_request(method, url, **kwargs)

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request with retry logic.

        The request is rebuilt on every attempt so signatures and
        timestamps stay fresh.

        Returns:
            The successful httpx.Response

        Raises:
            AzUploadError: If the request fails after all retries
        """
        client = self._get_client()
        last_exception: AzUploadError | None = None

        for attempt in range(self.max_retries + 1):
            response: httpx.Response | None = None
            try:
                request = self._build_request(method, url, **kwargs)
                response = client.send(request)
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                error = self._map_status_error(e)
                cause: Exception = e
            except httpx.RequestError as e:
                error = NetworkError(f"Network error: {e}")
                cause = e

            last_exception = error
            if not self._should_retry(error, attempt):
                raise error from cause

            delay = None
            if isinstance(error, RateLimitError):
                delay = self._retry_after(response)
            if delay is None:
                delay = self._calculate_retry_delay(attempt)
            logger.debug(
                "%s %s failed (%s), retrying in %.1fs", method, url, error, delay
            )
            time.sleep(delay)

        if last_exception:
            raise last_exception
        raise AzUploadError("Request failed after all retry attempts")
