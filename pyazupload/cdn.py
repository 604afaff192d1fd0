"""Azure CDN management REST client (content purge only)."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional
from urllib.parse import quote

import httpx

from .api import AzureRestClient
from .exceptions import (
    AuthenticationError,
    AzUploadError,
    ConfigError,
    InvalidResponseError,
)

logger = logging.getLogger(__name__)

LOGIN_URL = "https://login.microsoftonline.com"
MANAGEMENT_URL = "https://management.azure.com"
MANAGEMENT_RESOURCE = "https://management.core.windows.net/"
CDN_API_VERSION = "2019-12-31"

DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_POLL_TIMEOUT = 30 * 60.0

_TERMINAL_STATES = {"succeeded", "failed", "canceled", "cancelled"}


@dataclass
class AccessToken:
    token: str
    expires_on: float

    def is_expired(self, leeway: float = 60.0) -> bool:
        return time.time() + leeway >= self.expires_on


class PurgeOperation:
    """Handle on a submitted purge, resolved by :meth:`wait`."""

    def __init__(
        self,
        client: CdnClient,
        response: httpx.Response,
        sleep: Callable[[float], None] = time.sleep,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_POLL_TIMEOUT,
    ):
        self.client = client
        self.initial_status = response.status_code
        self.async_url = response.headers.get("Azure-AsyncOperation")
        self.location_url = response.headers.get("Location")
        self._initial_retry_after = client._retry_after(response)
        self._sleep = sleep
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.status_code: Optional[int] = None

    @property
    def done(self) -> bool:
        return self.status_code is not None

    def wait(self) -> int:
        """Block until the purge completes and return the final status code.

        Raises:
            AzUploadError: If the provider reports the operation failed
        """
        if self.status_code is not None:
            return self.status_code

        if self.initial_status != 202 or not (self.async_url or self.location_url):
            self.status_code = self.initial_status
            return self.status_code

        deadline = time.monotonic() + self.timeout
        delay = self._initial_retry_after or self.poll_interval
        while True:
            if time.monotonic() > deadline:
                raise AzUploadError("Timed out waiting for purge to complete")
            self._sleep(delay)
            if self.async_url:
                response = self.client._authorized("GET", self.async_url)
                status = self._parse_async_status(response)
                if status in _TERMINAL_STATES:
                    if status != "succeeded":
                        raise AzUploadError(f"Purge operation {status}")
                    self.status_code = response.status_code
                    return self.status_code
            else:
                response = self.client._authorized("GET", self.location_url or "")
                if response.status_code != 202:
                    self.status_code = response.status_code
                    return self.status_code
            delay = self.client._retry_after(response) or self.poll_interval

    @staticmethod
    def _parse_async_status(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError as e:
            raise InvalidResponseError("Invalid async operation response") from e
        status = data.get("status") if isinstance(data, dict) else None
        if not isinstance(status, str):
            raise InvalidResponseError(f"Async operation response has no status: {data}")
        return status.lower()


class CdnClient(AzureRestClient):
    """Client for CDN endpoint purges authenticated as a service principal."""

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        subscription_id: str,
        login_url: str = LOGIN_URL,
        management_url: str = MANAGEMENT_URL,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        missing = [
            name
            for name, value in (
                ("client_id", client_id),
                ("subscription_id", subscription_id),
                ("private_key", client_secret),
                ("tenant_id", tenant_id),
            )
            if not value
        ]
        if missing:
            raise ConfigError.for_missing(missing)
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.subscription_id = subscription_id
        self.login_url = login_url.rstrip("/")
        self.management_url = management_url.rstrip("/")
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._token: Optional[AccessToken] = None

    def _acquire_token(self) -> AccessToken:
        """Fetch a client-credential token for the management API."""
        url = f"{self.login_url}/{quote(self.tenant_id)}/oauth2/token"
        response = self._send(
            "POST",
            url,
            data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "resource": MANAGEMENT_RESOURCE,
            },
        )
        try:
            data = response.json()
            token = data["access_token"]
        except (ValueError, KeyError, TypeError) as e:
            raise AuthenticationError("Token response did not contain access_token") from e
        expires_on = float(data.get("expires_on") or time.time() + 3600)
        logger.debug("Acquired management token for tenant %s", self.tenant_id)
        return AccessToken(token=token, expires_on=expires_on)

    def _get_token(self) -> str:
        if self._token is None or self._token.is_expired():
            self._token = self._acquire_token()
        return self._token.token

    def _authorized(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {self._get_token()}"
        return self._send(method, url, headers=headers, **kwargs)

    def endpoint_url(self, resource_group: str, profile: str, endpoint: str) -> str:
        return (
            f"{self.management_url}/subscriptions/{quote(self.subscription_id)}"
            f"/resourceGroups/{quote(resource_group)}"
            f"/providers/Microsoft.Cdn/profiles/{quote(profile)}"
            f"/endpoints/{quote(endpoint)}"
        )

    def begin_purge(
        self,
        resource_group: str,
        profile: str,
        endpoint: str,
        paths: list[str],
    ) -> PurgeOperation:
        """Submit a purge of ``paths`` and return a handle to await.

        Args:
            resource_group: Resource group of the CDN profile
            profile: CDN profile name
            endpoint: CDN endpoint name
            paths: Absolute content paths (e.g. ``/container/a.css``)
        """
        url = f"{self.endpoint_url(resource_group, profile, endpoint)}/purge"
        response = self._authorized(
            "POST",
            url,
            params={"api-version": CDN_API_VERSION},
            json={"contentPaths": list(paths)},
        )
        logger.debug(
            "Submitted purge of %d path(s) to %s, status %d",
            len(paths),
            endpoint,
            response.status_code,
        )
        return PurgeOperation(
            self, response, sleep=self._sleep, poll_interval=self.poll_interval
        )
