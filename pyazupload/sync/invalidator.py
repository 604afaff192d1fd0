"""Batched, rate-limited CDN cache invalidation."""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from ..cdn import CdnClient
from ..config import (
    CDN_REQUIRED_KEYS,
    DEFAULT_PURGE_BATCH_DELAY,
    DEFAULT_PURGE_BATCH_SIZE,
    Config,
)
from ..exceptions import ConfigError, PurgeBatchError, SyncCancelledError

logger = logging.getLogger(__name__)


def cache_paths(container: str, relative_paths: list[str]) -> list[str]:
    """Turn container-relative blob names into CDN content paths.

    Examples:
        >>> cache_paths("site", ["css/app.css", "index.html"])
        ['/site/css/app.css', '/site/index.html']
    """
    container_dir = f"/{container.strip('/')}/"
    return [container_dir + path.lstrip("/") for path in relative_paths if path]


def chunk_paths(paths: list[str], size: int) -> list[list[str]]:
    """Split ``paths`` into consecutive chunks of at most ``size``."""
    if size < 1:
        raise ValueError("Batch size must be at least 1")
    return [paths[i : i + size] for i in range(0, len(paths), size)]


@dataclass(frozen=True)
class PurgeSettings:
    """Where to purge and how to pace it."""

    resource_group: str
    profile: str
    endpoint: str
    max_batch_size: int = DEFAULT_PURGE_BATCH_SIZE
    batch_delay: float = DEFAULT_PURGE_BATCH_DELAY

    @classmethod
    def from_config(cls, config: Config) -> "PurgeSettings":
        config.require(*CDN_REQUIRED_KEYS)
        return cls(
            resource_group=config.resource_group or "",
            profile=config.profile or "",
            endpoint=config.endpoint or "",
            max_batch_size=config.max_batch_size,
            batch_delay=config.batch_delay,
        )


@dataclass
class PurgeBatchResult:
    index: int
    paths: list[str]
    status_code: int


class CacheInvalidator:
    """Submits purges in fixed-size batches with a pause between them.

    A failing batch stops the sequence; later batches are never submitted.
    """

    def __init__(
        self,
        client: CdnClient,
        settings: PurgeSettings,
        sleep: Optional[Callable[[float], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Initialize cache invalidator.

        Args:
            client: CDN management client
            settings: Target endpoint and pacing
            sleep: Delay function (defaults to an interruptible wait on
                ``cancel_event``)
            cancel_event: Checked before every dispatch and every delay
        """
        self.client = client
        self.settings = settings
        self.cancel_event = cancel_event or threading.Event()
        self._sleep = sleep or self._wait

    @classmethod
    def from_config(cls, config: Config, **kwargs) -> "CacheInvalidator":
        """Build an invalidator, validating every required key up front.

        Raises:
            ConfigError: Naming all missing keys, before any network call
        """
        missing = config.missing(*CDN_REQUIRED_KEYS)
        if missing:
            raise ConfigError.for_missing(missing)
        client = CdnClient(
            tenant_id=config.tenant_id or "",
            client_id=config.client_id or "",
            client_secret=config.private_key or "",
            subscription_id=config.subscription_id or "",
        )
        return cls(client, PurgeSettings.from_config(config), **kwargs)

    def _wait(self, seconds: float) -> None:
        self.cancel_event.wait(seconds)

    def _check_cancelled(self, completed: list[PurgeBatchResult]) -> None:
        if self.cancel_event.is_set():
            raise SyncCancelledError(
                "Purge cancelled", partial=[r.index for r in completed]
            )

    def purge(self, paths: list[str]) -> list[PurgeBatchResult]:
        """Purge ``paths`` batch by batch.

        Args:
            paths: Absolute CDN content paths

        Returns:
            One PurgeBatchResult per submitted batch

        Raises:
            PurgeBatchError: If a batch fails (remaining batches are skipped)
            SyncCancelledError: If cancelled between batches
        """
        settings = self.settings
        batches = chunk_paths(paths, settings.max_batch_size)
        results: list[PurgeBatchResult] = []

        for index, batch in enumerate(batches):
            self._check_cancelled(results)
            logger.info(
                "Purging batch %d/%d (%d paths)", index + 1, len(batches), len(batch)
            )
            try:
                operation = self.client.begin_purge(
                    settings.resource_group,
                    settings.profile,
                    settings.endpoint,
                    batch,
                )
                status_code = operation.wait()
            except Exception as e:
                raise PurgeBatchError(
                    index, e, completed=[r.index for r in results]
                ) from e

            logger.info("Purge batch %d finished with status %d", index + 1, status_code)
            results.append(PurgeBatchResult(index=index, paths=batch, status_code=status_code))

            if index + 1 < len(batches):
                self._check_cancelled(results)
                logger.info(
                    "Waiting %.0fs before the next purge batch", settings.batch_delay
                )
                self._sleep(settings.batch_delay)

        return results
