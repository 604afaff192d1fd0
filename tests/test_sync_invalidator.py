"""Tests for the batched CDN cache invalidator."""

import threading
from unittest.mock import Mock, call

import pytest

from pyazupload.cdn import CdnClient
from pyazupload.config import Config
from pyazupload.exceptions import (
    ConfigError,
    NetworkError,
    PurgeBatchError,
    SyncCancelledError,
)
from pyazupload.sync.invalidator import (
    CacheInvalidator,
    PurgeSettings,
    cache_paths,
    chunk_paths,
)

FULL_CDN_CONFIG = {
    "client_id": "client",
    "subscription_id": "sub",
    "private_key": "secret",
    "tenant_id": "tenant",
    "resource_group": "rg",
    "profile": "prof",
    "endpoint": "edge",
}


@pytest.fixture
def cdn_client():
    client = Mock(spec=CdnClient)
    operation = Mock()
    operation.wait.return_value = 200
    client.begin_purge.return_value = operation
    return client


@pytest.fixture
def settings():
    return PurgeSettings(resource_group="rg", profile="prof", endpoint="edge")


class TestHelpers:
    def test_cache_paths_prefix_container(self):
        assert cache_paths("site", ["a.css", "img/b.png"]) == [
            "/site/a.css",
            "/site/img/b.png",
        ]

    def test_cache_paths_drops_empty(self):
        assert cache_paths("/site/", ["", "a"]) == ["/site/a"]

    def test_chunk_paths(self):
        chunks = chunk_paths([str(i) for i in range(7)], 3)
        assert [len(c) for c in chunks] == [3, 3, 1]

    def test_chunk_paths_rejects_zero(self):
        with pytest.raises(ValueError):
            chunk_paths(["a"], 0)


class TestCacheInvalidator:
    """Tests for CacheInvalidator.purge."""

    def test_120_paths_make_three_batches_with_two_delays(self, cdn_client, settings):
        sleep = Mock()
        paths = [f"/site/{i}" for i in range(120)]
        invalidator = CacheInvalidator(cdn_client, settings, sleep=sleep)

        results = invalidator.purge(paths)

        sizes = [len(c.args[3]) for c in cdn_client.begin_purge.call_args_list]
        assert sizes == [50, 50, 20]
        assert sleep.call_args_list == [call(180.0), call(180.0)]
        assert [r.index for r in results] == [0, 1, 2]
        assert all(r.status_code == 200 for r in results)

    def test_batches_preserve_order(self, cdn_client, settings):
        paths = [f"/site/{i}" for i in range(60)]

        CacheInvalidator(cdn_client, settings, sleep=Mock()).purge(paths)

        first, second = cdn_client.begin_purge.call_args_list
        assert first.args[:3] == ("rg", "prof", "edge")
        assert first.args[3] + second.args[3] == paths

    def test_single_batch_has_no_delay(self, cdn_client, settings):
        sleep = Mock()

        CacheInvalidator(cdn_client, settings, sleep=sleep).purge(["/site/a"])

        cdn_client.begin_purge.assert_called_once()
        sleep.assert_not_called()

    def test_no_paths_no_requests(self, cdn_client, settings):
        assert CacheInvalidator(cdn_client, settings, sleep=Mock()).purge([]) == []
        cdn_client.begin_purge.assert_not_called()

    def test_custom_batch_size_and_delay(self, cdn_client):
        sleep = Mock()
        settings = PurgeSettings("rg", "prof", "edge", max_batch_size=2, batch_delay=5)

        CacheInvalidator(cdn_client, settings, sleep=sleep).purge(["a", "b", "c"])

        assert cdn_client.begin_purge.call_count == 2
        sleep.assert_called_once_with(5)

    def test_failed_batch_halts_remaining(self, cdn_client, settings):
        ok = Mock()
        ok.wait.return_value = 202
        cdn_client.begin_purge.side_effect = [ok, NetworkError("reset"), ok]
        sleep = Mock()
        paths = [f"/site/{i}" for i in range(120)]

        with pytest.raises(PurgeBatchError) as exc_info:
            CacheInvalidator(cdn_client, settings, sleep=sleep).purge(paths)

        assert exc_info.value.batch_index == 1
        assert exc_info.value.completed == [0]
        assert isinstance(exc_info.value.cause, NetworkError)
        assert cdn_client.begin_purge.call_count == 2
        assert sleep.call_count == 1

    def test_failed_wait_is_a_batch_error(self, cdn_client, settings):
        cdn_client.begin_purge.return_value.wait.side_effect = NetworkError("down")

        with pytest.raises(PurgeBatchError, match="Purge batch 1 failed"):
            CacheInvalidator(cdn_client, settings, sleep=Mock()).purge(["/a"])

    def test_cancel_before_start(self, cdn_client, settings):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(SyncCancelledError):
            CacheInvalidator(
                cdn_client, settings, sleep=Mock(), cancel_event=cancel
            ).purge(["/a"])

        cdn_client.begin_purge.assert_not_called()

    def test_cancel_during_delay_stops_next_batch(self, cdn_client, settings):
        cancel = threading.Event()
        sleep = Mock(side_effect=lambda seconds: cancel.set())
        paths = [f"/site/{i}" for i in range(120)]

        with pytest.raises(SyncCancelledError) as exc_info:
            CacheInvalidator(
                cdn_client, settings, sleep=sleep, cancel_event=cancel
            ).purge(paths)

        assert cdn_client.begin_purge.call_count == 1
        assert exc_info.value.partial == [0]

    def test_default_sleep_waits_on_cancel_event(self, cdn_client):
        cancel = threading.Event()
        cancel.set()
        settings = PurgeSettings("rg", "prof", "edge", max_batch_size=1, batch_delay=60)
        invalidator = CacheInvalidator(cdn_client, settings, cancel_event=cancel)

        # Returns immediately because the event is already set
        invalidator._sleep(60)


class TestFromConfig:
    """Configuration validation before any network call."""

    def test_missing_tenant_only(self):
        values = dict(FULL_CDN_CONFIG)
        del values["tenant_id"]

        with pytest.raises(ConfigError) as exc_info:
            CacheInvalidator.from_config(Config.from_sources(values))

        assert exc_info.value.missing == ["tenant_id"]

    def test_lists_every_missing_field(self):
        with pytest.raises(ConfigError) as exc_info:
            CacheInvalidator.from_config(Config(client_id="client"))

        assert exc_info.value.missing == [
            "resource_group",
            "profile",
            "endpoint",
            "subscription_id",
            "private_key",
            "tenant_id",
        ]

    def test_complete_config_builds_invalidator(self):
        config = Config.from_sources(
            FULL_CDN_CONFIG, {"max_batch_size": 10, "batch_delay": 1}
        )

        invalidator = CacheInvalidator.from_config(config, sleep=Mock())

        assert invalidator.settings == PurgeSettings("rg", "prof", "edge", 10, 1.0)
        assert isinstance(invalidator.client, CdnClient)
        assert invalidator.client.tenant_id == "tenant"
