"""Unit tests for the pyazupload CLI commands."""

import json
from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner

from pyazupload.cli import main
from pyazupload.exceptions import NetworkError, PurgeBatchError, SyncCancelledError
from pyazupload.sync import PurgeBatchResult
from pyazupload.utils import compute_content_md5

STORAGE_CONFIG = """\
storage_account: acct
storage_access_key: a2V5
"""

CDN_CONFIG = """\
client_id: client
subscription_id: sub
private_key: secret
tenant_id: tenant
CDN:
  resource_group: rg
  profile: prof
  endpoint: edge
"""


@pytest.fixture
def runner():
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def write_config(temp_dir):
    def _write(content: str):
        path = temp_dir / "config.yml"
        path.write_text(content)
        return path

    return _write


@pytest.fixture
def site(temp_dir, make_file):
    root = temp_dir / "site"
    make_file(root / "index.html", "<html>", 20)
    make_file(root / "app.css", "body{}", 10)
    return root


class TestMainGroup:
    def test_main_help(self, runner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "upload" in result.output
        assert "purge" in result.output
        assert "config-check" in result.output


@pytest.mark.usefixtures("clean_env")
class TestUploadCommand:
    """Tests for the upload command."""

    def test_missing_storage_credentials(self, runner, site, write_config):
        config = write_config("storage_account: acct\n")

        with patch("pyazupload.cli.BlobStorageClient") as mock_client_class:
            result = runner.invoke(
                main, ["--config", str(config), "upload", "web", str(site)]
            )

        assert result.exit_code == 1
        assert "storage_access_key" in result.output
        mock_client_class.assert_not_called()

    def test_missing_account_and_key_both_reported(self, runner, site, write_config):
        config = write_config("{}\n")

        result = runner.invoke(main, ["--config", str(config), "upload", "web", str(site)])

        assert result.exit_code == 1
        assert "storage_account, storage_access_key" in result.output

    def test_upload_new_files(self, runner, site, write_config, fake_store):
        config = write_config(STORAGE_CONFIG)

        with patch("pyazupload.cli.BlobStorageClient", return_value=fake_store):
            result = runner.invoke(
                main, ["--config", str(config), "upload", "web", str(site)]
            )

        assert result.exit_code == 0, result.output
        assert sorted(fake_store.put_calls) == ["app.css", "index.html"]
        assert "Uploaded 2 of 2 checked file(s)" in result.output
        assert fake_store.closed

    def test_credentials_from_options(self, runner, site, write_config, fake_store):
        config = write_config("{}\n")

        with patch(
            "pyazupload.cli.BlobStorageClient", return_value=fake_store
        ) as mock_client_class:
            result = runner.invoke(
                main,
                [
                    "--config",
                    str(config),
                    "upload",
                    "web",
                    str(site),
                    "--account",
                    "other",
                    "--sas-token",
                    "sv=1&sig=x",
                ],
            )

        assert result.exit_code == 0, result.output
        mock_client_class.assert_called_once_with(
            account="other", access_key=None, sas_token="sv=1&sig=x"
        )

    def test_dry_run_uploads_nothing(self, runner, site, write_config, fake_store):
        config = write_config(STORAGE_CONFIG)

        with patch("pyazupload.cli.BlobStorageClient", return_value=fake_store):
            result = runner.invoke(
                main, ["--config", str(config), "upload", "web", str(site), "--dry-run"]
            )

        assert result.exit_code == 0, result.output
        assert fake_store.put_calls == []
        assert "Would upload 2 of 2" in result.output

    def test_entry_errors_exit_nonzero(self, runner, site, write_config, fake_store):
        config = write_config(STORAGE_CONFIG)
        fake_store.fail_on.add("app.css")

        with patch("pyazupload.cli.BlobStorageClient", return_value=fake_store):
            result = runner.invoke(
                main, ["--config", str(config), "upload", "web", str(site)]
            )

        assert result.exit_code == 1
        assert "app.css" in result.output
        assert fake_store.put_calls == ["index.html"]

    def test_cancelled_walk_exits_130(self, runner, site, write_config, fake_store):
        config = write_config(STORAGE_CONFIG)

        with patch("pyazupload.cli.BlobStorageClient", return_value=fake_store), patch(
            "pyazupload.cli.TreeWalker"
        ) as mock_walker_class:
            mock_walker_class.return_value.walk.side_effect = SyncCancelledError(
                partial=["index.html"]
            )
            result = runner.invoke(
                main, ["--config", str(config), "upload", "web", str(site)]
            )

        assert result.exit_code == 130
        assert "Upload cancelled by user" in result.output
        assert "updated before cancel: index.html" in result.output
        assert fake_store.closed

    def test_json_output(self, runner, site, write_config, fake_store):
        config = write_config(STORAGE_CONFIG)
        fake_store.seed("index.html", "c3RhbGU=")
        fake_store.seed("app.css", compute_content_md5(site / "app.css"))

        with patch("pyazupload.cli.BlobStorageClient", return_value=fake_store):
            result = runner.invoke(
                main, ["--json", "--config", str(config), "upload", "web", str(site)]
            )

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["changed_paths"] == ["index.html"]
        assert data["checked"] == 2
        assert data["uploaded"] == 1
        assert data["errors"] == []

    def test_bust_cache_requires_cdn_config_before_upload(
        self, runner, site, write_config
    ):
        config = write_config(STORAGE_CONFIG + "client_id: client\n")

        with patch("pyazupload.cli.BlobStorageClient") as mock_client_class:
            result = runner.invoke(
                main,
                ["--config", str(config), "upload", "web", str(site), "--bust-cache"],
            )

        assert result.exit_code == 1
        assert "resource_group" in result.output
        assert "tenant_id" in result.output
        mock_client_class.assert_not_called()

    def test_invalid_purge_batch_size_rejected_before_upload(
        self, runner, site, write_config
    ):
        config = write_config(STORAGE_CONFIG + CDN_CONFIG + "  max_batch_size: 0\n")

        with patch("pyazupload.cli.BlobStorageClient") as mock_client_class:
            result = runner.invoke(
                main,
                ["--config", str(config), "upload", "web", str(site), "--bust-cache"],
            )

        assert result.exit_code == 1
        assert "Invalid value for max_batch_size" in result.output
        mock_client_class.assert_not_called()

    def test_bust_cache_purges_overwritten_paths(
        self, runner, site, write_config, fake_store
    ):
        config = write_config(STORAGE_CONFIG + CDN_CONFIG)
        fake_store.seed("index.html", "c3RhbGU=")
        invalidator = Mock()
        invalidator.purge.return_value = [
            PurgeBatchResult(index=0, paths=["/web/index.html"], status_code=200)
        ]

        with patch("pyazupload.cli.BlobStorageClient", return_value=fake_store), patch(
            "pyazupload.cli.CacheInvalidator"
        ) as mock_invalidator_class:
            mock_invalidator_class.from_config.return_value = invalidator
            result = runner.invoke(
                main,
                ["--config", str(config), "upload", "web", str(site), "--bust-cache"],
            )

        assert result.exit_code == 0, result.output
        invalidator.purge.assert_called_once_with(["/web/index.html"])
        config_used = mock_invalidator_class.from_config.call_args.args[0]
        assert config_used.endpoint == "edge"

    def test_bust_cache_with_nothing_changed(
        self, runner, site, write_config, fake_store
    ):
        config = write_config(STORAGE_CONFIG + CDN_CONFIG)

        with patch("pyazupload.cli.BlobStorageClient", return_value=fake_store), patch(
            "pyazupload.cli.CacheInvalidator"
        ) as mock_invalidator_class:
            result = runner.invoke(
                main,
                ["--config", str(config), "upload", "web", str(site), "--bust-cache"],
            )

        assert result.exit_code == 0, result.output
        assert "No changed paths to purge" in result.output
        mock_invalidator_class.from_config.assert_not_called()

    def test_directory_must_exist(self, runner, temp_dir):
        result = runner.invoke(main, ["upload", "web", str(temp_dir / "missing")])
        assert result.exit_code == 2


@pytest.mark.usefixtures("clean_env")
class TestPurgeCommand:
    """Tests for the purge command."""

    def test_purge_paths(self, runner, write_config):
        config = write_config(CDN_CONFIG)
        invalidator = Mock()
        invalidator.purge.return_value = [
            PurgeBatchResult(index=0, paths=["/web/a.css"], status_code=200)
        ]

        with patch("pyazupload.cli.CacheInvalidator") as mock_invalidator_class:
            mock_invalidator_class.from_config.return_value = invalidator
            result = runner.invoke(
                main, ["--config", str(config), "purge", "web", "a.css", "img/b.png"]
            )

        assert result.exit_code == 0, result.output
        invalidator.purge.assert_called_once_with(["/web/a.css", "/web/img/b.png"])
        assert "status 200" in result.output

    def test_purge_option_overrides_file(self, runner, write_config):
        config = write_config(CDN_CONFIG)

        with patch("pyazupload.cli.CacheInvalidator") as mock_invalidator_class:
            mock_invalidator_class.from_config.return_value.purge.return_value = []
            runner.invoke(
                main,
                ["--config", str(config), "purge", "web", "a", "--endpoint", "other"],
            )

        config_used = mock_invalidator_class.from_config.call_args.args[0]
        assert config_used.endpoint == "other"
        assert config_used.profile == "prof"

    def test_purge_missing_tenant(self, runner, write_config):
        config = write_config(CDN_CONFIG.replace("tenant_id: tenant\n", ""))

        with patch("pyazupload.cli.CacheInvalidator") as mock_invalidator_class:
            result = runner.invoke(main, ["--config", str(config), "purge", "web", "a"])

        assert result.exit_code == 1
        assert "missing: tenant_id" in result.output
        mock_invalidator_class.from_config.assert_not_called()

    def test_purge_batch_failure(self, runner, write_config):
        config = write_config(CDN_CONFIG)
        invalidator = Mock()
        invalidator.purge.side_effect = PurgeBatchError(1, NetworkError("reset"), [0])

        with patch("pyazupload.cli.CacheInvalidator") as mock_invalidator_class:
            mock_invalidator_class.from_config.return_value = invalidator
            result = runner.invoke(main, ["--config", str(config), "purge", "web", "a"])

        assert result.exit_code == 1
        assert "Purge batch 2 failed" in result.output
        assert "Completed batches: 1" in result.output


@pytest.mark.usefixtures("clean_env")
class TestConfigCheckCommand:
    def test_all_configured(self, runner, write_config):
        config = write_config(STORAGE_CONFIG + CDN_CONFIG)

        result = runner.invoke(main, ["--config", str(config), "config-check"])

        assert result.exit_code == 0
        assert "Storage credentials configured" in result.output
        assert "CDN purge configured" in result.output

    def test_reports_missing(self, runner, write_config):
        config = write_config(STORAGE_CONFIG)

        result = runner.invoke(main, ["--json", "--config", str(config), "config-check"])

        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["storage_missing"] == []
        assert "tenant_id" in data["cdn_missing"]

    def test_malformed_config_file(self, runner, write_config):
        config = write_config("client_id: [unclosed\n")

        result = runner.invoke(main, ["--config", str(config), "config-check"])

        assert result.exit_code == 1
        assert "Failed to read configuration file" in result.output
