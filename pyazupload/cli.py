"""CLI interface for Azure Upload."""

import logging
import threading
from pathlib import Path
from typing import Any, Optional

import click
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn

from .config import CDN_REQUIRED_KEYS, Config, load_config
from .exceptions import AzUploadError, ConfigError, PurgeBatchError, SyncCancelledError
from .output import OutputFormatter
from .storage import BlobStorageClient
from .sync import CacheInvalidator, TreeWalker, Uploader, UploadResult, cache_paths
from .utils import DEFAULT_MAX_WORKERS

logger = logging.getLogger(__name__)


def _load_config(ctx: Any, **explicit: Any) -> Config:
    """Resolve configuration, exiting with status 1 if the file is unreadable."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        return load_config(explicit=explicit, path=ctx.obj["config_path"])
    except ConfigError as e:
        out.error(str(e))
        ctx.exit(1)
        raise


def _require_cdn_config(ctx: Any, config: Config) -> None:
    """Exit with status 1 naming every missing CDN setting."""
    out: OutputFormatter = ctx.obj["out"]
    missing = config.missing(*CDN_REQUIRED_KEYS)
    if missing:
        logger.error("Missing CDN configuration: %s", ", ".join(missing))
        out.error(f"Cache purge not configured, missing: {', '.join(missing)}")
        ctx.exit(1)


def _run_purge(ctx: Any, config: Config, paths: list[str]) -> None:
    out: OutputFormatter = ctx.obj["out"]
    if not paths:
        out.info("No changed paths to purge.")
        return

    out.info(f"Purging {len(paths)} path(s) from the CDN...")
    try:
        invalidator = CacheInvalidator.from_config(config)
        results = invalidator.purge(paths)
    except PurgeBatchError as e:
        out.error(f"Cache purge failed: {e}")
        if e.completed:
            out.error(f"Completed batches: {', '.join(str(i + 1) for i in e.completed)}")
        ctx.exit(1)
    except ConfigError as e:
        out.error(f"Cache purge not configured: {e}")
        ctx.exit(1)

    for result in results:
        out.info(f"Batch {result.index + 1}: status {result.status_code}")
    out.success(f"Purged {len(paths)} path(s)")


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file (default: ~/.azure_upload.yml)",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="pyazupload")
@click.pass_context
def main(
    ctx: Any,
    config_path: Optional[Path],
    quiet: bool,
    json: bool,
    verbose: bool,
) -> None:
    """Azure Upload - sync a directory to Azure Blob Storage and purge the CDN."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pyazupload").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command()
@click.argument("container")
@click.argument(
    "directory",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
)
@click.option(
    "--process-all",
    is_flag=True,
    help="Check every file instead of stopping at already-synced ones",
)
@click.option(
    "--workers",
    "-w",
    type=click.IntRange(min=1),
    default=DEFAULT_MAX_WORKERS,
    show_default=True,
    help="Entries processed concurrently per directory batch",
)
@click.option("--dry-run", is_flag=True, help="Show what would be uploaded")
@click.option(
    "--bust-cache",
    is_flag=True,
    help="Purge overwritten paths from the CDN after uploading",
)
@click.option("--resource-group", help="CDN resource group")
@click.option("--profile", help="CDN profile name")
@click.option("--endpoint", help="CDN endpoint name")
@click.option("--batch-delay", type=float, help="Seconds to wait between purge batches")
@click.option("--account", help="Storage account name")
@click.option("--access-key", help="Storage account access key")
@click.option("--sas-token", help="Storage SAS token")
@click.pass_context
def upload(  # noqa: C901
    ctx: Any,
    container: str,
    directory: Path,
    process_all: bool,
    workers: int,
    dry_run: bool,
    bust_cache: bool,
    resource_group: Optional[str],
    profile: Optional[str],
    endpoint: Optional[str],
    batch_delay: Optional[float],
    account: Optional[str],
    access_key: Optional[str],
    sas_token: Optional[str],
) -> None:
    """Upload changed files from DIRECTORY to CONTAINER.

    Files are compared by MD5 with the blobs already in the container, so
    only changed content is transferred.

    Examples:
        pyazupload upload site ./public
        pyazupload upload site ./public --bust-cache
    """
    out: OutputFormatter = ctx.obj["out"]
    config = _load_config(
        ctx,
        storage_account=account,
        storage_access_key=access_key,
        storage_sas_token=sas_token,
        resource_group=resource_group,
        profile=profile,
        endpoint=endpoint,
        batch_delay=batch_delay,
    )

    missing = config.missing_storage_credentials()
    if missing:
        logger.error("Missing storage credentials: %s", ", ".join(missing))
        out.error(f"Missing storage credentials: {', '.join(missing)}")
        ctx.exit(1)

    if bust_cache and not dry_run:
        _require_cdn_config(ctx, config)

    client = BlobStorageClient(
        account=config.storage_account or "",
        access_key=config.storage_access_key,
        sas_token=config.storage_sas_token,
    )
    uploader = Uploader(client, container, dry_run=dry_run)
    cancel_event = threading.Event()

    out.info(f"Syncing: {directory} -> {container}")
    if dry_run:
        out.info("Dry run: No changes will be made")

    counts = {"checked": 0, "uploaded": 0}
    counts_lock = threading.Lock()

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            disable=out.quiet or out.json_output,
        ) as progress:
            task = progress.add_task("Scanning...", total=None)

            def on_result(relative_path: str, result: UploadResult) -> None:
                with counts_lock:
                    counts["checked"] += 1
                    if result.changed:
                        counts["uploaded"] += 1
                progress.update(
                    task,
                    description=(
                        f"Checked {counts['checked']}, "
                        f"uploaded {counts['uploaded']}: {escape(relative_path)}"
                    ),
                )

            walker = TreeWalker(
                uploader,
                max_workers=workers,
                process_all=process_all,
                cancel_event=cancel_event,
                on_result=on_result,
            )
            result = walker.walk(directory)
    except SyncCancelledError as e:
        out.warning("Upload cancelled by user")
        for path in e.partial:
            out.info(f"  updated before cancel: {path}")
        ctx.exit(130)
    except KeyboardInterrupt:
        cancel_event.set()
        out.warning("Upload cancelled by user")
        ctx.exit(130)
    except (AzUploadError, OSError, ValueError) as e:
        out.error(f"Upload failed: {e}")
        ctx.exit(1)
    finally:
        client.close()

    if out.json_output:
        out.output_json(
            {
                "container": container,
                "checked": counts["checked"],
                "uploaded": counts["uploaded"],
                "changed_paths": result.changed_paths,
                "errors": [{"path": e.path, "error": str(e.cause)} for e in result.errors],
                "dry_run": dry_run,
            }
        )
    else:
        verb = "Would upload" if dry_run else "Uploaded"
        out.success(
            f"{verb} {counts['uploaded']} of {counts['checked']} checked file(s)"
        )
        for path in result.changed_paths:
            out.info(f"  updated: {path}")

    if bust_cache and not dry_run:
        _run_purge(ctx, config, cache_paths(container, result.changed_paths))

    if result.errors:
        for error in result.errors:
            out.error(f"Failed: {error.path}: {error.cause}")
        out.error(f"{len(result.errors)} entr(ies) failed to sync")
        ctx.exit(1)


@main.command()
@click.argument("container")
@click.argument("paths", nargs=-1, required=True)
@click.option("--resource-group", help="CDN resource group")
@click.option("--profile", help="CDN profile name")
@click.option("--endpoint", help="CDN endpoint name")
@click.option("--batch-delay", type=float, help="Seconds to wait between purge batches")
@click.pass_context
def purge(
    ctx: Any,
    container: str,
    paths: tuple[str, ...],
    resource_group: Optional[str],
    profile: Optional[str],
    endpoint: Optional[str],
    batch_delay: Optional[float],
) -> None:
    """Purge container-relative PATHS from the CDN.

    Examples:
        pyazupload purge site index.html css/app.css
    """
    config = _load_config(
        ctx,
        resource_group=resource_group,
        profile=profile,
        endpoint=endpoint,
        batch_delay=batch_delay,
    )
    _require_cdn_config(ctx, config)
    _run_purge(ctx, config, cache_paths(container, list(paths)))


@main.command("config-check")
@click.pass_context
def config_check(ctx: Any) -> None:
    """Report which configuration settings are missing."""
    out: OutputFormatter = ctx.obj["out"]
    config = _load_config(ctx)

    storage_missing = config.missing_storage_credentials()
    cdn_missing = config.missing(*CDN_REQUIRED_KEYS)

    if out.json_output:
        out.output_json({"storage_missing": storage_missing, "cdn_missing": cdn_missing})
    else:
        if storage_missing:
            out.warning(f"Storage missing: {', '.join(storage_missing)}")
        else:
            out.success("Storage credentials configured")
        if cdn_missing:
            out.warning(f"CDN missing: {', '.join(cdn_missing)}")
        else:
            out.success("CDN purge configured")

    if storage_missing or cdn_missing:
        ctx.exit(1)


if __name__ == "__main__":
    main()
