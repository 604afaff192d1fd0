"""Configuration loading for pyazupload.

Settings are resolved once per run into an immutable :class:`Config`.
Sources are merged in precedence order (first wins):

1. explicit call-site arguments (CLI options)
2. in-process overrides
3. environment variables
4. the user configuration file (``~/.azure_upload.yml`` by default)

Example configuration file::

    client_id: 00000000-0000-0000-0000-000000000000
    subscription_id: 00000000-0000-0000-0000-000000000000
    private_key: client-secret
    tenant_id: 00000000-0000-0000-0000-000000000000
    storage_account: mystorage
    storage_access_key: base64key==
    CDN:
      resource_group: web
      profile: web-cdn
      endpoint: web-endpoint
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from .exceptions import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".azure_upload.yml"
CONFIG_PATH_ENV = "AZURE_UPLOAD_CONFIG"

DEFAULT_PURGE_BATCH_SIZE = 50
DEFAULT_PURGE_BATCH_DELAY = 180.0

# Keys that must be present before any CDN purge request is made
CDN_REQUIRED_KEYS = (
    "resource_group",
    "profile",
    "endpoint",
    "client_id",
    "subscription_id",
    "private_key",
    "tenant_id",
)

STORAGE_REQUIRED_KEYS = ("storage_account",)

ENV_VARS = {
    "AZURE_STORAGE_ACCOUNT": "storage_account",
    "AZURE_STORAGE_ACCESS_KEY": "storage_access_key",
    "AZURE_STORAGE_SAS_TOKEN": "storage_sas_token",
    "AZURE_CLIENT_ID": "client_id",
    "AZURE_SUBSCRIPTION_ID": "subscription_id",
    "AZURE_CLIENT_SECRET": "private_key",
    "AZURE_TENANT_ID": "tenant_id",
}


def _coerce(values: Mapping[str, Any], key: str, kind: type, minimum: float) -> Any:
    """Convert a numeric setting, raising ConfigError when it is invalid."""
    raw = values[key]
    try:
        value = kind(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {key}: {raw!r}") from e
    if value < minimum:
        raise ConfigError(f"Invalid value for {key}: {raw!r} (must be at least {minimum})")
    return value


@dataclass(frozen=True)
class Config:
    """Resolved settings for one run."""

    storage_account: Optional[str] = None
    storage_access_key: Optional[str] = None
    storage_sas_token: Optional[str] = None
    client_id: Optional[str] = None
    subscription_id: Optional[str] = None
    private_key: Optional[str] = None
    tenant_id: Optional[str] = None
    resource_group: Optional[str] = None
    profile: Optional[str] = None
    endpoint: Optional[str] = None
    max_batch_size: int = DEFAULT_PURGE_BATCH_SIZE
    batch_delay: float = DEFAULT_PURGE_BATCH_DELAY

    @classmethod
    def from_sources(cls, *sources: Optional[Mapping[str, Any]]) -> Config:
        """Merge sources, earlier sources taking precedence.

        ``None`` values never override a later source.
        """
        known = {f.name for f in fields(cls)}
        merged: dict[str, Any] = {}
        for source in reversed(sources):
            if not source:
                continue
            for key, value in source.items():
                if key in known and value is not None:
                    merged[key] = value

        if "max_batch_size" in merged:
            merged["max_batch_size"] = _coerce(merged, "max_batch_size", int, minimum=1)
        if "batch_delay" in merged:
            merged["batch_delay"] = _coerce(merged, "batch_delay", float, minimum=0)
        return cls(**merged)

    def missing(self, *keys: str) -> list[str]:
        """Return the keys among ``keys`` that have no value, in order."""
        return [key for key in keys if not getattr(self, key, None)]

    def require(self, *keys: str) -> None:
        """Raise ConfigError naming every missing key."""
        missing = self.missing(*keys)
        if missing:
            raise ConfigError.for_missing(missing)

    def has_storage_credentials(self) -> bool:
        """Check whether a storage account and a key or SAS token are set."""
        return bool(
            self.storage_account
            and (self.storage_access_key or self.storage_sas_token)
        )

    def missing_storage_credentials(self) -> list[str]:
        """List missing storage fields (account, then key or SAS token)."""
        missing = self.missing(*STORAGE_REQUIRED_KEYS)
        if not self.storage_access_key and not self.storage_sas_token:
            missing.append("storage_access_key")
        return missing


def get_config_path() -> Path:
    """Get the configuration file path, honoring AZURE_UPLOAD_CONFIG."""
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / CONFIG_FILE_NAME


def read_config_file(path: Optional[Path] = None) -> dict[str, Any]:
    """Read and flatten the YAML configuration file.

    The nested ``CDN`` mapping is flattened into top-level keys.
    A missing file yields an empty mapping.

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    config_path = path or get_config_path()
    if not config_path.exists():
        logger.debug("No configuration file at %s", config_path)
        return {}

    try:
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read configuration file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {config_path} must contain a mapping")

    flat = {k: v for k, v in data.items() if not isinstance(v, dict)}
    for section in ("CDN", "cdn"):
        cdn = data.get(section)
        if isinstance(cdn, dict):
            flat.update(cdn)
    logger.debug("Loaded configuration keys %s from %s", sorted(flat), config_path)
    return flat


def read_environment(environ: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """Collect settings from AZURE_* environment variables."""
    env = os.environ if environ is None else environ
    return {key: env[var] for var, key in ENV_VARS.items() if env.get(var)}


def load_config(
    explicit: Optional[Mapping[str, Any]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Config:
    """Resolve configuration from all sources.

    Args:
        explicit: Call-site arguments (highest precedence)
        overrides: In-process overrides
        path: Configuration file path (defaults to ``~/.azure_upload.yml``)
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Immutable Config value
    """
    return Config.from_sources(
        explicit,
        overrides,
        read_environment(environ),
        read_config_file(path),
    )
