"""
Configuration management for tipsync stores.

The configuration is stored as a TOML file in the store directory.
It names the remote document store and controls sync behaviour.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import tomli_w


CONFIG_FILENAME = "tipsync.toml"
CONFIG_VERSION = 1
DATABASE_FILENAME = "tipsync.db"


def get_default_store_path() -> Path:
    """Store directory from TIPSYNC_STORE_PATH, else ~/.tipsync."""
    env = os.environ.get("TIPSYNC_STORE_PATH")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".tipsync"


@dataclass
class RemoteConfig:
    """Where and how to reach the remote document store."""
    backend: str = "http"
    api_url: str = ""
    api_key: str = ""
    project: Optional[str] = None
    timeout: float = 30.0
    tips_collection: str = "tips"
    users_collection: str = "users"

    @property
    def configured(self) -> bool:
        if self.backend != "http":
            return True
        return bool(self.api_url and self.api_key)


@dataclass
class SyncConfig:
    """Sync behaviour switches."""
    push_on_write: bool = True
    repair_after_pull: bool = True


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> Path:
        """Path to the SQLite cache."""
        return self.path / DATABASE_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def _apply_env_overrides(config: StoreConfig) -> StoreConfig:
    """Let TIPSYNC_API_URL / TIPSYNC_API_KEY override the file."""
    api_url = os.environ.get("TIPSYNC_API_URL")
    api_key = os.environ.get("TIPSYNC_API_KEY")
    if api_url:
        config.remote.api_url = api_url
    if api_key:
        config.remote.api_key = api_key
    return config


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config {config_path}: {e}") from e

    # Validate version
    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    remote_data = data.get("remote", {})
    defaults = RemoteConfig()
    remote = RemoteConfig(
        backend=remote_data.get("backend", defaults.backend),
        api_url=remote_data.get("api_url", ""),
        api_key=remote_data.get("api_key", ""),
        project=remote_data.get("project") or None,
        timeout=float(remote_data.get("timeout", defaults.timeout)),
        tips_collection=remote_data.get("tips_collection", defaults.tips_collection),
        users_collection=remote_data.get("users_collection", defaults.users_collection),
    )

    sync_data = data.get("sync", {})
    sync = SyncConfig(
        push_on_write=bool(sync_data.get("push_on_write", True)),
        repair_after_pull=bool(sync_data.get("repair_after_pull", True)),
    )

    return _apply_env_overrides(StoreConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        remote=remote,
        sync=sync,
    ))


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    remote = {
        "backend": config.remote.backend,
        "api_url": config.remote.api_url,
        "api_key": config.remote.api_key,
        "timeout": config.remote.timeout,
        "tips_collection": config.remote.tips_collection,
        "users_collection": config.remote.users_collection,
    }
    if config.remote.project:
        remote["project"] = config.remote.project

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "remote": remote,
        "sync": {
            "push_on_write": config.sync.push_on_write,
            "repair_after_pull": config.sync.repair_after_pull,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    else:
        config = StoreConfig(path=store_path)
        save_config(config)
        return _apply_env_overrides(config)
