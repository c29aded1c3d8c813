"""
Application composition root.

Builds every long-lived component exactly once from a StoreConfig: the
SQLite stores, the remote document store client, the sync engine and the
repositories. Callers hold the TipsApp and close it on shutdown.

The remote backend is chosen by ``[remote] backend``. ``"http"`` (the
default) uses HttpDocumentStore. Other names are loaded from the
``tipsync.remotes`` entry point group. External backend packages provide
a factory function::

    def create_remote(config: RemoteConfig) -> RemoteDocumentStoreProtocol:
        ...

and register it in their pyproject.toml::

    [project.entry-points."tipsync.remotes"]
    my-backend = "my_package.remote:create_remote"
"""

import logging
from pathlib import Path
from typing import Optional

from .config import RemoteConfig, StoreConfig, get_default_store_path, load_or_create_config
from .protocol import RemoteDocumentStoreProtocol
from .repository import TipRepository, UserRepository
from .sync import SyncEngine
from .tip_store import TipStore
from .user_store import UserStore

logger = logging.getLogger(__name__)


def create_remote(config: RemoteConfig) -> Optional[RemoteDocumentStoreProtocol]:
    """
    Create the remote document store client, or None if not configured.
    """
    if not config.configured:
        logger.info("No remote store configured; running offline")
        return None
    if config.backend == "http":
        from .remote import HttpDocumentStore
        return HttpDocumentStore(
            config.api_url,
            config.api_key,
            project=config.project,
            timeout=config.timeout,
        )
    return _load_backend(config.backend, config)


def _load_backend(name: str, config: RemoteConfig) -> RemoteDocumentStoreProtocol:
    """Load a remote backend by entry point name."""
    from importlib.metadata import entry_points

    eps = entry_points(group="tipsync.remotes")
    for ep in eps:
        if ep.name == name:
            factory = ep.load()
            return factory(config)

    available = [ep.name for ep in eps]
    if available:
        raise ValueError(
            f"Unknown remote backend: {name!r}. Available: {available}"
        )
    raise ValueError(
        f"Unknown remote backend: {name!r}. No backends registered."
    )


class TipsApp:
    """
    The wired-up application.

    Args:
        config: store configuration
        remote: override the configured remote (tests, embedding apps)
    """

    def __init__(
        self,
        config: StoreConfig,
        *,
        remote: Optional[RemoteDocumentStoreProtocol] = None,
    ):
        self.config = config
        self.tip_store = TipStore(config.database_path)
        self.user_store = UserStore(config.database_path)
        self.remote = remote if remote is not None else create_remote(config.remote)
        self.engine = SyncEngine(
            self.tip_store,
            self.remote,
            tips_collection=config.remote.tips_collection,
            users_collection=config.remote.users_collection,
        )
        self.users = UserRepository(self.user_store, self.engine, self.tip_store)
        self.tips = TipRepository(
            self.tip_store,
            self.engine,
            self.users,
            push_on_write=config.sync.push_on_write,
            repair_after_pull=config.sync.repair_after_pull,
        )

    @classmethod
    def open(cls, store_path: Optional[Path] = None, **kwargs) -> "TipsApp":
        """Open (creating if needed) the store at ``store_path`` or the default."""
        path = Path(store_path).expanduser() if store_path else get_default_store_path()
        return cls(load_or_create_config(path), **kwargs)

    def close(self) -> None:
        """Release the database connections and the HTTP client."""
        if self.remote is not None:
            self.remote.close()
        self.tip_store.close()
        self.user_store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
