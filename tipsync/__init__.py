"""
Tipsync

An offline-first cache of study tips, kept in sync with a remote
document store.

Quick Start:
    from tipsync import TipsApp

    with TipsApp.open() as app:          # uses ~/.tipsync/
        app.users.login("u1", name="Ana")
        app.tips.create_tip("Study daily", "Short sessions beat cramming.")
        report = app.tips.trigger_sync().value

CLI Usage:
    tipsync add "Study daily" "Short sessions beat cramming."
    tipsync list --mine
    tipsync sync

Every mutation lands in the local SQLite cache first and succeeds without
a network. Pushes are best effort; unsynced tips are retried by the next
sync.

Environment Variables:
    TIPSYNC_STORE_PATH  - Override default store location
    TIPSYNC_API_URL     - Remote document API base URL
    TIPSYNC_API_KEY     - Bearer token for the remote document API
"""

from .app import TipsApp
from .errors import (
    ErrorKind,
    Failure,
    LocalStorageError,
    NotFoundError,
    RemoteRejectedError,
    RemoteUnavailableError,
    Result,
    TipsyncError,
    ValidationError,
)
from .repository import TipRepository, UserRepository
from .sync import PushReport, SyncEngine, SyncReport
from .tip_store import TipStore
from .types import Author, Tip, User

__version__ = "0.1.0"
__all__ = [
    "TipsApp",
    "Tip",
    "User",
    "Author",
    "Result",
    "Failure",
    "ErrorKind",
    "TipsyncError",
    "LocalStorageError",
    "ValidationError",
    "NotFoundError",
    "RemoteUnavailableError",
    "RemoteRejectedError",
    "TipRepository",
    "UserRepository",
    "SyncEngine",
    "SyncReport",
    "PushReport",
    "TipStore",
]
