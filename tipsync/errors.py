"""
Error types and result values for tipsync.

Stores and the remote client raise the exceptions below. The sync
engine and repositories turn expected failures into ``Result`` values so
callers never see an exception for a remote outage or a rejected write.

Also provides error logging for the CLI: full stack traces go to a file
while the user sees a clean message.
"""

import os
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Why an operation failed."""

    LOCAL_STORAGE = "local_storage"
    REMOTE_UNAVAILABLE = "remote_unavailable"
    REMOTE_REJECTED = "remote_rejected"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"


class TipsyncError(Exception):
    """Base class for tipsync errors."""

    kind: ErrorKind = ErrorKind.LOCAL_STORAGE


class LocalStorageError(TipsyncError):
    """The local database failed (disk full, corruption, locked too long)."""

    kind = ErrorKind.LOCAL_STORAGE


class ValidationError(TipsyncError, ValueError):
    """Input rejected before any write."""

    kind = ErrorKind.VALIDATION


class NotFoundError(TipsyncError, LookupError):
    """A tip or user is not in the local cache."""

    kind = ErrorKind.NOT_FOUND


class RemoteError(TipsyncError):
    """Error talking to the remote document store."""

    kind = ErrorKind.REMOTE_UNAVAILABLE


class RemoteUnavailableError(RemoteError):
    """Network failure, timeout, or server-side (5xx) error."""

    kind = ErrorKind.REMOTE_UNAVAILABLE


class RemoteRejectedError(RemoteError):
    """The remote store refused the request (4xx other than 404)."""

    kind = ErrorKind.REMOTE_REJECTED


@dataclass(frozen=True)
class Failure:
    """The failure half of a Result."""

    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Outcome of a sync or repository operation.

    Exactly one of ``value`` (when ``ok``) or ``failure`` is meaningful.
    """

    ok: bool
    value: Optional[T] = None
    failure: Optional[Failure] = None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(ok=True, value=value)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str) -> "Result":
        return cls(ok=False, failure=Failure(kind, message))

    @classmethod
    def from_exception(cls, exc: TipsyncError) -> "Result":
        return cls.fail(exc.kind, str(exc))

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.failure.kind if self.failure else None

    def unwrap(self) -> T:
        """Return the value, or raise if this is a failure."""
        if not self.ok:
            raise RuntimeError(f"unwrap() on failed result: {self.failure}")
        return self.value  # type: ignore[return-value]


def _error_log_path() -> Path:
    """Resolve error log path, respecting TIPSYNC_STORE_PATH."""
    store = os.environ.get("TIPSYNC_STORE_PATH")
    if store:
        return Path(store) / "tipsync-errors.log"
    return Path.home() / ".tipsync" / "tipsync-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
