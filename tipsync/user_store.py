"""
Local current-user profile using SQLite.

Holds at most one meaningful row: the signed-in user. Login replaces the
row wholesale; logout clears the table.
"""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Callable, Optional

from .errors import LocalStorageError
from .types import User, validate_id

logger = logging.getLogger(__name__)


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        bio=row["bio"],
        photo_ref=row["photo_ref"],
        tips_count=row["tips_count"],
        last_synced_at=row["last_synced_at"],
    )


class UserStore:
    """SQLite-backed store for the current user's profile."""

    def __init__(self, store_path: Path):
        """
        Args:
            store_path: Path to SQLite database file (may be shared with TipStore)
        """
        self._db_path = store_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._listeners: list[Callable[[], None]] = []
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL DEFAULT '',
                    bio TEXT,
                    photo_ref TEXT,
                    tips_count INTEGER NOT NULL DEFAULT 0,
                    last_synced_at INTEGER NOT NULL DEFAULT 0
                )
            """)
            self._conn.commit()
        except sqlite3.Error as e:
            raise LocalStorageError(f"Cannot open user store {self._db_path}: {e}") from e

    def _write(self, sql: str, params: tuple = ()) -> int:
        with self._lock:
            try:
                cursor = self._conn.execute(sql, params)
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise LocalStorageError(f"User store write failed: {e}") from e
        self._notify()
        return cursor.rowcount

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("User store listener failed")

    def add_listener(self, listener: Callable[[], None]) -> None:
        """Call ``listener()`` after each committed change."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[], None]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def replace_current(self, user: User) -> None:
        """Make ``user`` the only stored profile."""
        validate_id(user.id)
        with self._lock:
            try:
                self._conn.execute("DELETE FROM users WHERE id != ?", (user.id,))
                self._conn.execute("""
                    INSERT OR REPLACE INTO users
                    (id, name, email, bio, photo_ref, tips_count, last_synced_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    user.id, user.name, user.email, user.bio, user.photo_ref,
                    user.tips_count, user.last_synced_at,
                ))
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise LocalStorageError(f"User store write failed: {e}") from e
        self._notify()

    def update(self, user: User) -> bool:
        """
        Overwrite an existing profile row.

        Returns:
            True if the user was found and updated
        """
        return self._write("""
            UPDATE users
            SET name = ?, email = ?, bio = ?, photo_ref = ?,
                tips_count = ?, last_synced_at = ?
            WHERE id = ?
        """, (
            user.name, user.email, user.bio, user.photo_ref,
            user.tips_count, user.last_synced_at, user.id,
        )) > 0

    def get_current(self) -> Optional[User]:
        """The signed-in user, or None."""
        with self._lock:
            try:
                row = self._conn.execute("""
                    SELECT id, name, email, bio, photo_ref, tips_count, last_synced_at
                    FROM users LIMIT 1
                """).fetchone()
            except sqlite3.Error as e:
                raise LocalStorageError(f"User store read failed: {e}") from e
        return _row_to_user(row) if row is not None else None

    def clear(self) -> int:
        """Remove all stored profiles (logout)."""
        return self._write("DELETE FROM users")

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        self.close()
