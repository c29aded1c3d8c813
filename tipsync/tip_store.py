"""
Local tip cache using SQLite.

The tip store is the offline source of truth for what the user sees:
every listing reads from here, and every local edit lands here first.

Rows carry two sync flags:
- is_synced: False while a local change awaits confirmation by the remote store
- is_deleted: soft-delete marker; hidden from listings until purged

Writes happen under a process-wide lock inside a single transaction, so
readers never observe a half-written tip. Pulled rows never replace a
row that is still dirty (is_synced = 0) or soft-deleted. A soft-deleted
row stays unsynced until its remote delete is confirmed.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from .errors import LocalStorageError
from .types import Tip, now_millis, validate_id

logger = logging.getLogger(__name__)

_COLUMNS = """
    id, title, description, author_id, author_name, author_photo_ref,
    image_ref, created_at, updated_at, is_synced, is_deleted, revision
"""

# Characters TRIM strips when testing for a blank author.
_BLANK = " \t\n\r\f\v"

# Local write: full replace, revision bumped.
_UPSERT_SQL = """
    INSERT INTO tips
    (id, title, description, author_id, author_name, author_photo_ref,
     image_ref, created_at, updated_at, is_synced, is_deleted, revision)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
    ON CONFLICT(id) DO UPDATE SET
        title = excluded.title,
        description = excluded.description,
        author_id = excluded.author_id,
        author_name = excluded.author_name,
        author_photo_ref = excluded.author_photo_ref,
        image_ref = excluded.image_ref,
        created_at = excluded.created_at,
        updated_at = excluded.updated_at,
        is_synced = excluded.is_synced,
        is_deleted = excluded.is_deleted,
        revision = tips.revision + 1
"""

# A local file image ref is never pushed, so a document without an image
# keeps it. A remote URL ref follows the document, including its removal.
_KEEPS_LOCAL_IMAGE = """(excluded.image_ref IS NULL
      AND tips.image_ref IS NOT NULL
      AND tips.image_ref NOT LIKE 'http://%'
      AND tips.image_ref NOT LIKE 'https://%')"""

# Pulled write: skipped when the local row is dirty, soft-deleted, or
# already identical.
_APPLY_REMOTE_SQL = f"""
    INSERT INTO tips
    (id, title, description, author_id, author_name, author_photo_ref,
     image_ref, created_at, updated_at, is_synced, is_deleted, revision)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1, 0, 1)
    ON CONFLICT(id) DO UPDATE SET
        title = excluded.title,
        description = excluded.description,
        author_id = excluded.author_id,
        author_name = excluded.author_name,
        author_photo_ref = excluded.author_photo_ref,
        image_ref = CASE WHEN {_KEEPS_LOCAL_IMAGE}
                         THEN tips.image_ref ELSE excluded.image_ref END,
        created_at = excluded.created_at,
        updated_at = excluded.updated_at,
        is_synced = 1,
        is_deleted = 0,
        revision = tips.revision + 1
    WHERE tips.is_synced = 1 AND tips.is_deleted = 0
      AND (tips.title IS NOT excluded.title
           OR tips.description IS NOT excluded.description
           OR tips.author_id IS NOT excluded.author_id
           OR tips.author_name IS NOT excluded.author_name
           OR tips.author_photo_ref IS NOT excluded.author_photo_ref
           OR (NOT {_KEEPS_LOCAL_IMAGE}
               AND tips.image_ref IS NOT excluded.image_ref)
           OR tips.created_at IS NOT excluded.created_at
           OR tips.updated_at IS NOT excluded.updated_at)
"""


def _row_to_tip(row: sqlite3.Row) -> Tip:
    return Tip(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        author_id=row["author_id"],
        author_name=row["author_name"],
        author_photo_ref=row["author_photo_ref"],
        image_ref=row["image_ref"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        is_synced=bool(row["is_synced"]),
        is_deleted=bool(row["is_deleted"]),
        revision=row["revision"],
    )


def _tip_params(tip: Tip) -> tuple:
    return (
        tip.id, tip.title, tip.description, tip.author_id, tip.author_name,
        tip.author_photo_ref, tip.image_ref, tip.created_at, tip.updated_at,
    )


class TipStore:
    """
    SQLite-backed store for cached tips.

    Satisfies LocalTipStoreProtocol. Listeners registered with
    add_listener() are called (with no arguments) after every committed
    write that changed at least one row.
    """

    def __init__(self, store_path: Path):
        """
        Args:
            store_path: Path to SQLite database file
        """
        self._db_path = store_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._listeners: list[Callable[[], None]] = []
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            # isolation_level=None gives us manual transaction control
            self._conn = sqlite3.connect(
                str(self._db_path), check_same_thread=False,
                isolation_level=None,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")

            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS tips (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    author_id TEXT NOT NULL DEFAULT '',
                    author_name TEXT NOT NULL DEFAULT '',
                    author_photo_ref TEXT,
                    image_ref TEXT,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL,
                    is_synced INTEGER NOT NULL DEFAULT 0,
                    is_deleted INTEGER NOT NULL DEFAULT 0,
                    revision INTEGER NOT NULL DEFAULT 1
                )
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tips_active_created
                ON tips(is_deleted, created_at)
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_tips_author
                ON tips(author_id)
            """)
        except sqlite3.Error as e:
            raise LocalStorageError(f"Cannot open tip store {self._db_path}: {e}") from e

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a group of statements atomically under the store lock."""
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                try:
                    yield self._conn
                    self._conn.commit()
                except BaseException:
                    self._conn.rollback()
                    raise
            except sqlite3.Error as e:
                raise LocalStorageError(f"Tip store write failed: {e}") from e

    def _query(self, sql: str, params: tuple = ()) -> list[Tip]:
        with self._lock:
            try:
                rows = self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise LocalStorageError(f"Tip store read failed: {e}") from e
        return [_row_to_tip(row) for row in rows]

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Tip store listener failed")

    def add_listener(self, listener: Callable[[], None]) -> None:
        """Call ``listener()`` after each committed change."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[], None]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def upsert(self, tip: Tip) -> Tip:
        """
        Insert or fully replace a tip, keyed by id.

        Flags are stored exactly as given on ``tip``; the revision is
        bumped by the store.

        Returns:
            The stored Tip (with its new revision)
        """
        validate_id(tip.id)
        with self._transaction() as conn:
            conn.execute(_UPSERT_SQL, (
                *_tip_params(tip), int(tip.is_synced), int(tip.is_deleted),
            ))
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM tips WHERE id = ?", (tip.id,)
            ).fetchone()
        self._notify()
        return _row_to_tip(row)

    def upsert_many(self, tips: Iterable[Tip]) -> int:
        """
        Insert or replace several tips in one transaction.

        Returns:
            Number of tips written
        """
        params = []
        for tip in tips:
            validate_id(tip.id)
            params.append((*_tip_params(tip), int(tip.is_synced), int(tip.is_deleted)))
        if not params:
            return 0
        with self._transaction() as conn:
            conn.executemany(_UPSERT_SQL, params)
        self._notify()
        return len(params)

    def apply_remote(self, tips: Iterable[Tip]) -> int:
        """
        Write tips fetched from the remote store, marking them synced.

        Rows that are locally dirty (including soft-deleted rows awaiting
        their remote delete) are left untouched.

        Returns:
            Number of rows inserted or changed
        """
        applied = 0
        tips = list(tips)
        if not tips:
            return 0
        with self._transaction() as conn:
            for tip in tips:
                validate_id(tip.id)
                cursor = conn.execute(_APPLY_REMOTE_SQL, _tip_params(tip))
                applied += cursor.rowcount
        if applied:
            self._notify()
        return applied

    def mark_synced(self, id: str, revision: int) -> bool:
        """
        Flag a tip as synced if it has not changed since ``revision``.

        Returns:
            True if the flag was set, False if the tip is gone or was
            modified after the pushed revision
        """
        with self._transaction() as conn:
            cursor = conn.execute("""
                UPDATE tips SET is_synced = 1
                WHERE id = ? AND revision = ?
            """, (id, revision))
            changed = cursor.rowcount > 0
        if changed:
            self._notify()
        return changed

    def soft_delete(self, id: str) -> bool:
        """
        Hide a tip from listings and mark it unsynced.

        Returns:
            True if the tip existed
        """
        with self._transaction() as conn:
            cursor = conn.execute("""
                UPDATE tips
                SET is_deleted = 1, is_synced = 0,
                    updated_at = ?, revision = revision + 1
                WHERE id = ?
            """, (now_millis(), id))
            changed = cursor.rowcount > 0
        if changed:
            self._notify()
        return changed

    def fill_missing_author(
        self,
        id: str,
        author_id: str,
        author_name: str,
        author_photo_ref: Optional[str],
    ) -> bool:
        """
        Set author fields on an active tip whose author data is blank.

        Only the author columns change, so an edit that landed after the
        caller read the tip is kept. The tip is marked unsynced.

        Returns:
            True if the tip was updated, False if it is gone, deleted,
            or already has an author
        """
        with self._transaction() as conn:
            cursor = conn.execute("""
                UPDATE tips
                SET author_id = ?, author_name = ?, author_photo_ref = ?,
                    is_synced = 0, revision = revision + 1
                WHERE id = ? AND is_deleted = 0
                  AND (TRIM(author_id, ?) = '' OR TRIM(author_name, ?) = '')
            """, (author_id, author_name, author_photo_ref, id, _BLANK, _BLANK))
            changed = cursor.rowcount > 0
        if changed:
            self._notify()
        return changed

    def purge_soft_deleted(self) -> int:
        """
        Physically remove soft-deleted tips whose remote delete is confirmed.

        Pending deletes are kept so they can still be sent to the remote.

        Returns:
            Number of rows removed
        """
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM tips WHERE is_deleted = 1 AND is_synced = 1")
            removed = cursor.rowcount
        if removed:
            self._notify()
        return removed

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, id: str) -> Optional[Tip]:
        """Get a tip by ID, including soft-deleted tips."""
        found = self._query(f"SELECT {_COLUMNS} FROM tips WHERE id = ?", (id,))
        return found[0] if found else None

    def list_active(self) -> list[Tip]:
        """All tips not soft-deleted, newest first."""
        return self._query(f"""
            SELECT {_COLUMNS} FROM tips
            WHERE is_deleted = 0
            ORDER BY created_at DESC, id
        """)

    def list_active_by_author(self, author_id: str) -> list[Tip]:
        """Active tips written by one author, newest first."""
        return self._query(f"""
            SELECT {_COLUMNS} FROM tips
            WHERE is_deleted = 0 AND author_id = ?
            ORDER BY created_at DESC, id
        """, (author_id,))

    def list_unsynced_active(self) -> list[Tip]:
        """Active tips awaiting push, oldest first."""
        return self._query(f"""
            SELECT {_COLUMNS} FROM tips
            WHERE is_deleted = 0 AND is_synced = 0
            ORDER BY created_at ASC, id
        """)

    def list_pending_deletes(self) -> list[Tip]:
        """Soft-deleted tips whose remote delete is not yet confirmed."""
        return self._query(f"""
            SELECT {_COLUMNS} FROM tips
            WHERE is_deleted = 1 AND is_synced = 0
            ORDER BY updated_at ASC, id
        """)

    def count_active(self, author_id: Optional[str] = None) -> int:
        """Count active tips, optionally for one author."""
        with self._lock:
            try:
                if author_id is None:
                    row = self._conn.execute(
                        "SELECT COUNT(*) FROM tips WHERE is_deleted = 0"
                    ).fetchone()
                else:
                    row = self._conn.execute(
                        "SELECT COUNT(*) FROM tips WHERE is_deleted = 0 AND author_id = ?",
                        (author_id,),
                    ).fetchone()
            except sqlite3.Error as e:
                raise LocalStorageError(f"Tip store read failed: {e}") from e
        return row[0]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

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
