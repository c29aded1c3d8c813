"""
Sync engine between the local tip cache and the remote document store.

Pull (remote -> local) replaces synced local rows with whatever the remote
holds. Dirty rows (is_synced = 0) are never overwritten, so edits made
offline survive until they are pushed: last-pull-wins for synced tips,
local-wins while dirty.

Push (local -> remote) writes one full document per tip and then flags
the local row synced, unless the row changed again while the push was
in flight. Pushes of the same tip id never overlap.

Deletion is asymmetric: the caller soft-deletes locally, and
delete_remote() hard-deletes the remote document. Soft-deleted tips are
never pushed; a soft-deleted row stays unsynced until its remote delete
is confirmed, and push_pending_deletes() retries those.

No method raises for expected conditions (remote down, rejected write,
local database failure). Each returns a Result.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterator, Optional, TypeVar

from .errors import (
    ErrorKind,
    Failure,
    LocalStorageError,
    RemoteError,
    Result,
)
from .protocol import LocalTipStoreProtocol, RemoteDocumentStoreProtocol
from .remote import parse_tip_documents, tip_to_fields, user_from_document, user_to_fields
from .types import Tip, User, now_millis

logger = logging.getLogger(__name__)

T = TypeVar("T")

TIPS_COLLECTION = "tips"
USERS_COLLECTION = "users"


@dataclass
class PushReport:
    """Outcome of a push pass over all unsynced tips."""
    pushed: int = 0
    failed: int = 0
    skipped: int = 0  # missing author data, or deleted/edited since listing
    failures: dict[str, Failure] = field(default_factory=dict)

    @property
    def attempted(self) -> int:
        return self.pushed + self.failed


@dataclass
class SyncReport:
    """Outcome of a full pull -> repair -> push cycle."""
    pulled: int = 0
    repaired: int = 0
    push: PushReport = field(default_factory=PushReport)
    deleted: int = 0  # remote deletes confirmed


class SyncEngine:
    """
    Pull/push coordinator for tips and the user profile.

    ``remote`` may be None when no remote store is configured; every
    remote operation then fails with REMOTE_UNAVAILABLE and local state
    is untouched.
    """

    def __init__(
        self,
        tip_store: LocalTipStoreProtocol,
        remote: Optional[RemoteDocumentStoreProtocol],
        *,
        tips_collection: str = TIPS_COLLECTION,
        users_collection: str = USERS_COLLECTION,
    ):
        self._store = tip_store
        self._remote = remote
        self._tips_collection = tips_collection
        self._users_collection = users_collection
        # id -> [lock, holders + waiters]; entries are dropped when unused
        self._id_locks: dict[str, list] = {}
        self._id_locks_guard = threading.Lock()

    @property
    def has_remote(self) -> bool:
        return self._remote is not None

    @contextmanager
    def _lock_for(self, id: str) -> Iterator[None]:
        """Hold the per-id lock so remote writes for one tip never overlap."""
        with self._id_locks_guard:
            entry = self._id_locks.setdefault(id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._id_locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._id_locks[id]

    def _call_remote(self, action: str, fn: Callable[[RemoteDocumentStoreProtocol], T]) -> Result:
        """Run ``fn(remote)`` and fold remote errors into a Result."""
        if self._remote is None:
            return Result.fail(ErrorKind.REMOTE_UNAVAILABLE, "No remote store configured")
        try:
            return Result.success(fn(self._remote))
        except RemoteError as e:
            logger.info("%s failed: %s", action, e)
            return Result.from_exception(e)
        except Exception as e:
            # Third-party backends may raise their own transport errors
            logger.warning("%s failed with unexpected error: %s", action, e, exc_info=True)
            return Result.fail(ErrorKind.REMOTE_UNAVAILABLE, f"{action} failed: {e}")

    # -------------------------------------------------------------------------
    # Pull
    # -------------------------------------------------------------------------

    def pull_all(self) -> Result:
        """
        Fetch every remote tip (newest first) into the local cache.

        Fetched tips are stored synced. Locally dirty tips are kept as they
        are, and local-only tips are never removed.

        Returns:
            Result with the number of tips fetched
        """
        return self._pull(None)

    def pull_by_author(self, author_id: str) -> Result:
        """Like pull_all(), restricted to one author's tips."""
        return self._pull(("authorId", author_id))

    def _pull(self, field_equals: Optional[tuple[str, Any]]) -> Result:
        fetched = self._call_remote("Pull", lambda remote: remote.query_ordered(
            self._tips_collection,
            field_equals=field_equals,
            order_by="createdAt",
            descending=True,
        ))
        if not fetched.ok:
            return fetched

        tips = parse_tip_documents(fetched.value)
        try:
            applied = self._store.apply_remote(tips)
        except LocalStorageError as e:
            logger.error("Pull could not be stored: %s", e)
            return Result.from_exception(e)
        logger.info("Pulled %d tips (%d changed locally)", len(tips), applied)
        return Result.success(len(tips))

    # -------------------------------------------------------------------------
    # Push
    # -------------------------------------------------------------------------

    def push_one(self, tip: Tip) -> Result:
        """
        Write one tip to the remote store and flag it synced locally.

        Makes at most one remote write attempt. The stored row is re-read
        under the per-id lock and pushed only if it is still active and
        still at the revision of ``tip`` (a tip built outside the store,
        revision 0, takes the stored revision). Otherwise nothing is
        written: a deleted tip is never pushed, and a newer revision is
        left dirty for the next pass. The local flag is set only if the
        row has not changed again by the time the write returns.

        Returns:
            Result with True if the tip was written, False if it was
            skipped because the stored row is gone, deleted or newer
        """
        if tip.is_deleted:
            return Result.fail(ErrorKind.VALIDATION, f"Deleted tip {tip.id} is never pushed")
        if not tip.has_author:
            return Result.fail(
                ErrorKind.VALIDATION, f"Tip {tip.id} has no author; repair before push"
            )
        if self._remote is None:
            return Result.fail(ErrorKind.REMOTE_UNAVAILABLE, "No remote store configured")

        with self._lock_for(tip.id):
            try:
                stored = self._store.get(tip.id)
            except LocalStorageError as e:
                return Result.from_exception(e)
            if stored is None or stored.is_deleted:
                logger.info("Tip %s was deleted before its push; not pushed", tip.id)
                return Result.success(False)
            if tip.revision not in (0, stored.revision):
                logger.debug("Tip %s changed before its push; left for the next pass", tip.id)
                return Result.success(False)
            if not stored.has_author:
                return Result.fail(
                    ErrorKind.VALIDATION, f"Tip {tip.id} has no author; repair before push"
                )

            written = self._call_remote(
                f"Push of tip {tip.id}",
                lambda remote: remote.put_document(
                    self._tips_collection, stored.id, tip_to_fields(stored)
                ),
            )
            if not written.ok:
                return written

            try:
                flagged = self._store.mark_synced(stored.id, stored.revision)
            except LocalStorageError as e:
                logger.error("Pushed tip %s but could not flag it synced: %s", tip.id, e)
                return Result.from_exception(e)

        if not flagged:
            logger.debug("Tip %s changed during push; it stays unsynced", tip.id)
        return Result.success(True)

    def push_all_unsynced(self) -> Result:
        """
        Push every active unsynced tip, one at a time.

        Individual failures are logged and counted, not raised. Tips
        without author data, and tips deleted or edited after the listing,
        are skipped. A local database failure stops the pass immediately.

        Returns:
            Result with a PushReport
        """
        if self._remote is None:
            return Result.fail(ErrorKind.REMOTE_UNAVAILABLE, "No remote store configured")
        try:
            pending = self._store.list_unsynced_active()
        except LocalStorageError as e:
            return Result.from_exception(e)

        report = PushReport()
        for tip in pending:
            if not tip.has_author:
                logger.warning("Skipping push of tip %s: missing author data", tip.id)
                report.skipped += 1
                continue
            result = self.push_one(tip)
            if result.ok:
                if result.value:
                    report.pushed += 1
                else:
                    report.skipped += 1
                continue
            if result.kind is ErrorKind.LOCAL_STORAGE:
                return result
            logger.warning("Push of tip %s failed: %s", tip.id, result.failure)
            report.failed += 1
            report.failures[tip.id] = result.failure

        logger.info(
            "Push pass: %d pushed, %d failed, %d skipped",
            report.pushed, report.failed, report.skipped,
        )
        return Result.success(report)

    # -------------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------------

    def delete_remote(self, id: str) -> Result:
        """Delete a tip's remote document. An absent document counts as success."""
        with self._lock_for(id):
            return self._call_remote(
                f"Remote delete of tip {id}",
                lambda remote: remote.delete_document(self._tips_collection, id),
            )

    def push_pending_deletes(self) -> Result:
        """
        Retry remote deletes for soft-deleted tips not yet confirmed.

        A confirmed delete flags the soft-deleted row synced, which takes
        it out of the pending set.

        Returns:
            Result with a PushReport (pushed = deletes confirmed)
        """
        if self._remote is None:
            return Result.fail(ErrorKind.REMOTE_UNAVAILABLE, "No remote store configured")
        try:
            pending = self._store.list_pending_deletes()
        except LocalStorageError as e:
            return Result.from_exception(e)

        report = PushReport()
        for tip in pending:
            result = self.confirm_delete(tip)
            if result.ok:
                report.pushed += 1
                continue
            if result.kind is ErrorKind.LOCAL_STORAGE:
                return result
            report.failed += 1
            report.failures[tip.id] = result.failure
        return Result.success(report)

    def confirm_delete(self, tip: Tip) -> Result:
        """Delete ``tip`` remotely and, on success, flag the soft-deleted row synced."""
        deleted = self.delete_remote(tip.id)
        if not deleted.ok:
            return deleted
        try:
            self._store.mark_synced(tip.id, tip.revision)
        except LocalStorageError as e:
            return Result.from_exception(e)
        return Result.success()

    # -------------------------------------------------------------------------
    # User profile
    # -------------------------------------------------------------------------

    def push_user(self, user: User) -> Result:
        """
        Write the user's profile document, stamping lastSyncedAt.

        Returns:
            Result with the stamped copy of the User
        """
        stamped = replace(user, last_synced_at=now_millis())
        written = self._call_remote(
            f"Push of user {user.id}",
            lambda remote: remote.put_document(
                self._users_collection, user.id, user_to_fields(stamped)
            ),
        )
        return Result.success(stamped) if written.ok else written

    def fetch_user(self, user_id: str) -> Result:
        """
        Read a user's profile document.

        Returns:
            Result with the User, or None if the remote has no profile
        """
        fetched = self._call_remote(
            f"Fetch of user {user_id}",
            lambda remote: remote.get_document(self._users_collection, user_id),
        )
        if not fetched.ok or fetched.value is None:
            return fetched
        try:
            return Result.success(user_from_document(user_id, fetched.value))
        except ValueError as e:
            logger.warning("Unreadable profile document for %s: %s", user_id, e)
            return Result.fail(ErrorKind.REMOTE_REJECTED, f"Unreadable profile: {e}")
