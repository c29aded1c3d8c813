"""
Repositories: the entry points for callers (CLI, UI state objects).

TipRepository is local-first: every mutation commits to the local cache
and succeeds regardless of connectivity, then tries a best-effort push.
A failed push leaves the tip unsynced for the next sync pass.

UserRepository owns the single signed-in profile and serves as the
current-user provider for author snapshots and the repair pass.

No method here raises for expected failures; each returns a Result.
"""

import functools
import logging
import uuid
from dataclasses import replace
from typing import Callable, Optional

from .errors import ErrorKind, Result, TipsyncError
from .live import LiveQuery
from .protocol import CurrentUserProvider, LocalTipStoreProtocol
from .repair import repair_missing_author_data
from .sync import SyncEngine, SyncReport
from .types import (
    Author,
    Tip,
    User,
    is_blank,
    now_millis,
    validate_content,
    validate_id,
)
from .user_store import UserStore

logger = logging.getLogger(__name__)

# Marks an update argument the caller did not pass (None clears the image)
_UNSET = object()


def _returns_result(method: Callable[..., Result]) -> Callable[..., Result]:
    """Convert tipsync exceptions escaping ``method`` into failed Results."""
    @functools.wraps(method)
    def wrapper(*args, **kwargs) -> Result:
        try:
            return method(*args, **kwargs)
        except TipsyncError as e:
            logger.warning("%s failed: %s", method.__name__, e)
            return Result.from_exception(e)
    return wrapper


class UserRepository:
    """The signed-in user's profile, local row plus remote document."""

    def __init__(self, user_store: UserStore, engine: SyncEngine, tip_store: LocalTipStoreProtocol):
        self._users = user_store
        self._engine = engine
        self._tips = tip_store

    # -- CurrentUserProvider --

    def get_current_user_id(self) -> Optional[str]:
        user = self.get_current_user_profile()
        return user.id if user is not None else None

    def get_current_user_profile(self) -> Optional[User]:
        try:
            return self._users.get_current()
        except TipsyncError as e:
            logger.error("Cannot read current user: %s", e)
            return None

    def observe_current(self) -> LiveQuery:
        """Live view of the signed-in user (or None)."""
        return LiveQuery(self._users.get_current, self._users)

    # -- Session --

    @_returns_result
    def login(self, user_id: str, name: str = "", email: str = "") -> Result:
        """
        Make ``user_id`` the current user.

        The remote profile wins if one exists. Otherwise a new profile is
        built from ``name`` and ``email`` and pushed (best effort). When
        the remote is unreachable a local profile is still created if a
        name was given. The local row is always replaced wholesale.

        Returns:
            Result with the User now stored locally
        """
        validate_id(user_id)
        fetched = self._engine.fetch_user(user_id)
        if fetched.ok and fetched.value is not None:
            user = fetched.value
        elif is_blank(name):
            if not fetched.ok:
                return fetched
            return Result.fail(ErrorKind.VALIDATION, "Name is required for a new profile")
        else:
            user = User(id=user_id, name=name.strip(), email=email.strip())
            if fetched.ok:
                pushed = self._engine.push_user(user)
                if pushed.ok:
                    user = pushed.value

        user = replace(user, tips_count=self._tips.count_active(user.id))
        self._users.replace_current(user)
        logger.info("Logged in as %s", user.id)
        return Result.success(user)

    @_returns_result
    def logout(self) -> Result:
        """Forget the current user locally. Cached tips are kept."""
        self._users.clear()
        return Result.success()

    # -- Profile --

    @_returns_result
    def update_profile(
        self,
        *,
        name: Optional[str] = None,
        bio: Optional[str] = None,
        photo_ref: Optional[str] = None,
    ) -> Result:
        """
        Edit the current user's profile locally, then push it.

        Tips already carrying the old author snapshot are not rewritten.
        """
        user = self._users.get_current()
        if user is None:
            return Result.fail(ErrorKind.NOT_FOUND, "No current user")
        if name is not None and is_blank(name):
            return Result.fail(ErrorKind.VALIDATION, "Name must not be blank")

        updated = replace(
            user,
            name=name.strip() if name is not None else user.name,
            bio=bio if bio is not None else user.bio,
            photo_ref=photo_ref if photo_ref is not None else user.photo_ref,
        )
        self._users.update(updated)
        return Result.success(self._push_profile(updated))

    @_returns_result
    def refresh_tips_count(self) -> Result:
        """
        Recount the current user's active tips and publish the count.

        Returns:
            Result with the new count
        """
        user = self._users.get_current()
        if user is None:
            return Result.fail(ErrorKind.NOT_FOUND, "No current user")
        updated = replace(user, tips_count=self._tips.count_active(user.id))
        self._users.update(updated)
        self._push_profile(updated)
        return Result.success(updated.tips_count)

    def _push_profile(self, user: User) -> User:
        pushed = self._engine.push_user(user)
        if not pushed.ok:
            logger.info("Profile for %s not pushed: %s", user.id, pushed.failure)
            return user
        self._users.update(pushed.value)
        return pushed.value


class TipRepository:
    """
    The tips facade: local-first mutations, live listings, and sync.

    Args:
        tip_store: local cache
        engine: sync engine (its remote may be None for offline use)
        users: current-user provider for author snapshots and repair
        push_on_write: try a push right after each create/update/delete
        repair_after_pull: run the author repair pass during trigger_sync()
    """

    def __init__(
        self,
        tip_store: LocalTipStoreProtocol,
        engine: SyncEngine,
        users: CurrentUserProvider,
        *,
        push_on_write: bool = True,
        repair_after_pull: bool = True,
    ):
        self._store = tip_store
        self._engine = engine
        self._users = users
        self._push_on_write = push_on_write
        self._repair_after_pull = repair_after_pull

    @property
    def _should_push(self) -> bool:
        return self._push_on_write and self._engine.has_remote

    def _try_push(self, tip: Tip) -> None:
        if not self._should_push:
            return
        result = self._engine.push_one(tip)
        if not result.ok:
            logger.info("Tip %s saved locally; push deferred: %s", tip.id, result.failure)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    @_returns_result
    def create_tip(
        self,
        title: str,
        description: str,
        *,
        image_ref: Optional[str] = None,
        author_id: Optional[str] = None,
        author_name: Optional[str] = None,
        author_photo_ref: Optional[str] = None,
    ) -> Result:
        """
        Store a new tip locally, then try to push it.

        Author fields not given are taken from the current user when one
        is known; otherwise they stay blank for the repair pass.

        Returns:
            Result with the new tip's id
        """
        validate_content(title, description, image_ref)

        if author_id is None and author_name is None:
            user = self._users.get_current_user_profile()
            if user is not None:
                author_id, author_name = user.id, user.name
                author_photo_ref = author_photo_ref or user.photo_ref

        now = now_millis()
        tip = Tip(
            id=str(uuid.uuid4()),
            title=title.strip(),
            description=description.strip(),
            image_ref=image_ref or None,
            author_id=author_id or "",
            author_name=author_name or "",
            author_photo_ref=author_photo_ref,
            created_at=now,
            updated_at=now,
            is_synced=False,
        )
        tip.validate()
        stored = self._store.upsert(tip)
        logger.info("Created tip %s", stored.id)

        if stored.has_author:
            self._try_push(stored)
        return Result.success(stored.id)

    @_returns_result
    def update_tip(
        self,
        id: str,
        *,
        title: Optional[str] = None,
        description: Optional[str] = None,
        image_ref=_UNSET,
    ) -> Result:
        """
        Edit a tip's content locally, then try to push it.

        Arguments left out keep their current value; ``image_ref=None``
        removes the image.
        """
        existing = self._store.get(id)
        if existing is None or existing.is_deleted:
            return Result.fail(ErrorKind.NOT_FOUND, f"Tip not found: {id}")

        updated = replace(
            existing,
            title=title.strip() if title is not None else existing.title,
            description=description.strip() if description is not None else existing.description,
            image_ref=existing.image_ref if image_ref is _UNSET else (image_ref or None),
            updated_at=now_millis(),
            is_synced=False,
        )
        validate_content(updated.title, updated.description, updated.image_ref)
        stored = self._store.upsert(updated)
        logger.info("Updated tip %s", id)

        if stored.has_author:
            self._try_push(stored)
        return Result.success()

    @_returns_result
    def delete_tip(self, id: str) -> Result:
        """
        Soft-delete a tip locally, then try to delete it remotely.

        Deleting an unknown or already-deleted tip succeeds. A failed
        remote delete is retried by the next trigger_sync().
        """
        if not self._store.soft_delete(id):
            return Result.success()
        logger.info("Deleted tip %s", id)

        if self._should_push:
            tip = self._store.get(id)
            if tip is not None:
                result = self._engine.confirm_delete(tip)
                if not result.ok:
                    logger.info("Remote delete of %s deferred: %s", id, result.failure)
        return Result.success()

    @_returns_result
    def purge_deleted(self) -> Result:
        """
        Physically remove soft-deleted tips whose remote delete is confirmed.

        Pending deletes are sent first when a remote is configured. Those
        that still fail stay soft-deleted so a later sync can retry them.

        Returns:
            Result with the number of tips removed
        """
        if self._engine.has_remote:
            sent = self._engine.push_pending_deletes()
            if not sent.ok:
                logger.info("Pending deletes not sent before purge: %s", sent.failure)
        return Result.success(self._store.purge_soft_deleted())

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_tip(self, id: str) -> Optional[Tip]:
        """An active tip by id, or None."""
        tip = self._store.get(id)
        if tip is None or tip.is_deleted:
            return None
        return tip

    def observe_active(self) -> LiveQuery:
        """Live list of all active tips, newest first."""
        return LiveQuery(self._store.list_active, self._store)

    def observe_by_author(self, author_id: str) -> LiveQuery:
        """Live list of one author's active tips, newest first."""
        return LiveQuery(
            lambda: self._store.list_active_by_author(author_id), self._store
        )

    def list_authors(self) -> list[Author]:
        """Distinct authors of active tips, sorted by name."""
        authors: dict[str, Author] = {}
        for tip in self._store.list_active():
            if tip.author_id and tip.author_id not in authors:
                authors[tip.author_id] = Author.from_tip(tip)
        return sorted(authors.values(), key=lambda a: (a.name.casefold(), a.id))

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    @_returns_result
    def trigger_sync(self) -> Result:
        """
        Run a full sync cycle: pull, author repair, push, pending deletes.

        A failed pull ends the cycle early (nothing else can succeed
        against the same remote). Push failures are counted in the
        report, not returned as failure.

        Returns:
            Result with a SyncReport
        """
        report = SyncReport()

        pulled = self._engine.pull_all()
        if not pulled.ok:
            return pulled
        report.pulled = pulled.value

        if self._repair_after_pull:
            repaired = repair_missing_author_data(
                self._store, self._engine,
                self._users.get_current_user_profile(),
                push=False,
            )
            if not repaired.ok:
                return repaired
            report.repaired = repaired.value

        pushed = self._engine.push_all_unsynced()
        if not pushed.ok:
            return pushed
        report.push = pushed.value

        deleted = self._engine.push_pending_deletes()
        if not deleted.ok:
            return deleted
        report.deleted = deleted.value.pushed
        return Result.success(report)

    def repair_author_data(self) -> Result:
        """Run the author repair pass for the current user, pushing fixes."""
        return repair_missing_author_data(
            self._store, self._engine, self._users.get_current_user_profile()
        )
