"""
Protocol definitions for tipsync's collaborators.

Defines interface contracts at three seams:
- LocalTipStoreProtocol: the durable local cache (SQLite TipStore)
- RemoteDocumentStoreProtocol: the authoritative remote document database
- CurrentUserProvider: whoever knows the signed-in user (UserRepository)
"""

from typing import Any, Iterable, Optional, Protocol, runtime_checkable

from .types import Tip, User


@runtime_checkable
class LocalTipStoreProtocol(Protocol):
    """
    Keyed, mutable local cache of tips with soft-delete.

    Implemented by:
    - TipStore (local SQLite)
    """

    # -- Write --

    def upsert(self, tip: Tip) -> Tip: ...

    def upsert_many(self, tips: Iterable[Tip]) -> int: ...

    def apply_remote(self, tips: Iterable[Tip]) -> int: ...

    def mark_synced(self, id: str, revision: int) -> bool: ...

    def soft_delete(self, id: str) -> bool: ...

    def fill_missing_author(
        self, id: str, author_id: str, author_name: str, author_photo_ref: Optional[str]
    ) -> bool: ...

    def purge_soft_deleted(self) -> int: ...

    # -- Read --

    def get(self, id: str) -> Optional[Tip]: ...

    def list_active(self) -> list[Tip]: ...

    def list_active_by_author(self, author_id: str) -> list[Tip]: ...

    def list_unsynced_active(self) -> list[Tip]: ...

    def list_pending_deletes(self) -> list[Tip]: ...

    def count_active(self, author_id: Optional[str] = None) -> int: ...

    def close(self) -> None: ...


@runtime_checkable
class RemoteDocumentStoreProtocol(Protocol):
    """
    Passive remote document database with last-writer-wins semantics.

    Documents are flat field maps addressed by (collection, id).
    Failures raise RemoteUnavailableError or RemoteRejectedError.
    get_document returns None for an absent document, and delete_document
    of an absent document returns normally.

    Implemented by:
    - HttpDocumentStore (httpx client to a REST document API)
    - Third-party backends registered under ``tipsync.remotes``
    """

    def put_document(
        self, collection: str, id: str, fields: dict[str, Any]
    ) -> None: ...

    def get_document(
        self, collection: str, id: str
    ) -> Optional[dict[str, Any]]: ...

    def query_ordered(
        self,
        collection: str,
        *,
        field_equals: Optional[tuple[str, Any]] = None,
        order_by: str,
        descending: bool = False,
    ) -> list[tuple[str, dict[str, Any]]]: ...

    def delete_document(self, collection: str, id: str) -> None: ...

    def close(self) -> None: ...


@runtime_checkable
class CurrentUserProvider(Protocol):
    """
    Source of the signed-in user.

    Implemented by:
    - UserRepository
    """

    def get_current_user_id(self) -> Optional[str]: ...

    def get_current_user_profile(self) -> Optional[User]: ...
