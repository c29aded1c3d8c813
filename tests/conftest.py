"""
Shared pytest fixtures for tipsync tests.

Provides an in-memory remote document store so sync can be tested
without a network.
"""

from pathlib import Path
from typing import Any, Optional

import pytest

from tipsync.config import StoreConfig
from tipsync.errors import RemoteRejectedError, RemoteUnavailableError
from tipsync.sync import SyncEngine
from tipsync.tip_store import TipStore
from tipsync.types import Tip, User
from tipsync.user_store import UserStore


class FakeDocumentStore:
    """
    In-memory remote document store.

    Set ``online = False`` to make every call raise RemoteUnavailableError,
    or add ids to ``reject_ids`` to have writes of those documents refused.
    """

    def __init__(self):
        self.collections: dict[str, dict[str, dict[str, Any]]] = {}
        self.online = True
        self.reject_ids: set[str] = set()
        self.calls: list[tuple[str, str, Optional[str]]] = []
        self.closed = False

    def _check(self, op: str, collection: str, id: Optional[str] = None) -> None:
        self.calls.append((op, collection, id))
        if not self.online:
            raise RemoteUnavailableError("offline")

    def put_document(self, collection: str, id: str, fields: dict[str, Any]) -> None:
        self._check("put", collection, id)
        if id in self.reject_ids:
            raise RemoteRejectedError(f"permission denied for {id}")
        self.collections.setdefault(collection, {})[id] = dict(fields)

    def get_document(self, collection: str, id: str) -> Optional[dict[str, Any]]:
        self._check("get", collection, id)
        doc = self.collections.get(collection, {}).get(id)
        return dict(doc) if doc is not None else None

    def query_ordered(
        self,
        collection: str,
        *,
        field_equals: Optional[tuple[str, Any]] = None,
        order_by: str,
        descending: bool = False,
    ) -> list[tuple[str, dict[str, Any]]]:
        self._check("query", collection)
        docs = list(self.collections.get(collection, {}).items())
        if field_equals is not None:
            key, value = field_equals
            docs = [(i, f) for i, f in docs if f.get(key) == value]
        docs.sort(key=lambda d: d[1].get(order_by, 0), reverse=descending)
        return [(i, dict(f)) for i, f in docs]

    def delete_document(self, collection: str, id: str) -> None:
        self._check("delete", collection, id)
        self.collections.get(collection, {}).pop(id, None)

    def close(self) -> None:
        self.closed = True

    # -- Test helpers --

    def tips(self) -> dict[str, dict[str, Any]]:
        return self.collections.get("tips", {})

    def put_tip(self, id: str, **fields) -> None:
        """Seed a tip document as if another device had pushed it."""
        doc = {
            "title": "Remote title",
            "description": "Remote description",
            "imageRef": "",
            "authorId": "u2",
            "authorName": "Bea",
            "authorPhotoRef": "",
            "createdAt": 1000,
            "updatedAt": 1000,
        }
        doc.update(fields)
        self.collections.setdefault("tips", {})[id] = doc

    def count(self, op: str) -> int:
        return sum(1 for call in self.calls if call[0] == op)


def make_tip(id: str = "t1", **kwargs) -> Tip:
    """A valid tip with an author, unsynced unless overridden."""
    defaults = dict(
        title="Study daily",
        description="Short sessions beat cramming.",
        author_id="u1",
        author_name="Ana",
        created_at=1000,
        updated_at=1000,
    )
    defaults.update(kwargs)
    return Tip(id=id, **defaults)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "tipsync.db"


@pytest.fixture
def tip_store(db_path):
    store = TipStore(db_path)
    yield store
    store.close()


@pytest.fixture
def user_store(db_path):
    store = UserStore(db_path)
    yield store
    store.close()


@pytest.fixture
def remote():
    return FakeDocumentStore()


@pytest.fixture
def engine(tip_store, remote):
    return SyncEngine(tip_store, remote)


@pytest.fixture
def ana():
    return User(id="u1", name="Ana", email="ana@example.com")


@pytest.fixture
def offline_config(tmp_path: Path) -> StoreConfig:
    """Store config with no remote configured."""
    return StoreConfig(path=tmp_path / "store")
