"""
HTTP client for a remote document store, plus the document schema.

Talks to a small REST document API:

    PUT    /v1/collections/{collection}/documents/{id}   body: {"fields": {...}}
    GET    /v1/collections/{collection}/documents/{id}   -> {"id", "fields"}
    GET    /v1/collections/{collection}/documents        -> {"documents": [...]}
           ?order_by=FIELD&direction=asc|desc[&field=F&value=V]
    DELETE /v1/collections/{collection}/documents/{id}

Each call makes exactly one request. Retries and cadence belong to the
caller; a failed write is simply left dirty for the next sync.

Documents are flat field maps. Tips use camelCase field names
(title, description, imageRef, authorId, authorName, authorPhotoRef,
createdAt, updatedAt); users use name, email, bio, photoRef, tipsCount,
lastSyncedAt.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from .errors import RemoteRejectedError, RemoteUnavailableError
from .types import Tip, User, is_remote_url, now_millis, validate_id

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


# ---------------------------------------------------------------------------
# Document schema
# ---------------------------------------------------------------------------

def tip_to_fields(tip: Tip) -> dict[str, Any]:
    """Field map for pushing a tip. Local file image refs are not sent."""
    return {
        "title": tip.title,
        "description": tip.description,
        "imageRef": tip.image_ref if is_remote_url(tip.image_ref) else "",
        "authorId": tip.author_id,
        "authorName": tip.author_name,
        "authorPhotoRef": tip.author_photo_ref or "",
        "createdAt": tip.created_at,
        "updatedAt": tip.updated_at,
    }


def _str_field(fields: dict[str, Any], key: str) -> str:
    value = fields.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} is not a string")
    return value


def _optional_str_field(fields: dict[str, Any], key: str) -> Optional[str]:
    value = _str_field(fields, key)
    return value or None


def _millis_field(fields: dict[str, Any], key: str, default: int) -> int:
    value = fields.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"field {key!r} is not a number")
    return int(value)


def tip_from_document(id: str, fields: dict[str, Any]) -> Tip:
    """
    Build a synced Tip from a remote document.

    Missing text fields become empty strings and missing timestamps
    default to now.

    Raises:
        ValueError: If the id is invalid or a field has the wrong type
    """
    validate_id(id)
    now = now_millis()
    return Tip(
        id=id,
        title=_str_field(fields, "title"),
        description=_str_field(fields, "description"),
        image_ref=_optional_str_field(fields, "imageRef"),
        author_id=_str_field(fields, "authorId"),
        author_name=_str_field(fields, "authorName"),
        author_photo_ref=_optional_str_field(fields, "authorPhotoRef"),
        created_at=_millis_field(fields, "createdAt", now),
        updated_at=_millis_field(fields, "updatedAt", now),
        is_synced=True,
        is_deleted=False,
    )


def user_to_fields(user: User) -> dict[str, Any]:
    """Field map for pushing a user profile."""
    return {
        "name": user.name,
        "email": user.email,
        "bio": user.bio or "",
        "photoRef": user.photo_ref or "",
        "tipsCount": user.tips_count,
        "lastSyncedAt": user.last_synced_at,
    }


def user_from_document(id: str, fields: dict[str, Any]) -> User:
    """Build a User from a remote profile document."""
    validate_id(id)
    return User(
        id=id,
        name=_str_field(fields, "name"),
        email=_str_field(fields, "email"),
        bio=_optional_str_field(fields, "bio"),
        photo_ref=_optional_str_field(fields, "photoRef"),
        tips_count=_millis_field(fields, "tipsCount", 0),
        last_synced_at=_millis_field(fields, "lastSyncedAt", 0),
    )


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

class HttpDocumentStore:
    """httpx client for the REST document API. Satisfies RemoteDocumentStoreProtocol."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        *,
        project: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._api_url = api_url.rstrip("/")
        self._api_key = api_key
        self._project = project

        # Refuse non-HTTPS for remote APIs (bearer token would be sent in cleartext)
        if not self._api_url.startswith("https://"):
            from urllib.parse import urlparse
            host = urlparse(self._api_url).hostname or ""
            if host not in ("localhost", "127.0.0.1", "::1"):
                raise ValueError(
                    f"Document API URL must use HTTPS (got {self._api_url}). "
                    "Use HTTPS to protect API credentials, or use localhost for local development."
                )

        headers: dict[str, str] = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if project:
            headers["X-Project"] = project

        self._client = httpx.Client(
            base_url=self._api_url,
            headers=headers,
            timeout=timeout,
        )

    @staticmethod
    def _path(collection: str, id: str | None = None) -> str:
        path = f"/v1/collections/{quote(collection, safe='')}/documents"
        if id is not None:
            path += f"/{quote(id, safe='')}"
        return path

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send one request, mapping transport and status errors.

        404 responses are returned to the caller; other 4xx raise
        RemoteRejectedError, 5xx and transport failures raise
        RemoteUnavailableError.
        """
        try:
            resp = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteUnavailableError(f"{method} {path} failed: {e}") from e

        if resp.status_code == 404:
            return resp
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            if resp.status_code >= 500 or resp.status_code == 429:
                raise RemoteUnavailableError(
                    f"{method} {path} failed: {resp.status_code}"
                ) from e
            raise RemoteRejectedError(
                f"{method} {path} rejected: {resp.status_code} {resp.text}"
            ) from e
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as e:
            raise RemoteUnavailableError(f"Unreadable response: {e}") from e
        if not isinstance(data, dict):
            raise RemoteUnavailableError("Unexpected response shape")
        return data

    def put_document(self, collection: str, id: str, fields: dict[str, Any]) -> None:
        """PUT a full document, replacing any existing one."""
        resp = self._request("PUT", self._path(collection, id), json={"fields": fields})
        if resp.status_code == 404:
            raise RemoteRejectedError(f"Collection not found: {collection}")

    def get_document(self, collection: str, id: str) -> Optional[dict[str, Any]]:
        """GET one document's fields, or None if absent."""
        resp = self._request("GET", self._path(collection, id))
        if resp.status_code == 404:
            return None
        data = self._json(resp)
        return dict(data.get("fields") or {})

    def query_ordered(
        self,
        collection: str,
        *,
        field_equals: Optional[tuple[str, Any]] = None,
        order_by: str,
        descending: bool = False,
    ) -> list[tuple[str, dict[str, Any]]]:
        """List documents as (id, fields) pairs, optionally filtered by one field."""
        params: dict[str, Any] = {
            "order_by": order_by,
            "direction": "desc" if descending else "asc",
        }
        if field_equals is not None:
            params["field"], params["value"] = field_equals
        resp = self._request("GET", self._path(collection), params=params)
        if resp.status_code == 404:
            return []
        documents = []
        for doc in self._json(resp).get("documents", []):
            try:
                documents.append((doc["id"], dict(doc.get("fields") or {})))
            except (KeyError, TypeError) as e:
                logger.warning("Skipping malformed document in %s: %s", collection, e)
        return documents

    def delete_document(self, collection: str, id: str) -> None:
        """DELETE a document. An already-absent document is not an error."""
        self._request("DELETE", self._path(collection, id))

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()


def parse_tip_documents(
    documents: list[tuple[str, dict[str, Any]]],
) -> list[Tip]:
    """Convert queried documents to tips, skipping any that cannot be parsed."""
    tips = []
    for doc_id, fields in documents:
        try:
            tips.append(tip_from_document(doc_id, fields))
        except ValueError as e:
            logger.warning("Skipping unreadable tip document %r: %s", doc_id, e)
    return tips
