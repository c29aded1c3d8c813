"""
Data types for the tips cache.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Optional

from .errors import ValidationError


def now_millis() -> int:
    """Current wall-clock time in milliseconds since the epoch.

    All timestamps in tipsync are integer milliseconds, matching the
    remote document schema.
    """
    return int(time.time() * 1000)


MAX_ID_LENGTH = 128
MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 5000
MAX_IMAGE_REF_LENGTH = 2048
MAX_AUTHOR_NAME_LENGTH = 200

# Control characters and DEL
_ID_BLOCKED_RE = re.compile(r'[\x00-\x1f\x7f]')

_REMOTE_URL_RE = re.compile(r'^https?://', re.IGNORECASE)


def is_remote_url(ref: Optional[str]) -> bool:
    """True if an image ref points at a remote URL rather than a local file."""
    return bool(ref) and bool(_REMOTE_URL_RE.match(ref))


def is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def validate_id(id: str) -> None:
    """Validate a tip or user ID."""
    if not id or len(id) > MAX_ID_LENGTH:
        raise ValidationError(f"ID must be 1-{MAX_ID_LENGTH} characters")
    if _ID_BLOCKED_RE.search(id):
        raise ValidationError(f"ID contains invalid characters: {id!r}")


def _check_length(name: str, value: Optional[str], limit: int) -> None:
    if value is not None and len(value) > limit:
        raise ValidationError(f"{name} must be at most {limit} characters")


def validate_content(
    title: str,
    description: str,
    image_ref: Optional[str] = None,
) -> None:
    """Validate user-editable tip content before any write."""
    if is_blank(title):
        raise ValidationError("Title must not be blank")
    if is_blank(description):
        raise ValidationError("Description must not be blank")
    _check_length("Title", title, MAX_TITLE_LENGTH)
    _check_length("Description", description, MAX_DESCRIPTION_LENGTH)
    _check_length("Image ref", image_ref, MAX_IMAGE_REF_LENGTH)


@dataclass
class Tip:
    """
    A user-authored study tip.

    The author fields are a denormalized snapshot of the author's profile,
    duplicated on each tip so it can be shown offline.

    ``is_synced`` is False while a local change has not been confirmed by
    the remote store. ``is_deleted`` hides the tip from every listing;
    the row stays until purged. ``revision`` is local bookkeeping bumped
    on every write and never leaves this device.
    """
    id: str
    title: str
    description: str
    author_id: str = ""
    author_name: str = ""
    author_photo_ref: Optional[str] = None
    image_ref: Optional[str] = None
    created_at: int = field(default_factory=now_millis)
    updated_at: int = field(default_factory=now_millis)
    is_synced: bool = False
    is_deleted: bool = False
    revision: int = 0

    @property
    def has_author(self) -> bool:
        """True if the author snapshot is complete enough to push."""
        return not (is_blank(self.author_id) or is_blank(self.author_name))

    def validate(self) -> None:
        """Raise ValidationError if this tip must not be stored."""
        validate_id(self.id)
        validate_content(self.title, self.description, self.image_ref)
        _check_length("Author name", self.author_name, MAX_AUTHOR_NAME_LENGTH)


@dataclass
class User:
    """
    The signed-in user's profile.

    ``tips_count`` is derived from the local cache and is not authoritative.
    """
    id: str
    name: str
    email: str = ""
    bio: Optional[str] = None
    photo_ref: Optional[str] = None
    tips_count: int = 0
    last_synced_at: int = 0


@dataclass(frozen=True)
class Author:
    """An author as shown in filter lists, taken from tip snapshots."""
    id: str
    name: str
    photo_ref: Optional[str] = None

    @classmethod
    def from_tip(cls, tip: Tip) -> "Author":
        return cls(id=tip.author_id, name=tip.author_name, photo_ref=tip.author_photo_ref)
