"""Typed values for conversation entries and author profiles.

Rows from the store and records inside push events are decoded here, so every
other module works with ``Entry`` and ``AuthorProfile`` only.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import DecodeError

DEFAULT_HANDLE = "user"


class EntryKind(Enum):
    """Payload type of an entry."""

    TEXT = "text"
    IMAGE = "image"
    FILE = "file"

    @classmethod
    def for_media_type(cls, media_type: str | None) -> "EntryKind":
        """Pick image or file for an uploaded attachment."""
        if media_type and media_type.lower().startswith("image/"):
            return cls.IMAGE
        return cls.FILE


@dataclass(frozen=True)
class AttachmentRef:
    """Retrievable reference to an uploaded blob."""

    url: str
    filename: str
    media_type: str | None = None


@dataclass(frozen=True)
class Entry:
    """One immutable conversation message."""

    id: Any
    author_id: str | None
    author_email: str | None
    body: str
    created_at: datetime
    kind: EntryKind = EntryKind.TEXT
    attachment: AttachmentRef | None = None

    @property
    def sort_key(self) -> tuple:
        """Ordering key: creation time, then id."""
        return (self.created_at, _id_key(self.id))

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Entry":
        """Decode a ``messages`` row.

        Raises:
            DecodeError: If the row is not a mapping or lacks ``id`` or
                ``created_at``, the id is not a string or integer, or the
                timestamp cannot be parsed.
        """
        if not isinstance(row, dict):
            raise DecodeError(f"Expected a row mapping, got {type(row).__name__}")
        if row.get("id") is None:
            raise DecodeError("Row is missing 'id'")
        if isinstance(row["id"], bool) or not isinstance(row["id"], (str, int)):
            raise DecodeError(f"Row id must be a string or integer, got {row['id']!r}")
        if row.get("created_at") is None:
            raise DecodeError(f"Row {row['id']!r} is missing 'created_at'")

        created_at = parse_timestamp(row["created_at"])

        raw_kind = row.get("kind") or EntryKind.TEXT.value
        try:
            kind = EntryKind(raw_kind)
        except ValueError:
            raise DecodeError(f"Row {row['id']!r} has unknown kind {raw_kind!r}")

        attachment = None
        if row.get("file_url"):
            attachment = AttachmentRef(
                url=row["file_url"],
                filename=row.get("file_name") or "",
                media_type=row.get("file_type"),
            )

        return cls(
            id=row["id"],
            author_id=row.get("user_id"),
            author_email=row.get("user_email"),
            body=row.get("content") or "",
            created_at=created_at,
            kind=kind,
            attachment=attachment,
        )

    def to_record(self) -> dict[str, Any]:
        """Convert to a ``messages`` row (without store-assigned fields)."""
        record: dict[str, Any] = {
            "user_id": self.author_id,
            "user_email": self.author_email,
            "content": self.body,
            "kind": self.kind.value,
        }
        if self.attachment:
            record["file_url"] = self.attachment.url
            record["file_name"] = self.attachment.filename
            record["file_type"] = self.attachment.media_type
        return record


@dataclass(frozen=True)
class AuthorProfile:
    """Display metadata for an author."""

    author_id: str
    display_handle: str
    avatar_url: str | None = None
    is_fallback: bool = False

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "AuthorProfile":
        """Decode a ``profiles`` row."""
        if not isinstance(row, dict) or not row.get("user_id"):
            raise DecodeError("Profile row is missing 'user_id'")
        handle = row.get("username") or local_part(row.get("email"))
        return cls(
            author_id=row["user_id"],
            display_handle=handle,
            avatar_url=row.get("avatar_url"),
        )

    @classmethod
    def fallback(cls, author_id: str, email_or_handle: str | None) -> "AuthorProfile":
        """Synthesize a profile from the denormalized email on an entry."""
        return cls(
            author_id=author_id,
            display_handle=local_part(email_or_handle),
            is_fallback=True,
        )


@dataclass(frozen=True)
class Viewer:
    """Identity of the person running the session."""

    user_id: str
    email: str = ""


def local_part(email_or_handle: str | None) -> str:
    """Return the part of an email before ``@``, or the handle itself."""
    if not email_or_handle:
        return DEFAULT_HANDLE
    name = email_or_handle.split("@", 1)[0].strip()
    return name or DEFAULT_HANDLE


def parse_timestamp(value: Any) -> datetime:
    """Parse a store timestamp into an aware UTC datetime.

    Accepts datetimes, epoch seconds and ISO-8601 strings (a trailing ``Z``
    is allowed). Naive values are taken to be UTC.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            dt = datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as e:
            raise DecodeError(f"Timestamp out of range: {value!r} ({e})")
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise DecodeError(f"Invalid timestamp: {value!r}")
    else:
        raise DecodeError(f"Invalid timestamp type: {type(value).__name__}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _id_key(entry_id: Any) -> tuple:
    # Numeric ids sort numerically, anything else by its string form.
    if isinstance(entry_id, (int, float)) and not isinstance(entry_id, bool):
        return (0, entry_id, "")
    return (1, 0, str(entry_id))
