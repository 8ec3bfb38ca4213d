"""Submission of new entries to the store.

The composer never touches the feed. A submitted entry shows up only when
the store echoes it back through the live subscription, exactly like an
entry written by anyone else.
"""

import logging
import re
import uuid
from datetime import datetime, timezone

from ..errors import BlobStoreError, SendError, SendFailure, StoreError
from ..models import AttachmentRef, Entry, EntryKind, Viewer
from ..store_client import BlobStore, RestStore

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def placeholder_body(kind: EntryKind, filename: str) -> str:
    """Human-readable body stored with an attachment entry."""
    if kind is EntryKind.IMAGE:
        return f"[image] {filename}"
    return f"[file] {filename}"


def blob_path(viewer: Viewer, filename: str) -> str:
    """Storage path for an upload: ``<user_id>/<uuid>-<safe filename>``."""
    safe = _UNSAFE_FILENAME_CHARS.sub("_", filename).strip("._") or "upload"
    return f"{viewer.user_id}/{uuid.uuid4().hex}-{safe}"


class Composer:
    """Validates and writes text and attachment entries."""

    def __init__(
        self,
        store: RestStore,
        blobs: BlobStore,
        viewer: Viewer,
        table: str = "messages",
    ):
        self._store = store
        self._blobs = blobs
        self._viewer = viewer
        self._table = table
        self._sending = False

    @property
    def is_sending(self) -> bool:
        return self._sending

    async def submit_text(self, body: str) -> None:
        """Write a text entry.

        Raises:
            SendError: ``validation`` for an empty body or a send already in
                progress, ``write`` if the store rejects the record.
        """
        content = (body or "").strip()
        if not content:
            raise SendError(SendFailure.VALIDATION, "Message body is empty")
        self._check_idle()

        self._sending = True
        try:
            await self._write(self._entry(content, EntryKind.TEXT))
        finally:
            self._sending = False

    async def submit_attachment(
        self, blob: bytes, filename: str, media_type: str | None = None
    ) -> None:
        """Upload a blob and write an entry referencing it.

        Raises:
            SendError: ``validation`` for an empty blob or filename,
                ``storage`` if the upload fails (nothing is written),
                ``write`` if the store rejects the record.
        """
        if not blob:
            raise SendError(SendFailure.VALIDATION, "Attachment is empty")
        if not filename or not filename.strip():
            raise SendError(SendFailure.VALIDATION, "Attachment has no filename")
        self._check_idle()

        filename = filename.strip()
        self._sending = True
        try:
            path = blob_path(self._viewer, filename)
            try:
                await self._blobs.put(path, blob, media_type)
            except BlobStoreError as e:
                logger.error(f"Attachment upload failed: {e}")
                raise SendError(SendFailure.STORAGE, str(e)) from e

            kind = EntryKind.for_media_type(media_type)
            attachment = AttachmentRef(
                url=self._blobs.public_url_for(path),
                filename=filename,
                media_type=media_type,
            )
            await self._write(
                self._entry(placeholder_body(kind, filename), kind, attachment)
            )
        finally:
            self._sending = False

    def _check_idle(self) -> None:
        if self._sending:
            raise SendError(SendFailure.VALIDATION, "A message is already being sent")

    def _entry(
        self,
        body: str,
        kind: EntryKind,
        attachment: AttachmentRef | None = None,
    ) -> Entry:
        # id and created_at are assigned by the store; these are placeholders
        return Entry(
            id=None,
            author_id=self._viewer.user_id,
            author_email=self._viewer.email,
            body=body,
            created_at=datetime.now(timezone.utc),
            kind=kind,
            attachment=attachment,
        )

    async def _write(self, entry: Entry) -> None:
        try:
            await self._store.insert(self._table, entry.to_record())
        except StoreError as e:
            logger.error(f"Entry write failed: {e}")
            raise SendError(SendFailure.WRITE, str(e)) from e
        logger.info(f"Submitted {entry.kind.value} entry")
