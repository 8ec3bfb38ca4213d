"""Tests for the composer."""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from chatfeed.errors import BlobStoreError, SendError, SendFailure, StoreError
from chatfeed.models import Viewer
from chatfeed.store_client import BlobStore, RestStore
from chatfeed.sync import Composer
from chatfeed.sync.composer import blob_path, placeholder_body
from chatfeed.models import EntryKind


@pytest.fixture
def store():
    store = MagicMock(spec=RestStore)
    store.insert = AsyncMock(return_value={"id": 1})
    return store


@pytest.fixture
def blobs():
    blobs = MagicMock(spec=BlobStore)
    blobs.put = AsyncMock(return_value=None)
    blobs.public_url_for = MagicMock(
        side_effect=lambda path: f"http://blobs/public/{path}"
    )
    return blobs


@pytest.fixture
def composer(store, blobs):
    viewer = Viewer(user_id="u1", email="alice@example.com")
    return Composer(store, blobs, viewer, "messages")


class TestSubmitText:
    """Tests for text submission."""

    @pytest.mark.asyncio
    async def test_writes_trimmed_body(self, composer, store):
        await composer.submit_text("  hello there \n")

        store.insert.assert_called_once()
        table, record = store.insert.call_args[0]
        assert table == "messages"
        assert record == {
            "user_id": "u1",
            "user_email": "alice@example.com",
            "content": "hello there",
            "kind": "text",
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", ["", "   ", "\n\t"])
    async def test_empty_body_is_validation_error(self, composer, store, body):
        with pytest.raises(SendError) as exc_info:
            await composer.submit_text(body)

        assert exc_info.value.reason is SendFailure.VALIDATION
        store.insert.assert_not_called()

    @pytest.mark.asyncio
    async def test_store_failure_is_write_error(self, composer, store):
        store.insert.side_effect = StoreError("rejected", status_code=400)

        with pytest.raises(SendError) as exc_info:
            await composer.submit_text("hi")

        assert exc_info.value.reason is SendFailure.WRITE
        assert not composer.is_sending

    @pytest.mark.asyncio
    async def test_concurrent_send_rejected(self, composer, store):
        release = asyncio.Event()

        async def slow_insert(*args):
            await release.wait()
            return {"id": 1}

        store.insert.side_effect = slow_insert
        first = asyncio.create_task(composer.submit_text("one"))
        await asyncio.sleep(0)
        assert composer.is_sending

        with pytest.raises(SendError) as exc_info:
            await composer.submit_text("two")
        assert exc_info.value.reason is SendFailure.VALIDATION

        release.set()
        await first
        assert store.insert.call_count == 1


class TestSubmitAttachment:
    """Tests for attachment submission."""

    @pytest.mark.asyncio
    async def test_image_upload_then_write(self, composer, store, blobs):
        await composer.submit_attachment(b"\x89PNG", "cat.png", "image/png")

        path, blob, media_type = blobs.put.call_args[0]
        assert path.startswith("u1/")
        assert path.endswith("-cat.png")
        assert blob == b"\x89PNG"
        assert media_type == "image/png"

        _, record = store.insert.call_args[0]
        assert record["kind"] == "image"
        assert record["content"] == "[image] cat.png"
        assert record["file_url"] == f"http://blobs/public/{path}"
        assert record["file_name"] == "cat.png"
        assert record["file_type"] == "image/png"

    @pytest.mark.asyncio
    async def test_non_image_is_file(self, composer, store):
        await composer.submit_attachment(b"%PDF", "report.pdf", "application/pdf")

        _, record = store.insert.call_args[0]
        assert record["kind"] == "file"
        assert record["content"] == "[file] report.pdf"

    @pytest.mark.asyncio
    async def test_upload_failure_is_storage_error(self, composer, store, blobs):
        blobs.put.side_effect = BlobStoreError("bucket missing")

        with pytest.raises(SendError) as exc_info:
            await composer.submit_attachment(b"data", "notes.txt", "text/plain")

        assert exc_info.value.reason is SendFailure.STORAGE
        store.insert.assert_not_called()

    @pytest.mark.asyncio
    async def test_write_failure_after_upload(self, composer, store, blobs):
        store.insert.side_effect = StoreError("rejected")

        with pytest.raises(SendError) as exc_info:
            await composer.submit_attachment(b"data", "notes.txt", "text/plain")

        assert exc_info.value.reason is SendFailure.WRITE
        blobs.put.assert_called_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("blob,filename", [(b"", "a.txt"), (b"x", ""), (b"x", "  ")])
    async def test_invalid_attachment(self, composer, store, blobs, blob, filename):
        with pytest.raises(SendError) as exc_info:
            await composer.submit_attachment(blob, filename, "text/plain")

        assert exc_info.value.reason is SendFailure.VALIDATION
        blobs.put.assert_not_called()
        store.insert.assert_not_called()


class TestHelpers:
    """Tests for path and placeholder helpers."""

    def test_blob_path_sanitizes_filename(self):
        path = blob_path(Viewer(user_id="u1"), "my holiday pic!.jpg")
        assert path.startswith("u1/")
        assert path.endswith("-my_holiday_pic_.jpg")
        assert " " not in path

    def test_placeholder_body(self):
        assert placeholder_body(EntryKind.IMAGE, "a.png") == "[image] a.png"
        assert placeholder_body(EntryKind.FILE, "a.zip") == "[file] a.zip"
