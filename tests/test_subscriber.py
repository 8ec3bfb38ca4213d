"""Tests for the live update subscriber."""

import asyncio
import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from chatfeed.errors import DecodeError
from chatfeed.mqtt_client import ChangeStream, PushChannel, RawChangeEvent
from chatfeed.sync import LiveSubscriber
from chatfeed.sync.subscriber import decode_insert_event

TOPIC = "chatfeed/public/messages/INSERT"


def insert_event(entry_id, created_at="2026-02-03T10:00:00Z", **extra):
    payload = {
        "type": "INSERT",
        "table": "messages",
        "record": {
            "id": entry_id,
            "user_id": "u1",
            "user_email": "alice@example.com",
            "content": f"message {entry_id}",
            "created_at": created_at,
        },
    }
    payload.update(extra)
    return RawChangeEvent(topic=TOPIC, payload=json.dumps(payload))


@pytest.fixture
def channel():
    """Push channel double handing out real ChangeStreams."""
    channel = MagicMock(spec=PushChannel)
    channel.streams = []

    async def open_stream(table, event="INSERT"):
        stream = ChangeStream(TOPIC)
        channel.streams.append(stream)
        return stream

    async def close_stream(stream):
        if not stream.closed:
            stream._finish()

    channel.open = AsyncMock(side_effect=open_stream)
    channel.close = AsyncMock(side_effect=close_stream)
    return channel


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


class TestDecodeInsertEvent:
    """Tests for decoding raw events."""

    def test_decodes_record(self):
        entry = decode_insert_event(insert_event(7), "messages")
        assert entry.id == 7
        assert entry.body == "message 7"

    def test_accepts_realtime_aliases(self):
        payload = json.dumps({
            "eventType": "INSERT",
            "new": {"id": 8, "content": "x", "created_at": "2026-02-03T10:00:00Z"},
        })
        entry = decode_insert_event(RawChangeEvent(TOPIC, payload), "messages")
        assert entry.id == 8

    @pytest.mark.parametrize("payload", [
        "not json",
        json.dumps([1, 2]),
        json.dumps({"type": "DELETE", "record": {"id": 1}}),
        json.dumps({"type": "INSERT", "table": "profiles", "record": {"id": 1}}),
        json.dumps({"type": "INSERT"}),
        json.dumps({"type": "INSERT", "record": {"content": "no id"}}),
    ])
    def test_malformed_events(self, payload):
        with pytest.raises(DecodeError):
            decode_insert_event(RawChangeEvent(TOPIC, payload), "messages")


class TestLiveSubscriber:
    """Tests for subscription lifecycle and delivery."""

    @pytest.mark.asyncio
    async def test_delivers_decoded_entries(self, channel):
        received = []
        subscriber = LiveSubscriber(channel, "messages")

        handle = await subscriber.subscribe(received.append)
        stream = channel.streams[0]
        stream._feed(insert_event(1))
        stream._feed(insert_event(2))
        await settle()

        assert [e.id for e in received] == [1, 2]
        assert handle.delivered == 2
        channel.open.assert_called_once_with("messages", "INSERT")

        await subscriber.unsubscribe(handle)

    @pytest.mark.asyncio
    async def test_malformed_events_dropped(self, channel):
        received = []
        subscriber = LiveSubscriber(channel, "messages")

        handle = await subscriber.subscribe(received.append)
        stream = channel.streams[0]
        stream._feed(RawChangeEvent(TOPIC, "garbage"))
        stream._feed(insert_event(3))
        await settle()

        assert [e.id for e in received] == [3]
        assert handle.dropped == 1
        assert handle.active

        await subscriber.unsubscribe(handle)

    @pytest.mark.asyncio
    async def test_unrepresentable_fields_dropped(self, channel):
        received = []
        subscriber = LiveSubscriber(channel, "messages")

        handle = await subscriber.subscribe(received.append)
        stream = channel.streams[0]
        stream._feed(insert_event(1, created_at=1e20))
        stream._feed(insert_event([9]))
        stream._feed(insert_event(2))
        await settle()

        assert [e.id for e in received] == [2]
        assert handle.dropped == 2
        assert handle.active

        await subscriber.unsubscribe(handle)

    @pytest.mark.asyncio
    async def test_callback_error_does_not_stop_delivery(self, channel):
        received = []

        def on_insert(entry):
            if entry.id == 1:
                raise RuntimeError("boom")
            received.append(entry)

        subscriber = LiveSubscriber(channel, "messages")
        handle = await subscriber.subscribe(on_insert)
        stream = channel.streams[0]
        stream._feed(insert_event(1))
        stream._feed(insert_event(2))
        await settle()

        assert [e.id for e in received] == [2]
        await subscriber.unsubscribe(handle)

    @pytest.mark.asyncio
    async def test_unsubscribe_releases_stream(self, channel):
        subscriber = LiveSubscriber(channel, "messages")
        handle = await subscriber.subscribe(lambda entry: None)

        await subscriber.unsubscribe(handle)

        assert not handle.active
        channel.close.assert_called_once_with(handle.stream)

        # Second call is harmless
        await subscriber.unsubscribe(handle)

    @pytest.mark.asyncio
    async def test_scoped_subscription_released_on_error(self, channel):
        subscriber = LiveSubscriber(channel, "messages")

        with pytest.raises(ValueError):
            async with subscriber.subscription(lambda entry: None) as handle:
                assert handle.active
                raise ValueError("caller failed")

        assert not handle.active
        channel.close.assert_called_once_with(handle.stream)
