"""Live subscription decoding pushed insert events into entries."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable

from ..errors import DecodeError
from ..models import Entry
from ..mqtt_client import ChangeStream, PushChannel, RawChangeEvent

logger = logging.getLogger(__name__)

InsertCallback = Callable[[Entry], None]


def decode_insert_event(event: RawChangeEvent, table: str) -> Entry:
    """Decode a raw change event into the inserted Entry.

    Raises:
        DecodeError: If the payload is not a well-formed insert on ``table``.
    """
    try:
        data = json.loads(event.payload)
    except (json.JSONDecodeError, TypeError) as e:
        raise DecodeError(f"Event payload is not JSON: {e}")
    if not isinstance(data, dict):
        raise DecodeError("Event payload is not an object")

    event_type = str(data.get("type") or data.get("eventType") or "").upper()
    if event_type != "INSERT":
        raise DecodeError(f"Unexpected event type {event_type or None!r}")

    event_table = data.get("table")
    if event_table is not None and event_table != table:
        raise DecodeError(f"Event for table {event_table!r}, expected {table!r}")

    record = data.get("record", data.get("new"))
    if record is None:
        raise DecodeError("Event carries no record")
    return Entry.from_row(record)


@dataclass
class SubscriptionHandle:
    """Live subscription returned by ``LiveSubscriber.subscribe``."""

    stream: ChangeStream
    task: asyncio.Task | None = None
    delivered: int = 0
    dropped: int = 0

    @property
    def active(self) -> bool:
        return self.task is not None and not self.task.done()


class LiveSubscriber:
    """Turns the push channel's insert events into typed entries.

    Delivery, ordering and duplication are whatever the channel provides;
    this class only decodes. Events that fail to decode are logged and
    dropped.
    """

    def __init__(self, channel: PushChannel, table: str = "messages"):
        self._channel = channel
        self._table = table

    async def subscribe(self, on_insert: InsertCallback) -> SubscriptionHandle:
        """Open the insert stream and start delivering entries.

        Args:
            on_insert: Called on the event loop for each decoded entry.

        Returns:
            Handle to pass to ``unsubscribe``.
        """
        stream = await self._channel.open(self._table, "INSERT")
        handle = SubscriptionHandle(stream=stream)
        handle.task = asyncio.create_task(self._pump(handle, on_insert))
        logger.info(f"Live subscription opened on {stream.topic}")
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Close the stream and wait for the delivery task to finish.

        Safe to call more than once.
        """
        await self._channel.close(handle.stream)
        if handle.task is not None:
            if not handle.task.done():
                handle.task.cancel()
            try:
                await handle.task
            except asyncio.CancelledError:
                pass
        logger.info(
            f"Live subscription closed (delivered={handle.delivered}, "
            f"dropped={handle.dropped})"
        )

    @asynccontextmanager
    async def subscription(
        self, on_insert: InsertCallback
    ) -> AsyncIterator[SubscriptionHandle]:
        """Scoped subscription released on every exit path."""
        handle = await self.subscribe(on_insert)
        try:
            yield handle
        finally:
            await self.unsubscribe(handle)

    async def _pump(self, handle: SubscriptionHandle, on_insert: InsertCallback) -> None:
        async for event in handle.stream:
            try:
                entry = decode_insert_event(event, self._table)
            except DecodeError as e:
                handle.dropped += 1
                logger.warning(f"Dropped malformed event on {event.topic}: {e}")
                continue

            handle.delivered += 1
            try:
                on_insert(entry)
            except Exception as e:
                logger.error(f"Insert callback failed for entry {entry.id!r}: {e}", exc_info=True)
