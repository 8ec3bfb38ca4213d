"""MQTT push channel delivering table change events."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import paho.mqtt.client as mqtt

from .config import RealtimeConfig

logger = logging.getLogger(__name__)

_STREAM_CLOSED = object()


@dataclass
class RawChangeEvent:
    """A change event as received from the broker, not yet decoded."""

    topic: str
    payload: str
    received_at: float = field(default_factory=time.time)


class ChangeStream:
    """Async iterator over raw change events for one topic.

    Iteration ends once the stream is closed through ``PushChannel.close``.
    """

    def __init__(self, topic: str):
        self.topic = topic
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False

    def _feed(self, event: RawChangeEvent) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    def _finish(self) -> None:
        self.closed = True
        self._queue.put_nowait(_STREAM_CLOSED)

    def __aiter__(self) -> "ChangeStream":
        return self

    async def __anext__(self) -> RawChangeEvent:
        item = await self._queue.get()
        if item is _STREAM_CLOSED:
            raise StopAsyncIteration
        return item


class PushChannel:
    """Async MQTT client routing change events to open streams."""

    def __init__(self, config: RealtimeConfig):
        self.config = config
        self._streams: dict[str, list[ChangeStream]] = {}

        # Paho MQTT client
        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self._client.on_connect = self._handle_connect
        self._client.on_message = self._handle_message
        self._client.on_disconnect = self._handle_disconnect

        # Connection state
        self._connected = False
        self._loop: asyncio.AbstractEventLoop | None = None

    def topic_for(self, table: str, event: str = "INSERT") -> str:
        """Broker topic carrying ``event`` changes of ``table``."""
        return f"{self.config.topic_prefix}/{self.config.schema}/{table}/{event.upper()}"

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle connection to broker."""
        if reason_code == 0:
            self._connected = True
            logger.info(f"Connected to MQTT broker at {self.config.broker}:{self.config.port}")

            # Resubscribe open streams after a reconnect
            for topic in self._streams:
                client.subscribe(topic, qos=1)
                logger.info(f"Subscribed to topic: {topic}")
        else:
            logger.error(f"Failed to connect to MQTT broker: {reason_code}")

    def _handle_message(
        self,
        client: mqtt.Client,
        userdata: Any,
        msg: mqtt.MQTTMessage,
    ) -> None:
        """Handle incoming message on the paho network thread."""
        try:
            payload = msg.payload.decode("utf-8")
        except UnicodeDecodeError:
            payload = str(msg.payload)

        event = RawChangeEvent(topic=msg.topic, payload=payload)
        logger.debug(f"Received event on {msg.topic}: {payload[:100]}")

        if self._loop is None:
            return
        for topic, streams in list(self._streams.items()):
            if mqtt.topic_matches_sub(topic, msg.topic):
                for stream in streams:
                    self._loop.call_soon_threadsafe(stream._feed, event)

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle disconnection from broker."""
        self._connected = False
        logger.warning(f"Disconnected from MQTT broker: {reason_code}")

    async def connect(self) -> bool:
        """Connect to the MQTT broker.

        Returns:
            True if connection successful.
        """
        self._loop = asyncio.get_running_loop()

        if self.config.username and self.config.password:
            self._client.username_pw_set(self.config.username, self.config.password)

        try:
            self._client.connect(
                self.config.broker, self.config.port, keepalive=self.config.keepalive
            )
            self._client.loop_start()

            # Wait for connection
            for _ in range(50):  # 5 second timeout
                if self._connected:
                    return True
                await asyncio.sleep(0.1)

            logger.error("Timeout waiting for MQTT connection")
            return False

        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            return False

    async def disconnect(self) -> None:
        """Close every open stream and disconnect from the broker."""
        for streams in list(self._streams.values()):
            for stream in list(streams):
                await self.close(stream)
        self._client.loop_stop()
        self._client.disconnect()
        self._connected = False

    async def open(self, table: str, event: str = "INSERT") -> ChangeStream:
        """Open a stream of change events for a table.

        Args:
            table: Table whose changes to receive.
            event: Change type filter (INSERT, UPDATE, DELETE or ``+`` for all).

        Returns:
            A ChangeStream fed from the broker.
        """
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

        topic = self.topic_for(table, event)
        stream = ChangeStream(topic)
        streams = self._streams.setdefault(topic, [])
        streams.append(stream)

        if len(streams) == 1 and self._connected:
            self._client.subscribe(topic, qos=1)
            logger.info(f"Subscribed to topic: {topic}")
        return stream

    async def close(self, stream: ChangeStream) -> None:
        """Close a stream; its iterator finishes after pending events."""
        streams = self._streams.get(stream.topic, [])
        if stream in streams:
            streams.remove(stream)
            if not streams:
                del self._streams[stream.topic]
                if self._connected:
                    self._client.unsubscribe(stream.topic)
                    logger.info(f"Unsubscribed from topic: {stream.topic}")
        if not stream.closed:
            stream._finish()

    @property
    def is_connected(self) -> bool:
        """Check if connected to broker."""
        return self._connected

    async def check_connection(self) -> bool:
        """Check if broker is reachable."""
        if self._connected:
            return True

        try:
            test_client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
            test_client.connect(self.config.broker, self.config.port, keepalive=5)
            test_client.disconnect()
            return True
        except Exception:
            return False
