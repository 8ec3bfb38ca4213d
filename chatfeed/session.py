"""Feed session: snapshot, live subscription, profiles and composer.

All feed transitions go through one asyncio queue drained by a single
consumer task, so the snapshot and each live event are applied one at a time
in arrival order. Listeners receive every new FeedState and never mutate it.
"""

import asyncio
import logging
from typing import Any, Callable

from .config import Config
from .errors import TransientFetchError
from .models import AuthorProfile, Entry, Viewer
from .mqtt_client import PushChannel
from .store_client import BlobStore, RestStore
from .sync import (
    Composer,
    FeedReducer,
    FeedState,
    LiveSubscriber,
    ProfileResolver,
    SnapshotLoader,
    SubscriptionHandle,
)

logger = logging.getLogger(__name__)

StateListener = Callable[[FeedState], None]

_LIVE = "live"
_SNAPSHOT = "snapshot"
_SNAPSHOT_FAILED = "snapshot_failed"
_REFRESH = "refresh"
_STOP = "stop"


class FeedSession:
    """One viewer's session on the shared feed."""

    def __init__(
        self,
        store: RestStore,
        channel: PushChannel,
        blobs: BlobStore,
        config: Config,
    ):
        self.config = config
        messages_table = config.store.messages_table

        self.reducer = FeedReducer()
        self.snapshot = SnapshotLoader(store, messages_table)
        self.subscriber = LiveSubscriber(channel, messages_table)
        self.profiles = ProfileResolver(
            store,
            config.store.profiles_table,
            on_resolved=self._on_profile_resolved,
        )
        self.viewer = Viewer(user_id=config.viewer.user_id, email=config.viewer.email)
        self.composer = Composer(store, blobs, self.viewer, messages_table)

        self._listeners: list[StateListener] = []
        self._events: asyncio.Queue[tuple[str, Any]] | None = None
        self._ready: asyncio.Event | None = None
        self._snapshot_error: TransientFetchError | None = None
        self._consumer: asyncio.Task | None = None
        self._snapshot_task: asyncio.Task | None = None
        self._handle: SubscriptionHandle | None = None
        self._running = False

    @property
    def state(self) -> FeedState:
        return self.reducer.state

    @property
    def is_ready(self) -> bool:
        return self._ready is not None and self._ready.is_set()

    def add_listener(self, listener: StateListener) -> None:
        """Register a read-only observer of feed transitions."""
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def start(self) -> None:
        """Arm the live subscription and start loading the snapshot.

        The subscription is opened first so no insert committed while the
        snapshot is in flight can be missed.
        """
        if self._running:
            return

        self._running = True
        self._events = asyncio.Queue()
        self._ready = asyncio.Event()
        self._consumer = asyncio.create_task(self._apply_loop())
        self._handle = await self.subscriber.subscribe(self._on_live)
        self._snapshot_task = asyncio.create_task(self._load_snapshot())
        logger.info(
            f"Feed session started for viewer {self.viewer.user_id or '<anonymous>'}"
        )

    async def wait_ready(self) -> FeedState:
        """Wait until the snapshot has been applied.

        Raises:
            TransientFetchError: If the snapshot could not be loaded.
        """
        if self._ready is None:
            raise RuntimeError("Session has not been started")
        await self._ready.wait()
        if self._snapshot_error is not None:
            raise self._snapshot_error
        return self.state

    async def drain(self) -> None:
        """Wait until every queued transition has been applied."""
        if self._events is not None:
            await self._events.join()

    def display_profile(self, entry: Entry) -> AuthorProfile:
        """Profile to render for an entry's author right now."""
        if not entry.author_id:
            return AuthorProfile.fallback("", entry.author_email)
        return self.profiles.display_profile(entry.author_id, entry.author_email)

    def is_own(self, entry: Entry) -> bool:
        return bool(self.viewer.user_id) and entry.author_id == self.viewer.user_id

    async def close(self) -> None:
        """Tear down the subscription, queue consumer and profile fetches."""
        if not self._running:
            return
        self._running = False

        if self._handle is not None:
            await self.subscriber.unsubscribe(self._handle)
            self._handle = None

        if self._snapshot_task is not None and not self._snapshot_task.done():
            self._snapshot_task.cancel()
            try:
                await self._snapshot_task
            except asyncio.CancelledError:
                pass

        if self._consumer is not None:
            self._events.put_nowait((_STOP, None))
            await self._consumer
            self._consumer = None

        await self.profiles.close()
        logger.info("Feed session closed")

    async def __aenter__(self) -> "FeedSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _on_live(self, entry: Entry) -> None:
        if self._running and self._events is not None:
            self._events.put_nowait((_LIVE, entry))

    def _on_profile_resolved(self, profile: AuthorProfile) -> None:
        if self._running and self._events is not None:
            self._events.put_nowait((_REFRESH, profile))

    async def _load_snapshot(self) -> None:
        try:
            entries = await self.snapshot.load(self.config.feed.snapshot_limit)
        except TransientFetchError as e:
            logger.error(f"Snapshot load failed: {e}")
            self._events.put_nowait((_SNAPSHOT_FAILED, e))
            return
        except Exception as e:
            logger.error(f"Snapshot load failed unexpectedly: {e}", exc_info=True)
            error = TransientFetchError(f"Snapshot load failed: {e}")
            error.__cause__ = e
            self._events.put_nowait((_SNAPSHOT_FAILED, error))
            return
        self._events.put_nowait((_SNAPSHOT, entries))

    async def _apply_loop(self) -> None:
        while True:
            kind, payload = await self._events.get()
            try:
                if kind == _STOP:
                    break
                self._apply(kind, payload)
            except Exception as e:
                logger.error(f"Failed to apply {kind} event: {e}", exc_info=True)
                if kind == _SNAPSHOT and not self._ready.is_set():
                    self._snapshot_error = TransientFetchError(f"Snapshot apply failed: {e}")
                    self._ready.set()
            finally:
                self._events.task_done()

    def _apply(self, kind: str, payload: Any) -> None:
        changed = False
        if kind == _LIVE:
            changed = self.reducer.admit_live(payload)
            if changed and payload.author_id:
                self.profiles.resolve(payload.author_id, payload.author_email)
        elif kind == _SNAPSHOT:
            self.reducer.admit_snapshot(payload)
            for entry in payload:
                if entry.author_id:
                    self.profiles.resolve(entry.author_id, entry.author_email)
            self._ready.set()
            changed = True
        elif kind == _SNAPSHOT_FAILED:
            self._snapshot_error = payload
            self._ready.set()
        elif kind == _REFRESH:
            changed = True

        if changed:
            self._notify()

    def _notify(self) -> None:
        state = self.reducer.state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"Feed listener failed: {e}", exc_info=True)
