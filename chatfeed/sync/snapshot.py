"""One-shot bounded read of the first entries of the feed."""

import logging

from ..errors import DecodeError, StoreError, TransientFetchError
from ..models import Entry
from ..store_client import RestStore

logger = logging.getLogger(__name__)


class SnapshotLoader:
    """Fetches the historical window shown when a session starts."""

    def __init__(self, store: RestStore, table: str = "messages"):
        self._store = store
        self._table = table

    async def load(self, limit: int = 200) -> list[Entry]:
        """Fetch the first ``limit`` entries by creation time, oldest first.

        Args:
            limit: Maximum number of entries to return.

        Returns:
            Entries ascending by ``created_at``.

        Raises:
            TransientFetchError: If the store is unavailable. Not retried.
        """
        if limit <= 0:
            return []

        try:
            rows = await self._store.query(
                self._table,
                order=("created_at", True),
                limit=limit,
            )
        except StoreError as e:
            raise TransientFetchError(f"Snapshot load failed: {e}") from e

        entries: list[Entry] = []
        for row in rows[:limit]:
            try:
                entries.append(Entry.from_row(row))
            except DecodeError as e:
                logger.warning(f"Skipping undecodable snapshot row: {e}")

        entries.sort(key=lambda e: e.sort_key)
        logger.info(f"Loaded snapshot of {len(entries)} entries")
        return entries
