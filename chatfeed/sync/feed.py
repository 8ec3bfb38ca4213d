"""Ordered, deduplicated feed of admitted entries.

Entries reach the feed from two sources: the one-shot snapshot and the live
subscription. Either may deliver an entry the other already delivered, and
they may arrive in any order relative to each other. Admission is keyed by
entry id, so the final feed is the union of both sources sorted by
``(created_at, id)`` no matter which arrived first.
"""

import bisect
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Iterator

from ..models import Entry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedState:
    """Immutable snapshot of the feed.

    ``entries`` and ``ids`` always describe the same set of entries.
    """

    entries: tuple[Entry, ...] = ()
    ids: frozenset = frozenset()

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self.entries)

    def __contains__(self, entry_id: Any) -> bool:
        return entry_id in self.ids

    @property
    def ordered_ids(self) -> list[Any]:
        """Entry ids in feed order."""
        return [e.id for e in self.entries]

    @property
    def last(self) -> Entry | None:
        return self.entries[-1] if self.entries else None


def _is_admissible(entry: Entry) -> bool:
    if getattr(entry, "id", None) is None or getattr(entry, "created_at", None) is None:
        logger.warning(f"Rejected malformed entry: {entry!r}")
        return False
    return True


class FeedReducer:
    """Owns the FeedState and applies admissions to it.

    Each admission builds a complete new FeedState and swaps it in with a
    single assignment, so a reader holding ``state`` always sees a consistent
    value. Duplicate and out-of-order entries are normal input, never errors.
    """

    def __init__(self) -> None:
        self._state = FeedState()
        self._snapshot_applied = False

    @property
    def state(self) -> FeedState:
        return self._state

    @property
    def snapshot_applied(self) -> bool:
        return self._snapshot_applied

    def admit_snapshot(self, entries: Iterable[Entry]) -> int:
        """Merge the historical snapshot into the feed.

        Args:
            entries: Snapshot entries, ideally ascending by creation time.

        Returns:
            Number of entries newly admitted.
        """
        if self._snapshot_applied:
            logger.warning("Snapshot admitted more than once; merging idempotently")
        self._snapshot_applied = True

        current = self._state
        seen = set(current.ids)
        fresh: list[Entry] = []
        for entry in entries:
            if not _is_admissible(entry) or entry.id in seen:
                continue
            seen.add(entry.id)
            fresh.append(entry)

        if fresh:
            merged = sorted(current.entries + tuple(fresh), key=lambda e: e.sort_key)
            self._state = FeedState(entries=tuple(merged), ids=frozenset(seen))

        logger.debug(
            f"Snapshot admitted {len(fresh)} entries, feed now has {len(self._state)}"
        )
        return len(fresh)

    def admit_live(self, entry: Entry) -> bool:
        """Admit a single pushed entry.

        Returns:
            True if the entry was added, False if it was a duplicate or
            malformed.
        """
        if not _is_admissible(entry):
            return False

        current = self._state
        if entry.id in current.ids:
            logger.debug(f"Ignored duplicate entry {entry.id!r}")
            return False

        entries = list(current.entries)
        if not entries or entries[-1].sort_key <= entry.sort_key:
            entries.append(entry)
        else:
            # Backfilled or out-of-order delivery
            bisect.insort(entries, entry, key=lambda e: e.sort_key)

        self._state = FeedState(
            entries=tuple(entries),
            ids=current.ids | {entry.id},
        )
        logger.debug(f"Admitted live entry {entry.id!r}")
        return True
