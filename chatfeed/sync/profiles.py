"""Lazy, coalesced cache of author profiles.

Profiles are fetched on first reference and kept for the whole session.
There is no invalidation: a profile edited after it was resolved keeps its
old display handle until the session ends. A lookup that fails because
the store is unavailable is not cached, so a later reference retries it.
"""

import asyncio
import logging
from typing import Callable

from ..errors import DecodeError, StoreError
from ..models import AuthorProfile
from ..store_client import RestStore

logger = logging.getLogger(__name__)

ResolvedCallback = Callable[[AuthorProfile], None]


class ProfileResolver:
    """Resolves author ids to display profiles.

    At most one fetch is outstanding per author id: concurrent misses share
    the same task. Failed or missing lookups resolve to a fallback derived
    from the entry's denormalized email, so callers never see an error.
    """

    def __init__(
        self,
        store: RestStore,
        table: str = "profiles",
        on_resolved: ResolvedCallback | None = None,
    ):
        self._store = store
        self._table = table
        self._on_resolved = on_resolved
        self._cache: dict[str, AuthorProfile] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self._closed = False

    def cached(self, author_id: str) -> AuthorProfile | None:
        return self._cache.get(author_id)

    def resolve(
        self, author_id: str, email_or_handle: str | None = None
    ) -> AuthorProfile | None:
        """Return the cached profile, or start resolving it.

        Args:
            author_id: Author to look up.
            email_or_handle: Denormalized email used for the fallback.

        Returns:
            The profile on a cache hit, None while the fetch is pending.
        """
        profile = self._cache.get(author_id)
        if profile is not None:
            return profile
        self._ensure_fetch(author_id, email_or_handle)
        return None

    async def resolve_async(
        self, author_id: str, email_or_handle: str | None = None
    ) -> AuthorProfile:
        """Resolve a profile, waiting for the shared fetch if needed."""
        profile = self._cache.get(author_id)
        if profile is not None:
            return profile
        task = self._ensure_fetch(author_id, email_or_handle)
        if task is None:
            return AuthorProfile.fallback(author_id, email_or_handle)
        return await asyncio.shield(task)

    def display_profile(
        self, author_id: str, email_or_handle: str | None = None
    ) -> AuthorProfile:
        """Profile to render now: cached, or a fallback until resolved."""
        profile = self.resolve(author_id, email_or_handle)
        if profile is None:
            return AuthorProfile.fallback(author_id, email_or_handle)
        return profile

    def _ensure_fetch(
        self, author_id: str, email_or_handle: str | None
    ) -> asyncio.Task | None:
        if self._closed:
            return None
        task = self._inflight.get(author_id)
        if task is None:
            task = asyncio.create_task(self._fetch(author_id, email_or_handle))
            self._inflight[author_id] = task
        return task

    async def _fetch(self, author_id: str, email_or_handle: str | None) -> AuthorProfile:
        try:
            rows = await self._store.query(
                self._table, filters={"user_id": author_id}, limit=1
            )
            if rows:
                profile = AuthorProfile.from_row(rows[0])
            else:
                logger.warning(f"No profile for author {author_id}; using fallback")
                profile = AuthorProfile.fallback(author_id, email_or_handle)
        except StoreError as e:
            # Not cached: the next reference to this author retries
            logger.warning(f"Profile fetch for {author_id} failed: {e}; using fallback")
            return AuthorProfile.fallback(author_id, email_or_handle)
        except DecodeError as e:
            logger.warning(f"Bad profile row for {author_id}: {e}; using fallback")
            profile = AuthorProfile.fallback(author_id, email_or_handle)
        finally:
            self._inflight.pop(author_id, None)

        self._cache[author_id] = profile
        if self._on_resolved is not None:
            try:
                self._on_resolved(profile)
            except Exception as e:
                logger.error(f"Profile listener failed: {e}", exc_info=True)
        return profile

    @property
    def pending_count(self) -> int:
        return len(self._inflight)

    async def close(self) -> None:
        """Cancel in-flight fetches. Teardown is not an error."""
        self._closed = True
        tasks = list(self._inflight.values())
        self._inflight.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
