# src/feed_store/services/orchestrator.py
"""Feed orchestrator.

Decides when to hit the network and when to serve a cached page, tracks
pagination, and feeds every response into the store. Newly arrived items
can be staged in the store's incoming set instead of the visible feed so a
viewer who is scrolling is not disrupted.

Responses for the same query may resolve out of order. Every request takes
a sequence number and a response older than one already applied for the
same query is dropped instead of overwriting fresher state.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Callable, Mapping
from datetime import tzinfo
from typing import Any

from feed_store.core.errors import InvalidArgumentError
from feed_store.core.settings import settings
from feed_store.schemas.discussion import DiscussionResponse
from feed_store.schemas.feed import FeedQuery
from feed_store.services.api_client import FeedApiClient
from feed_store.services.discussions import DiscussionStore
from feed_store.services.feed import (
    FeedEntry,
    to_full_feed,
    to_sorted_active_feed_items,
    to_sorted_feed_items,
    to_sorted_search_feed_items,
)
from feed_store.services.ingest import NormalizedFeed, normalize_feed_payload

logger = logging.getLogger(__name__)

FeedPayload = NormalizedFeed | Mapping[str, Any]


def _as_feed(payload: FeedPayload) -> NormalizedFeed:
    if isinstance(payload, NormalizedFeed):
        return payload
    return normalize_feed_payload(payload)


class FeedOrchestrator:
    """Coordinates the network client and the store for one session."""

    def __init__(
        self,
        store: DiscussionStore,
        client: FeedApiClient,
        *,
        cache_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.client = client
        self.cache_ttl_seconds = (
            settings.feed_cache_ttl_seconds if cache_ttl_seconds is None else cache_ttl_seconds
        )
        self._clock = clock
        self._cache: dict[str, tuple[float, list[DiscussionResponse]]] = {}
        self._sequence = itertools.count(1)
        # Newest applied request per query, dropped once none is in flight
        self._applied: dict[str, int] = {}
        self._in_flight: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Ingestion

    def _store_feed(self, feed: NormalizedFeed) -> None:
        for user in feed.users:
            self.store.add_user(user)
        for group in feed.groups:
            self.store.add_group(group)
        for sdr in feed.discussions:
            self.store.add_shallow_discussion_response(sdr)
        for item in feed.items:
            self.store.add_feed_item(item)

    def process_feed(self, payload: FeedPayload) -> NormalizedFeed:
        """Store a feed page directly in the visible feed."""
        feed = _as_feed(payload)
        with self.store.transaction():
            self._store_feed(feed)
        return feed

    def process_incoming_feed(self, payload: FeedPayload) -> NormalizedFeed:
        """Store a feed page and stage the ids that were not known before."""
        feed = _as_feed(payload)
        incoming = [item.id for item in feed.items if not self.store.has_feed_item(item.id)]
        if feed.shape == "discussions":
            incoming.extend(
                did for did in feed.discussion_ids if self.store.get_dr_by_id(did) is None
            )
        with self.store.transaction():
            # Records land first so incoming listeners can resolve the staged ids
            self._store_feed(feed)
            self.store.add_incoming_feed(incoming)
        return feed

    def integrate_incoming_feed(self) -> None:
        """Merge the staged items into the visible feed.

        The incoming set is cleared right away; DR list listeners are told
        on the next loop iteration when an event loop is running.
        """
        self.store.reset_incoming_feed()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.store.notify_drs_listeners()
        else:
            loop.call_soon(self.store.notify_drs_listeners)

    def _current_drs(self, feed: NormalizedFeed) -> list[DiscussionResponse]:
        drs = []
        for did in feed.discussion_ids:
            dr = self.store.get_dr_by_id(did)
            if dr is not None:
                drs.append(dr)
        return drs

    # ------------------------------------------------------------------
    # Fetching

    async def _fetch_feed(self, query: FeedQuery) -> list[DiscussionResponse]:
        key = query.cache_key()
        seq = next(self._sequence)
        self._in_flight[key] = self._in_flight.get(key, 0) + 1
        try:
            payload = await self.client.get_feed(query)
            feed = normalize_feed_payload(payload)
            if seq < self._applied.get(key, 0):
                logger.info("Discarding stale response #%d for feed %s", seq, key)
                return self._current_drs(feed)
            self._applied[key] = seq
            self.client.remember_cursor(query, payload)
            self.process_feed(feed)
            return self._current_drs(feed)
        finally:
            self._finish_request(key)

    def _finish_request(self, key: str) -> None:
        remaining = self._in_flight[key] - 1
        if remaining:
            self._in_flight[key] = remaining
            return
        # No older response can still arrive for this query
        del self._in_flight[key]
        self._applied.pop(key, None)

    def _evict_expired(self, now: float) -> None:
        expired = [
            key
            for key, (fetched_at, _) in self._cache.items()
            if now - fetched_at >= self.cache_ttl_seconds
        ]
        for key in expired:
            del self._cache[key]

    async def _cached_fetch_feed(self, query: FeedQuery) -> list[DiscussionResponse]:
        key = query.cache_key()
        self._evict_expired(self._clock())
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug("Serving feed %s from cache", key)
            return list(cached[1])
        drs = await self._fetch_feed(query)
        self._cache[key] = (self._clock(), drs)
        return list(drs)

    async def refresh_feed(
        self, query: FeedQuery, *, hard_refresh: bool = True
    ) -> list[DiscussionResponse]:
        """Reload a feed page.

        A hard refresh always goes to the network. A soft one returns the
        page fetched for the same query within the freshness window, if any.
        """
        if hard_refresh:
            return await self._fetch_feed(query)
        return await self._cached_fetch_feed(query)

    async def load_bottom_feed(self, query: FeedQuery) -> list[DiscussionResponse]:
        """Fetch the page after the oldest entry received so far for ``query``."""
        last_id = self.client.last_id_for_feed(query)
        return await self._fetch_feed(query.model_copy(update={"last_id": last_id}))

    async def prepare_feed(self, query: FeedQuery) -> NormalizedFeed:
        """Fetch a page and stage what is new instead of showing it."""
        payload = await self.client.get_feed(query)
        self.client.remember_cursor(query, payload)
        return self.process_incoming_feed(payload)

    async def fetch_search(self, query: FeedQuery) -> list[DiscussionResponse]:
        """Run a search, store its results and return them as full DRs."""
        payload = await self.client.get_search(query)
        self.client.remember_cursor(query, payload)
        feed = normalize_feed_payload(payload)
        if not feed.discussions:
            return []
        with self.store.transaction():
            for user in feed.users:
                self.store.add_user(user)
            for group in feed.groups:
                self.store.add_group(group)
            for sdr in feed.discussions:
                self.store.add_discussion(sdr.discussion)
                self.store.add_shallow_discussion_response(sdr)
        return self._current_drs(feed)

    async def refresh_me(self) -> None:
        """Fetch the self-profile and store it."""
        self.store.store_me_result(await self.client.get_me())

    # ------------------------------------------------------------------
    # Views

    def _viewer_id(self, user_id: str | None) -> str:
        if user_id:
            return user_id
        me = self.store.get_me()
        if me is None:
            raise InvalidArgumentError("user id is required before the profile is loaded")
        return me.id

    def active_feed(self, query: FeedQuery, user_id: str | None = None) -> list[FeedEntry]:
        entries = to_sorted_active_feed_items(
            self._viewer_id(user_id), query, self.store.get_all_drs()
        )
        return list(to_full_feed(entries))

    def chronological_feed(
        self,
        query: FeedQuery,
        user_id: str | None = None,
        *,
        tz: tzinfo | None = None,
    ) -> list[FeedEntry]:
        entries = to_sorted_feed_items(
            self._viewer_id(user_id), query, self.store.get_all_feed_items(), tz=tz
        )
        return list(to_full_feed(entries))

    def search_feed(self, drs: list[DiscussionResponse], user_id: str | None = None) -> list[FeedEntry]:
        return to_sorted_search_feed_items(self._viewer_id(user_id), drs)
