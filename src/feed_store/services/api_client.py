"""HTTP client for the remote feed API.

This module provides the FeedApiClient class used by the orchestrator to
fetch feed pages, search results and the self-profile. It includes:

- A lazily created httpx AsyncClient with the app identification headers
- Token authentication
- Per-query pagination cursors
- Wrapping of transport failures and non-200 answers in ApiError

Responses are returned as decoded JSON; interpreting their shape is the
engine's job.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from feed_store.core.errors import ApiAuthError, ApiError
from feed_store.core.settings import settings
from feed_store.schemas.feed import FeedQuery
from feed_store.services.ingest import normalize_feed_payload

logger = logging.getLogger(__name__)

HTTP_OK = 200
HTTP_UNAUTHORIZED = 401

FEED_ITEMS_PATH = "/api/feed/items"
FEED_ACTIVE_PATH = "/api/feed/active"
SEARCH_PATH = "/api/search"
ME_PATH = "/api/me"


@dataclass(frozen=True)
class ApiClientConfig:
    """Immutable configuration for API requests."""

    base_url: str
    token: str | None
    timeout_seconds: float
    app_platform: str
    app_version: str


def load_api_config() -> ApiClientConfig:
    """Build configuration object from global settings."""

    return ApiClientConfig(
        base_url=settings.api_base_url,
        token=settings.api_token,
        timeout_seconds=float(settings.api_timeout_seconds),
        app_platform=settings.app_platform,
        app_version=settings.app_version,
    )


def oldest_entry_id(query: FeedQuery, payload: Mapping[str, Any]) -> str | None:
    """Return the id of the oldest entry of a page, used as the next cursor.

    Feed items age by ``created_at``, active discussions by their latest
    activity and search results by creation time.
    """
    feed = normalize_feed_payload(payload)
    if feed.shape == "items" and feed.items:
        return min(feed.items, key=lambda item: item.created_at).id
    if feed.discussions:
        if query.feed_type == "active_discussions":
            oldest = min(feed.discussions, key=lambda sdr: sdr.discussion.latest_activity_ts)
        else:
            oldest = min(feed.discussions, key=lambda sdr: sdr.discussion.created_at)
        return oldest.discussion.id
    return None


class FeedApiClient:
    """Async HTTP client for the feed, search and profile endpoints."""

    def __init__(
        self,
        config: ApiClientConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_api_config()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._last_ids: dict[str, str] = {}

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    def _build_headers(self) -> dict[str, str]:
        if not self.config.token:
            raise ApiAuthError("No API token configured")
        return {
            "Accept": "application/json",
            "X-App-Platform": self.config.app_platform,
            "X-App-Version": self.config.app_version,
            "Authorization": self.config.token,
        }

    async def _get(self, path: str, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        headers = self._build_headers()
        client = await self._ensure_client()
        try:
            response = await client.get(path, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise ApiError(f"Request to {path} failed: {exc}") from exc

        if response.status_code == HTTP_UNAUTHORIZED:
            raise ApiAuthError("API rejected the token", status_code=response.status_code)
        if response.status_code != HTTP_OK:
            raise ApiError(
                f"Unexpected API response ({response.status_code}) for {path}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(f"API returned invalid JSON for {path}") from exc

    # ------------------------------------------------------------------
    # Pagination cursors

    def last_id_for_feed(self, query: FeedQuery) -> str | None:
        return self._last_ids.get(query.cursor_key())

    def set_last_id_for_feed(self, query: FeedQuery, last_id: str) -> None:
        self._last_ids[query.cursor_key()] = last_id

    def remember_cursor(self, query: FeedQuery, payload: Mapping[str, Any]) -> None:
        """Point the cursor for ``query`` at the oldest entry of an accepted page."""
        last_id = oldest_entry_id(query, payload)
        if last_id is not None:
            self.set_last_id_for_feed(query, last_id)

    # ------------------------------------------------------------------
    # Endpoints

    async def get_feed(self, query: FeedQuery) -> dict[str, Any]:
        """Fetch one page of the feed described by ``query``."""
        if query.feed_type == "search":
            return await self.get_search(query)
        path = FEED_ACTIVE_PATH if query.feed_type == "active_discussions" else FEED_ITEMS_PATH
        return await self._get(path, query.to_params())

    async def get_search(self, query: FeedQuery) -> dict[str, Any]:
        return await self._get(SEARCH_PATH, query.to_params())

    async def get_me(self) -> dict[str, Any]:
        return await self._get(ME_PATH)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
