# tests/conftest.py
from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from itertools import count
from typing import Any
from unittest.mock import AsyncMock

import pytest

from feed_store.schemas.common import Contact, Group
from feed_store.schemas.discussion import Discussion, DiscussionResponse, Message
from feed_store.schemas.feed import FeedItem
from feed_store.services.api_client import FeedApiClient
from feed_store.services.discussions import DiscussionStore
from feed_store.services.orchestrator import FeedOrchestrator

BASE_TS = datetime(2024, 3, 10, 12, 0, tzinfo=UTC)
VIEWER_ID = "viewer"

_MESSAGE_COUNTER = count(1)


def _day(n: int, hours: int = 0) -> datetime:
    return BASE_TS + timedelta(days=n, hours=hours)


@pytest.fixture()
def day() -> Callable[..., datetime]:
    """Timestamp ``n`` days (and ``hours`` hours) after a fixed base time."""
    return _day


@pytest.fixture()
def store() -> DiscussionStore:
    return DiscussionStore()


@pytest.fixture()
def make_user() -> Callable[..., Contact]:
    def _make(uid: str, name: str | None = None, avatar: str = "") -> Contact:
        return Contact(id=uid, name=name or f"user-{uid}", avatar=avatar)

    return _make


@pytest.fixture()
def make_group() -> Callable[..., Group]:
    def _make(gid: str, name: str | None = None, members: Iterable[str] = ()) -> Group:
        return Group(id=gid, name=name or f"group-{gid}", members=list(members))

    return _make


@pytest.fixture()
def make_message() -> Callable[..., Message]:
    def _make(did: str, created_at: datetime, mid: str | None = None, **fields: Any) -> Message:
        return Message(
            id=mid or f"m{next(_MESSAGE_COUNTER)}",
            did=did,
            user_id=fields.pop("user_id", VIEWER_ID),
            created_at=created_at,
            **fields,
        )

    return _make


@pytest.fixture()
def make_discussion() -> Callable[..., Discussion]:
    def _make(did: str, **fields: Any) -> Discussion:
        values: dict[str, Any] = {
            "id": did,
            "created_by": "author",
            "created_at": BASE_TS,
            "latest_activity_ts": BASE_TS,
            "first_message": f"{did}-first",
            "latest_message": f"{did}-reply",
            "members": [VIEWER_ID, "author"],
            "active_members": [VIEWER_ID],
        }
        values.update(fields)
        return Discussion(**values)

    return _make


@pytest.fixture()
def make_dr(
    make_discussion: Callable[..., Discussion],
    make_message: Callable[..., Message],
) -> Callable[..., DiscussionResponse]:
    def _make(
        did: str,
        *,
        messages: list[Message] | None = None,
        users: list[Contact] | None = None,
        **fields: Any,
    ) -> DiscussionResponse:
        discussion = make_discussion(did, **fields)
        if messages is None:
            messages = [make_message(did, discussion.created_at, mid=f"{did}-first")]
        return DiscussionResponse(discussion=discussion, messages=messages, users=users or [])

    return _make


@pytest.fixture()
def make_feed_item(
    make_discussion: Callable[..., Discussion],
) -> Callable[..., FeedItem]:
    """Build a feed item; discussion items embed a discussion with one message."""

    def _make(
        item_id: str,
        *,
        ref_id: str,
        created_at: datetime = BASE_TS,
        ref_type: str = "discussion",
        ref: dict[str, Any] | None = None,
        **fields: Any,
    ) -> FeedItem:
        if ref is None:
            if ref_type == "discussion":
                discussion = make_discussion(ref_id, created_at=created_at)
                ref = discussion.model_dump(mode="json")
                ref["messages"] = [
                    {
                        "id": f"{ref_id}-first",
                        "did": ref_id,
                        "user_id": "author",
                        "created_at": created_at.isoformat(),
                    }
                ]
            else:
                ref = {"id": ref_id}
        return FeedItem.model_validate(
            {
                "id": item_id,
                "created_at": created_at,
                "ref_type": ref_type,
                "ref_id": ref_id,
                "ref": ref,
                **fields,
            }
        )

    return _make


@pytest.fixture()
def mock_api_client() -> AsyncMock:
    client = AsyncMock(spec=FeedApiClient)
    # Cursor lookup is synchronous on the real client
    client.last_id_for_feed = lambda query: None
    return client


@pytest.fixture()
def orchestrator(store: DiscussionStore, mock_api_client: AsyncMock) -> FeedOrchestrator:
    return FeedOrchestrator(store, mock_api_client, cache_ttl_seconds=30.0)
