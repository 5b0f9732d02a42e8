"""Normalization of feed payloads at the network boundary.

The API answers feed requests in one of two shapes:

- ``{"discussions": [...], "users": [...], "groups": [...]}``, where each
  discussion is a shallow DR carrying ``user_ids``.
- ``{"items": [...], "users": [...], "groups": [...]}``, where discussion
  items embed the discussion together with its messages.

Both are converted into a single :class:`NormalizedFeed` here so that the
rest of the engine never deals with the union. A record that fails
validation is logged and skipped; the rest of the page is kept.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ValidationError

from feed_store.core.errors import MalformedPayloadError
from feed_store.schemas.common import Contact, Group
from feed_store.schemas.discussion import ShallowDiscussionResponse
from feed_store.schemas.feed import DISCUSSION_REF, FeedItem

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

PayloadShape = Literal["discussions", "items", "empty"]


@dataclass
class NormalizedFeed:
    """One feed page in the engine's internal shape."""

    shape: PayloadShape = "empty"
    users: list[Contact] = field(default_factory=list)
    groups: list[Group] = field(default_factory=list)
    discussions: list[ShallowDiscussionResponse] = field(default_factory=list)
    items: list[FeedItem] = field(default_factory=list)

    @property
    def discussion_ids(self) -> list[str]:
        return [sdr.discussion.id for sdr in self.discussions]


def _parse_record(model: type[ModelT], raw: Any) -> ModelT:
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise MalformedPayloadError(
            f"Invalid {model.__name__} record: {exc.error_count()} error(s)"
        ) from exc


def _parse_records(model: type[ModelT], raws: Any) -> list[ModelT]:
    if raws is None:
        return []
    if not isinstance(raws, list):
        logger.warning(
            "Skipping %s section: expected a list, got %s", model.__name__, type(raws).__name__
        )
        return []
    parsed: list[ModelT] = []
    for raw in raws:
        try:
            parsed.append(_parse_record(model, raw))
        except MalformedPayloadError as exc:
            logger.warning("Skipping feed record: %s", exc)
    return parsed


def discussion_from_item(item: FeedItem) -> ShallowDiscussionResponse:
    """Extract the shallow DR embedded in a discussion feed item."""
    hydrated = item.discussion
    if hydrated is None:
        raise MalformedPayloadError(f"Feed item {item.id} has no embedded discussion")
    return ShallowDiscussionResponse(
        discussion=hydrated.to_discussion(),
        messages=hydrated.messages,
        user_ids=hydrated.members,
    )


def normalize_feed_payload(payload: Mapping[str, Any] | None) -> NormalizedFeed:
    """Convert either feed response shape into a :class:`NormalizedFeed`."""
    if not isinstance(payload, Mapping):
        logger.warning("Ignoring feed payload of type %s", type(payload).__name__)
        return NormalizedFeed()

    feed = NormalizedFeed(
        users=_parse_records(Contact, payload.get("users")),
        groups=_parse_records(Group, payload.get("groups")),
    )

    if "discussions" in payload:
        feed.shape = "discussions"
        feed.discussions = _parse_records(ShallowDiscussionResponse, payload.get("discussions"))
    elif "items" in payload:
        feed.shape = "items"
        feed.items = _parse_records(FeedItem, payload.get("items"))
        for item in feed.items:
            if item.ref_type != DISCUSSION_REF:
                continue
            try:
                feed.discussions.append(discussion_from_item(item))
            except MalformedPayloadError as exc:
                logger.warning("Skipping feed record: %s", exc)
    return feed
