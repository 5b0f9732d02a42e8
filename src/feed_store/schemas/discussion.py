# src/feed_store/schemas/discussion.py
"""Discussion and message schemas."""
from __future__ import annotations

from typing import Any

from pydantic import Field

from feed_store.schemas.common import HLC, Contact, Group, Timestamp, WireModel


class Mention(WireModel):
    id: str
    to_uid: str
    by_uid: str
    mid: str
    did: str
    ts: Timestamp


class MessageEdit(WireModel):
    text: str
    edited_at: Timestamp


class Message(WireModel):
    """A single message; ``did`` names the discussion it belongs to."""

    id: str
    did: str
    user_id: str
    created_at: Timestamp
    text: str = ""
    clock: HLC | None = None
    updated_at: Timestamp | None = None
    deleted_at: Timestamp | None = None
    reply_to: str | None = None
    edits: list[MessageEdit] = Field(default_factory=list)
    media: list[dict[str, Any]] = Field(default_factory=list)
    reactions: dict[str, dict[str, Timestamp]] = Field(default_factory=dict)
    mentions: dict[str, Mention] = Field(default_factory=dict)


class Discussion(WireModel):
    """A conversation thread.

    ``first_message`` and ``latest_message`` coincide until somebody replies
    to the seed post.
    """

    id: str
    created_by: str
    created_at: Timestamp
    latest_activity_ts: Timestamp
    type: str = "discussion"
    clock: HLC | None = None
    name: str | None = None
    group_id: str | None = None
    location_id: str | None = None
    updated_at: Timestamp | None = None
    first_message: str | None = None
    latest_message: str | None = None
    members: list[str] = Field(default_factory=list)
    active_members: list[str] = Field(default_factory=list)
    subscribers: list[str] = Field(default_factory=list)
    archived_uids: list[str] = Field(default_factory=list)
    seen_at: dict[str, Timestamp] = Field(default_factory=dict)
    last_message_read: dict[str, str] = Field(default_factory=dict)
    mentions: dict[str, list[Mention]] = Field(default_factory=dict)
    muted: bool = False
    member_mode: str | None = None
    public_mode: str | None = None


class HydratedDiscussion(Discussion):
    """Discussion embedded in a feed item, carrying its own messages."""

    messages: list[Message] = Field(default_factory=list)

    def to_discussion(self) -> Discussion:
        return Discussion.model_validate(self.model_dump(exclude={"messages"}))


class DiscussionResponse(WireModel):
    """Read model: a discussion with its ordered messages and hydrated users."""

    discussion: Discussion
    messages: list[Message] = Field(default_factory=list)
    users: list[Contact] = Field(default_factory=list)
    group: Group | None = None


class ShallowDiscussionResponse(WireModel):
    """Like :class:`DiscussionResponse` but with user ids instead of users."""

    discussion: Discussion
    messages: list[Message] = Field(default_factory=list)
    user_ids: list[str] = Field(default_factory=list)
