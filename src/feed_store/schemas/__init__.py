# src/feed_store/schemas/__init__.py
"""
Pydantic schemas for the entities held by the store and the API payloads.
"""

from .common import (
    HLC,
    Contact,
    Group,
    InviteLink,
    InviteLinkResponse,
    MeResponse,
    PendingContactRequest,
    User,
)
from .discussion import (
    Discussion,
    DiscussionResponse,
    HydratedDiscussion,
    Mention,
    Message,
    ShallowDiscussionResponse,
)
from .feed import FeedItem, FeedQuery, SearchQuery

__all__ = [
    "HLC", "Contact", "Group", "InviteLink", "InviteLinkResponse",
    "MeResponse", "PendingContactRequest", "User",
    "Discussion", "DiscussionResponse", "HydratedDiscussion", "Mention",
    "Message", "ShallowDiscussionResponse",
    "FeedItem", "FeedQuery", "SearchQuery",
]
