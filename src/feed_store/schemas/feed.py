"""Feed item and feed query schemas."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import ConfigDict, Field, model_validator

from feed_store.schemas.common import Timestamp, WireModel
from feed_store.schemas.discussion import HydratedDiscussion

FeedType = Literal["all_posts", "active_discussions", "search"]

DISCUSSION_REF = "discussion"
REF_TYPES: frozenset[str] = frozenset(
    {"discussion", "contact_request", "invite_link", "contact", "group", "user"}
)


class FeedQuery(WireModel):
    """Immutable description of which feed to show.

    The same query drives the network request, the soft-refresh cache and
    the local ranking filters.
    """

    type: str = "all"
    feed_type: FeedType = Field(default="all_posts", alias="feedType")
    contact_id: str | None = None
    group_id: str | None = None
    location_id: str | None = None
    last_id: str | None = None
    hidden: bool = False
    term: str | None = None

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    def cache_key(self) -> str:
        """Stable key for this exact query, page cursor included."""
        return self.model_dump_json(exclude_none=True, by_alias=True)

    def cursor_key(self) -> str:
        """Key shared by every page of this query."""
        return self.model_copy(update={"last_id": None}).cache_key()

    def to_params(self) -> dict[str, Any]:
        params = self.model_dump(exclude_none=True, by_alias=True)
        params["hidden"] = str(self.hidden).lower()
        return params


class SearchQuery(FeedQuery):
    feed_type: FeedType = Field(default="search", alias="feedType")
    term: str = ""


class FeedItem(WireModel):
    """Pointer record shown by the chronological feed.

    ``ref`` embeds the referenced entity; discussion refs are parsed into
    :class:`HydratedDiscussion`, every other kind is kept as a mapping.
    """

    id: str
    created_at: Timestamp
    updated_at: Timestamp | None = None
    feed_type: str | None = None
    ref_type: str | None = None
    ref_id: str | None = None
    ref: HydratedDiscussion | dict[str, Any] | None = None
    seen_at: dict[str, Timestamp] = Field(default_factory=dict)
    dismissed_by: list[str] = Field(default_factory=list)
    hidden_for: list[str] = Field(default_factory=list)
    uids: list[str] = Field(default_factory=list)
    contact: str | None = None
    group: str | None = None
    location_id: str | None = None
    contact_request: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _hydrate_discussion_ref(cls, data: object) -> object:
        if not isinstance(data, Mapping):
            return data
        ref = data.get("ref")
        if data.get("ref_type") == DISCUSSION_REF and isinstance(ref, Mapping):
            data = dict(data)
            data["ref"] = HydratedDiscussion.model_validate(ref)
        return data

    @property
    def entity_id(self) -> str | None:
        """Id of the referenced entity, or None when it cannot be resolved."""
        if isinstance(self.ref, HydratedDiscussion):
            return self.ref.id
        if isinstance(self.ref, Mapping):
            ref_id = self.ref.get("id")
            if isinstance(ref_id, str) and ref_id:
                return ref_id
        return self.ref_id or None

    @property
    def discussion(self) -> HydratedDiscussion | None:
        return self.ref if isinstance(self.ref, HydratedDiscussion) else None
