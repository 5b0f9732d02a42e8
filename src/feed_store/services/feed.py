"""Feed ranking engine.

Pure functions that turn snapshots pulled from the store into the ordered,
de-duplicated and separator-annotated lists the UI renders. Nothing here
touches the store.

Two feeds are built:

- The active feed, from discussion responses the viewer takes part in.
- The chronological feed, from feed items of any kind.

``to_full_feed`` then places the NEW and SEEN markers on either of them.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable, MutableSequence, Sequence
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Literal

from feed_store.schemas.discussion import Discussion, DiscussionResponse, Mention
from feed_store.schemas.feed import DISCUSSION_REF, REF_TYPES, FeedItem, FeedQuery
from feed_store.utils.time import is_same_day, render_date_text

logger = logging.getLogger(__name__)

STRONG_GREY = "#A2A2A2"
ACTIVE_BLUE = "#007AFF"

EntryType = Literal["post", "mention", "feed_item"]


@dataclass(frozen=True)
class FeedSeparator:
    """Rendering directive drawn above a feed entry."""

    text: str
    color: str
    has_line: bool
    type: str = "separator"


NEW_SEPARATOR = FeedSeparator(text="New", color=ACTIVE_BLUE, has_line=True)
SEEN_SEPARATOR = FeedSeparator(text="Seen", color=STRONG_GREY, has_line=True)


@dataclass
class FeedEntry:
    """One row of a computed feed."""

    type: EntryType
    id: str
    ts: datetime
    is_seen: bool
    is_first_in_date: bool = False
    separator: FeedSeparator | None = None
    discussion_response: DiscussionResponse | None = None
    feed_item: FeedItem | None = None
    mentions: list[Mention] = field(default_factory=list)


def date_separator(
    ts: datetime, *, now: datetime | None = None, tz: tzinfo | None = None
) -> FeedSeparator:
    return FeedSeparator(
        text=render_date_text(ts, now=now, tz=tz), color=STRONG_GREY, has_line=False
    )


# ----------------------------------------------------------------------
# Seen predicates


def seen_by_user(discussion: Discussion, user_id: str) -> datetime | None:
    return discussion.seen_at.get(user_id)


def is_mention_seen_by_user(discussion: Discussion, mention_ts: datetime, user_id: str) -> bool:
    seen_at = seen_by_user(discussion, user_id)
    return seen_at is not None and mention_ts <= seen_at


def is_created_seen_by_user(discussion: Discussion, user_id: str) -> bool:
    seen_at = seen_by_user(discussion, user_id)
    return seen_at is not None and discussion.created_at <= seen_at


def is_latest_seen_by_user(discussion: Discussion, user_id: str) -> bool:
    seen_at = seen_by_user(discussion, user_id)
    return seen_at is not None and discussion.latest_activity_ts <= seen_at


def is_item_latest_seen_by_user(item: FeedItem, user_id: str) -> bool:
    seen_at = item.seen_at.get(user_id)
    return seen_at is not None and item.created_at <= seen_at


# ----------------------------------------------------------------------
# Entry builders


def post_to_all_posts_feed_item(dr: DiscussionResponse, user_id: str) -> FeedEntry:
    """Turn a DR into a ``mention`` entry if the viewer was mentioned, else a ``post``."""
    discussion = dr.discussion
    mentions = sorted(discussion.mentions.get(user_id, []), key=lambda m: m.ts)
    if mentions:
        last = mentions[-1]
        return FeedEntry(
            type="mention",
            id=discussion.id,
            ts=last.ts,
            is_seen=is_mention_seen_by_user(discussion, last.ts, user_id),
            discussion_response=dr,
            mentions=mentions,
        )
    return FeedEntry(
        type="post",
        id=discussion.id,
        ts=discussion.created_at,
        is_seen=is_created_seen_by_user(discussion, user_id),
        discussion_response=dr,
    )


def post_to_active_chats_feed_item(dr: DiscussionResponse, user_id: str) -> FeedEntry:
    discussion = dr.discussion
    return FeedEntry(
        type="post",
        id=discussion.id,
        ts=discussion.latest_activity_ts,
        is_seen=is_latest_seen_by_user(discussion, user_id),
        discussion_response=dr,
    )


def post_to_search_feed_item(dr: DiscussionResponse) -> FeedEntry:
    # Search results never take part in unread tracking
    return FeedEntry(
        type="post",
        id=dr.discussion.id,
        ts=dr.discussion.created_at,
        is_seen=True,
        discussion_response=dr,
    )


def item_to_feed_entry(item: FeedItem, user_id: str) -> FeedEntry:
    return FeedEntry(
        type="feed_item",
        id=item.id,
        ts=item.created_at,
        is_seen=is_item_latest_seen_by_user(item, user_id),
        feed_item=item,
    )


# ----------------------------------------------------------------------
# Filters


def _hidden_for_user(user_id: str, discussion: Discussion) -> bool:
    return user_id in discussion.archived_uids


def _matches_query(
    query: FeedQuery,
    created_by: str | None,
    group_id: str | None,
    location_id: str | None,
) -> bool:
    if query.contact_id and created_by != query.contact_id:
        return False
    if query.group_id and group_id != query.group_id:
        return False
    if query.location_id and location_id != query.location_id:
        return False
    return True


def discussion_in_query(user_id: str, query: FeedQuery, dr: DiscussionResponse) -> bool:
    if not dr.messages:
        return False
    discussion = dr.discussion
    if _hidden_for_user(user_id, discussion) and not query.hidden:
        return False
    return _matches_query(
        query, discussion.created_by, discussion.group_id, discussion.location_id
    )


def _has_replies(discussion: Discussion) -> bool:
    return discussion.latest_message != discussion.first_message


def item_in_query(user_id: str, query: FeedQuery, item: FeedItem) -> bool:
    if user_id in item.dismissed_by and not query.hidden:
        return False
    if item.ref_type == DISCUSSION_REF:
        discussion = item.discussion
        if discussion is None or not discussion.messages:
            return False
        if _hidden_for_user(user_id, discussion) and not query.hidden:
            return False
        return _matches_query(
            query, discussion.created_by, discussion.group_id, discussion.location_id
        )
    return _matches_query(query, item.contact, item.group, item.location_id)


# ----------------------------------------------------------------------
# Feeds


def _by_ts_desc(entries: list[FeedEntry]) -> list[FeedEntry]:
    entries.sort(key=lambda e: e.ts, reverse=True)
    return entries


def to_sorted_active_feed_items(
    user_id: str,
    query: FeedQuery,
    drs: Iterable[DiscussionResponse],
) -> list[FeedEntry]:
    """Build the active feed: replied-to discussions the viewer is still in.

    Entries are newest activity first and all have ``type == "post"``.
    """
    entries = [
        post_to_active_chats_feed_item(dr, user_id)
        for dr in drs
        if discussion_in_query(user_id, query, dr)
        and _has_replies(dr.discussion)
        and user_id in dr.discussion.active_members
    ]
    return _by_ts_desc(entries)


def to_sorted_search_feed_items(
    user_id: str, drs: Iterable[DiscussionResponse]
) -> list[FeedEntry]:
    return _by_ts_desc([post_to_search_feed_item(dr) for dr in drs])


def _dedupe(items: Iterable[FeedItem]) -> list[FeedItem]:
    shown: dict[str, set[str]] = {ref_type: set() for ref_type in REF_TYPES}
    kept: list[FeedItem] = []
    for item in items:
        entity_id = item.entity_id
        if item.ref_type not in shown or not entity_id:
            logger.debug("Skipping feed item %s with ref_type %r", item.id, item.ref_type)
            continue
        seen_ids = shown[item.ref_type]
        if entity_id in seen_ids:
            continue
        seen_ids.add(entity_id)
        kept.append(item)
    return kept


def to_sorted_feed_items(
    user_id: str,
    query: FeedQuery,
    feed_items: Iterable[FeedItem] | None,
    *,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> list[FeedEntry]:
    """Build the chronological feed.

    Each referenced entity is shown once, by its newest feed item. The first
    entry of every calendar day (in ``tz``) carries a date separator.
    """
    if feed_items is None:
        return []
    matching = sorted(
        (item for item in feed_items if item_in_query(user_id, query, item)),
        key=lambda item: item.created_at,
        reverse=True,
    )
    entries = _by_ts_desc([item_to_feed_entry(item, user_id) for item in _dedupe(matching)])

    previous: datetime | None = None
    for entry in entries:
        if previous is None or not is_same_day(previous, entry.ts, tz):
            entry.is_first_in_date = True
            entry.separator = date_separator(entry.ts, now=now, tz=tz)
        previous = entry.ts
    return entries


def last_new_item_index(entries: Sequence[FeedEntry]) -> int | None:
    """Return the highest index whose entry is unseen, or None if all are seen."""
    last = None
    for index, entry in enumerate(entries):
        if not entry.is_seen:
            last = index
    return last


def _set_separator(entries: MutableSequence[FeedEntry], separator: FeedSeparator, index: int) -> None:
    entries[index] = dataclasses.replace(entries[index], separator=separator)


def to_full_feed(entries: MutableSequence[FeedEntry]) -> MutableSequence[FeedEntry]:
    """Place the NEW and SEEN markers on an already sorted feed, in place.

    NEW goes on the first entry when anything is unseen; SEEN goes right
    after the last unseen entry, or on the first entry when everything has
    been seen. NEW is always above SEEN.
    """
    if not entries:
        return entries

    last_new = last_new_item_index(entries)
    if last_new is None:
        _set_separator(entries, SEEN_SEPARATOR, 0)
        return entries

    _set_separator(entries, NEW_SEPARATOR, 0)
    if last_new + 1 < len(entries):
        _set_separator(entries, SEEN_SEPARATOR, last_new + 1)
    return entries
