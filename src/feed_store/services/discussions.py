"""Discussion synchronizer.

Keeps each canonical :class:`Discussion` and the matching
:class:`DiscussionResponse` (DR) consistent: whichever side is updated
through the store, the other side is rebuilt to point at the same
discussion object. Equivalent retransmissions are suppressed so they never
wake listeners.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from feed_store.core.errors import DiscussionNotFoundError
from feed_store.schemas.common import MISSING_USER_NAME, Contact
from feed_store.schemas.discussion import (
    Discussion,
    DiscussionResponse,
    Message,
    ShallowDiscussionResponse,
)
from feed_store.services.listeners import KeyedListenerRegistry, Listener, ListenerId
from feed_store.services.store import EntityCollection, EntityStore

logger = logging.getLogger(__name__)

# Fields whose change must be visible to the feed even when the clock did not move
_EQUIVALENCE_FIELDS = (
    "archived_uids",
    "seen_at",
    "active_members",
    "members",
    "first_message",
    "latest_message",
    "latest_activity_ts",
)


def equivalent(a: Discussion, b: Discussion) -> bool:
    """Return True if ``b`` carries nothing new compared to ``a``."""
    if a is b:
        return True
    if a.id != b.id or a.clock != b.clock:
        return False
    return all(getattr(a, name) == getattr(b, name) for name in _EQUIVALENCE_FIELDS)


def _user_key(user: Contact) -> tuple[str | None, ...]:
    # Placeholders get a fresh id every time they are built
    if user.name == MISSING_USER_NAME:
        return (MISSING_USER_NAME,)
    return (user.id, user.name, user.avatar)


def is_dr_equal(a: DiscussionResponse, b: DiscussionResponse) -> bool:
    return (
        equivalent(a.discussion, b.discussion)
        and a.messages == b.messages
        and [_user_key(u) for u in a.users] == [_user_key(u) for u in b.users]
        and a.group == b.group
    )


def append_messages(current: Iterable[Message], new: Iterable[Message]) -> list[Message]:
    """Merge ``new`` into ``current`` by id and return them oldest first.

    When both lists hold a message with the same id the copy from ``new``
    wins.
    """
    by_id = {message.id: message for message in current}
    for message in new:
        by_id[message.id] = message
    return sorted(by_id.values(), key=lambda m: m.created_at)


class DiscussionStore(EntityStore):
    """Entity store that also holds discussions and their read models."""

    def __init__(self) -> None:
        super().__init__()
        self._discussions: EntityCollection[Discussion] = EntityCollection(
            "discussions", self._scope, is_equal=equivalent
        )
        self._drs: EntityCollection[DiscussionResponse] = EntityCollection(
            "discussion_responses",
            self._scope,
            key=lambda dr: dr.discussion.id,
            is_equal=is_dr_equal,
        )
        self._deleted_message_listeners = KeyedListenerRegistry()

    # ------------------------------------------------------------------
    # Discussions

    def add_discussion(self, discussion: Discussion | None, *, sync_dr: bool = True) -> bool:
        """Upsert a discussion; return True if the store changed.

        A DR already held for the same id is rebuilt around the new
        discussion in the same call.
        """
        if not self._discussions.add(discussion):
            return False
        if sync_dr:
            dr = self._drs.get(discussion.id)
            if dr is not None:
                self._store_dr(dr.model_copy(update={"discussion": discussion}))
        return True

    def get_discussion_by_id(self, did: str) -> Discussion | None:
        return self._discussions.get(did)

    def get_all_discussions(self) -> list[Discussion]:
        return self._discussions.get_all()

    def listen_to_discussion(self, did: str, listener: Listener) -> ListenerId:
        return self._discussions.listen(did, listener)

    def remove_discussion_listener(self, did: str, listener_id: ListenerId) -> None:
        self._discussions.remove_listener(did, listener_id)

    def listen_to_discussions(self, listener: Listener) -> ListenerId:
        return self._discussions.listen_to_all(listener)

    def remove_discussions_listener(self, listener_id: ListenerId) -> None:
        self._discussions.remove_list_listener(listener_id)

    # ------------------------------------------------------------------
    # Discussion responses

    def add_discussion_response(
        self, dr: DiscussionResponse | Mapping[str, Any] | None
    ) -> None:
        if dr is None:
            return
        self._store_dr(DiscussionResponse.model_validate(dr))

    def add_shallow_discussion_response(
        self, sdr: ShallowDiscussionResponse | Mapping[str, Any]
    ) -> None:
        """Hydrate ``user_ids`` from the user collection and store the full DR.

        Unknown ids are replaced by ``[deleted]`` placeholders.
        """
        sdr = ShallowDiscussionResponse.model_validate(sdr)
        users = [self.get_user_by_id(uid) for uid in sdr.user_ids]
        self._store_dr(
            DiscussionResponse(
                discussion=sdr.discussion,
                messages=sdr.messages,
                users=users,
                group=self.get_group_by_id(sdr.discussion.group_id)
                if sdr.discussion.group_id
                else None,
            )
        )

    def _store_dr(self, dr: DiscussionResponse) -> None:
        if not self._drs.add(dr):
            return
        # The canonical discussion must be the very object the DR embeds
        if not self.add_discussion(dr.discussion, sync_dr=False):
            self._discussions.adopt(dr.discussion)

    def get_dr_by_id(self, did: str) -> DiscussionResponse | None:
        return self._drs.get(did)

    def get_all_drs(self) -> list[DiscussionResponse]:
        return self._drs.get_all()

    def get_all_dr_ids(self) -> list[str]:
        return self._drs.get_all_ids()

    def listen_to_dr(self, did: str, listener: Listener) -> ListenerId:
        return self._drs.listen(did, listener)

    def remove_dr_listener(self, did: str, listener_id: ListenerId) -> None:
        self._drs.remove_listener(did, listener_id)

    def listen_to_drs(self, listener: Listener) -> ListenerId:
        return self._drs.listen_to_all(listener)

    def remove_drs_listener(self, listener_id: ListenerId) -> None:
        self._drs.remove_list_listener(listener_id)

    def listen_to_dr_ids(self, listener: Listener) -> ListenerId:
        """Listen for new DR ids; in-place updates do not fire this listener."""
        return self._drs.listen_to_ids(listener)

    def remove_dr_ids_listener(self, listener_id: ListenerId) -> None:
        self._drs.remove_ids_listener(listener_id)

    def notify_drs_listeners(self) -> None:
        """Push the current DR list to every DR list listener."""
        self._scope.notify(self._drs.notify_all)

    # ------------------------------------------------------------------
    # Messages

    def get_message_by_id(self, did: str, mid: str) -> Message | None:
        dr = self._drs.get(did)
        if dr is None:
            return None
        return next((m for m in dr.messages if m.id == mid), None)

    def append_message(self, message: Message, discussion: Discussion | None = None) -> None:
        """Insert ``message`` into its discussion in creation order.

        Raises:
            DiscussionNotFoundError: If no DR is held for ``message.did``.
        """
        dr = self._drs.get(message.did)
        if dr is None:
            raise DiscussionNotFoundError(message.did)
        with self.transaction():
            self._store_dr(
                dr.model_copy(
                    update={
                        "discussion": discussion or dr.discussion,
                        "messages": append_messages(dr.messages, [message]),
                    }
                )
            )

    def delete_message(self, did: str, mid: str) -> None:
        """Drop a message from its DR; unknown discussions or messages are ignored."""
        dr = self._drs.get(did)
        if dr is None:
            return
        messages = [m for m in dr.messages if m.id != mid]
        if len(messages) == len(dr.messages):
            logger.debug("Message %s is not held for discussion %s", mid, did)
            return
        self._store_dr(dr.model_copy(update={"messages": messages}))
        self._deleted_message_listeners.notify(did, did, mid)

    def listen_to_deleted_messages(self, did: str, listener: Listener) -> ListenerId:
        """Register ``listener(did, mid)`` for deletions in one discussion."""
        return self._deleted_message_listeners.add(did, listener)

    def remove_deleted_message_listener(self, did: str, listener_id: ListenerId) -> None:
        self._deleted_message_listeners.remove(did, listener_id)
