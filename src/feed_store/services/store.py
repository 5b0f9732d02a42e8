"""In-memory entity store with change listeners and batched notifications.

The store is the single source of truth for everything the client has
fetched. It provides:

- Keyed collections per entity type with upsert-if-changed semantics
- Per-entity, per-collection and ids-only listeners
- Transactions that coalesce collection notifications
- The authenticated user, contact set, feature flags and pending requests
- The incoming set used to stage new feed items
"""

from __future__ import annotations

import logging
import operator
import uuid
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any, Generic, TypeVar

from feed_store.core.errors import InvalidArgumentError
from feed_store.schemas.common import (
    MISSING_USER_NAME,
    Contact,
    Group,
    InviteLinkResponse,
    MeResponse,
    PendingContactRequest,
    User,
)
from feed_store.schemas.feed import FeedItem
from feed_store.services.listeners import (
    KeyedListenerRegistry,
    Listener,
    ListenerId,
    ListenerRegistry,
)

logger = logging.getLogger(__name__)

EntityT = TypeVar("EntityT")

DEFAULT_FEATURE_FLAGS: dict[str, bool] = {
    "post_to_friends_of_friends": False,
    "global_invites_enabled": True,
}


class TransactionScope:
    """Tracks whether the store is batching and which notifications are owed.

    Outside a transaction a notification runs immediately. Inside one it is
    queued once per notifier and runs after the outermost transaction body
    returns, so it observes the final state.
    """

    def __init__(self) -> None:
        self._depth = 0
        self._pending: dict[Callable[[], None], None] = {}

    @property
    def active(self) -> bool:
        return self._depth > 0

    def notify(self, notifier: Callable[[], None]) -> None:
        if self.active:
            self._pending[notifier] = None
        else:
            notifier()

    @contextmanager
    def batch(self) -> Iterator[None]:
        self._depth += 1
        try:
            yield
        except BaseException:
            if self._depth == 1:
                # Partial work is kept but never announced
                self._pending.clear()
            raise
        finally:
            self._depth -= 1
        if self._depth == 0:
            self._flush()

    def _flush(self) -> None:
        while self._pending:
            notifier = next(iter(self._pending))
            del self._pending[notifier]
            notifier()


def _first_insert_only(old: Any, new: Any) -> bool:
    return False


class EntityCollection(Generic[EntityT]):
    """Keyed map of one entity type plus its listeners.

    ``is_equal`` decides whether an upsert is a change at all;
    ``ids_changed`` decides whether an in-place update should also wake the
    ids listeners (by default only first insertion does).
    """

    def __init__(
        self,
        name: str,
        scope: TransactionScope,
        *,
        key: Callable[[EntityT], str] = operator.attrgetter("id"),
        is_equal: Callable[[EntityT, EntityT], bool] = operator.eq,
        ids_changed: Callable[[EntityT, EntityT], bool] = _first_insert_only,
        sort_key: Callable[[EntityT], Any] | None = None,
        newest_first: bool = False,
    ) -> None:
        self.name = name
        self._scope = scope
        self._key = key
        self._is_equal = is_equal
        self._ids_changed = ids_changed
        self._sort_key = sort_key
        self._newest_first = newest_first
        self._entities: dict[str, EntityT] = {}
        self._entity_listeners = KeyedListenerRegistry()
        self._list_listeners = ListenerRegistry()
        self._ids_listeners = ListenerRegistry()

    def add(self, entity: EntityT | None) -> bool:
        """Upsert ``entity``; return False (and notify nobody) if nothing changed."""
        if entity is None:
            return False
        entity_id = self._key(entity)
        old = self._entities.get(entity_id)
        if old is not None and self._is_equal(old, entity):
            return False

        self._entities[entity_id] = entity
        self._entity_listeners.notify(entity_id, entity)
        self._scope.notify(self.notify_all)
        if old is None or self._ids_changed(old, entity):
            self._scope.notify(self.notify_ids)
        return True

    def adopt(self, entity: EntityT) -> None:
        """Store ``entity`` in place of an equivalent record without notifying."""
        self._entities[self._key(entity)] = entity

    def get(self, entity_id: str) -> EntityT | None:
        return self._entities.get(entity_id)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entities

    def __len__(self) -> int:
        return len(self._entities)

    def get_all(self) -> list[EntityT]:
        entities = list(self._entities.values())
        if self._sort_key is not None:
            entities.sort(key=self._sort_key, reverse=self._newest_first)
        return entities

    def get_all_ids(self) -> list[str]:
        return sorted(self._entities)

    def listen(self, entity_id: str, listener: Listener) -> ListenerId:
        return self._entity_listeners.add(entity_id, listener)

    def remove_listener(self, entity_id: str, listener_id: ListenerId) -> None:
        self._entity_listeners.remove(entity_id, listener_id)

    def listen_to_all(self, listener: Listener) -> ListenerId:
        return self._list_listeners.add(listener)

    def remove_list_listener(self, listener_id: ListenerId) -> None:
        self._list_listeners.remove(listener_id)

    def listen_to_ids(self, listener: Listener) -> ListenerId:
        return self._ids_listeners.add(listener)

    def remove_ids_listener(self, listener_id: ListenerId) -> None:
        self._ids_listeners.remove(listener_id)

    def notify_all(self) -> None:
        if self._list_listeners:
            self._list_listeners.notify(self.get_all())

    def notify_ids(self) -> None:
        if self._ids_listeners:
            self._ids_listeners.notify(self.get_all_ids())


def is_contact_equal(a: Contact, b: Contact) -> bool:
    return a.id == b.id and a.name == b.name and a.avatar == b.avatar


def _dismissed_by_changed(old: FeedItem, new: FeedItem) -> bool:
    return old.dismissed_by != new.dismissed_by


def missing_user() -> Contact:
    """Placeholder for a user id the store cannot resolve.

    Each call gets a fresh id so placeholders never collide with each other.
    """
    return Contact(id=uuid.uuid4().hex, name=MISSING_USER_NAME, avatar="")


class EntityStore:
    """Generic entity storage shared by every UI surface of one session."""

    def __init__(self) -> None:
        self._scope = TransactionScope()

        self._users: EntityCollection[Contact] = EntityCollection(
            "users", self._scope, is_equal=is_contact_equal
        )
        self._name_to_user: dict[str, Contact] = {}
        self._groups: EntityCollection[Group] = EntityCollection("groups", self._scope)
        self._invite_links: EntityCollection[InviteLinkResponse] = EntityCollection(
            "invite_links", self._scope, key=lambda r: r.invite_link.id
        )
        self._feed_items: EntityCollection[FeedItem] = EntityCollection(
            "feed_items",
            self._scope,
            ids_changed=_dismissed_by_changed,
            sort_key=operator.attrgetter("created_at"),
            newest_first=True,
        )

        self._me: User | None = None
        self._me_listeners = ListenerRegistry()
        self._my_contacts: set[str] = set()
        self._flags: dict[str, bool] = dict(DEFAULT_FEATURE_FLAGS)

        self._pending_contact_requests: list[PendingContactRequest] = []
        self._pending_count_listeners = ListenerRegistry()

        self._incoming_items: set[str] = set()
        self._last_notified_incoming: set[str] = set()
        self._incoming_listeners = ListenerRegistry()

    # ------------------------------------------------------------------
    # Transactions

    @property
    def in_transaction(self) -> bool:
        return self._scope.active

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Apply several mutations and announce them once.

        Mutations are visible to reads immediately. Collection listeners run
        at most once each, after the block exits, against the final state.
        If the block raises, the store leaves batching mode, no collection
        listener runs and the exception propagates.
        """
        with self._scope.batch():
            yield

    # ------------------------------------------------------------------
    # Me and contacts

    def get_me(self) -> User | None:
        return self._me

    def set_me(self, user: User) -> None:
        self._me = user
        self._my_contacts.discard(user.id)
        self._me_listeners.notify(user)

    def listen_to_me(self, listener: Listener) -> ListenerId:
        return self._me_listeners.add(listener)

    def remove_me_listener(self, listener_id: ListenerId) -> None:
        self._me_listeners.remove(listener_id)

    def add_contact_id(self, contact_id: str) -> None:
        if self._me is not None and self._me.id == contact_id:
            return
        self._my_contacts.add(contact_id)

    def remove_contact_id(self, contact_id: str) -> None:
        self._my_contacts.discard(contact_id)

    def get_my_contacts(self) -> set[str]:
        return set(self._my_contacts)

    def is_my_contact(self, contact_id: str | None) -> bool:
        if not contact_id:
            raise InvalidArgumentError("contact id is required")
        return contact_id in self._my_contacts

    # ------------------------------------------------------------------
    # Feature flags

    def get_feature_flag(self, flag: str) -> bool:
        return bool(self._flags.get(flag, False))

    def set_feature_flags(self, flags: Mapping[str, bool]) -> None:
        self._flags = {name: bool(value) for name, value in flags.items()}

    # ------------------------------------------------------------------
    # Pending contact requests

    def add_pending_contact_requests(self, requests: Iterable[PendingContactRequest]) -> None:
        self._pending_contact_requests.extend(requests)
        self._pending_count_listeners.notify(len(self._pending_contact_requests))

    def remove_pending_contact_request(self, request_id: str) -> None:
        self._pending_contact_requests = [
            r for r in self._pending_contact_requests if r.id != request_id
        ]
        self._pending_count_listeners.notify(len(self._pending_contact_requests))

    def get_pending_contact_requests_count(self) -> int:
        return len(self._pending_contact_requests)

    def listen_to_pending_contact_requests_count(self, listener: Listener) -> ListenerId:
        return self._pending_count_listeners.add(listener)

    def remove_pending_contact_requests_count_listener(self, listener_id: ListenerId) -> None:
        self._pending_count_listeners.remove(listener_id)

    def store_me_result(self, me: MeResponse | Mapping[str, Any]) -> None:
        """Ingest a self-profile payload in one transaction.

        The authenticated user is stored as a user but never as a contact.
        """
        result = MeResponse.model_validate(me)
        user = result.user
        with self.transaction():
            if user is not None:
                self.set_me(user)
                self.add_user(user.as_contact())
            for group in result.groups or []:
                self.add_group(group)
            for contact in result.contacts or []:
                if user is not None and contact.id == user.id:
                    continue
                self.add_user(contact)
                self.add_contact_id(contact.id)
            if result.contact_requests:
                self.add_pending_contact_requests(result.contact_requests)
            if result.flags is not None:
                self.set_feature_flags(result.flags.values)

    # ------------------------------------------------------------------
    # Users

    def add_user(self, user: Contact | None) -> None:
        if self._users.add(user):
            self._name_to_user[user.name] = user

    def maybe_get_user_by_id(self, user_id: str) -> Contact | None:
        return self._users.get(user_id)

    def get_user_by_id(self, user_id: str) -> Contact:
        """Return the user, or a ``[deleted]`` placeholder if it is unknown."""
        user = self._users.get(user_id)
        return user if user is not None else missing_user()

    def maybe_user_by_name(self, name: str) -> Contact | None:
        return self._name_to_user.get(name)

    def get_all_users(self) -> list[Contact]:
        return self._users.get_all()

    def get_all_user_ids(self) -> list[str]:
        return self._users.get_all_ids()

    def listen_to_user(self, user_id: str, listener: Listener) -> ListenerId:
        return self._users.listen(user_id, listener)

    def remove_user_listener(self, user_id: str, listener_id: ListenerId) -> None:
        self._users.remove_listener(user_id, listener_id)

    def listen_to_users(self, listener: Listener) -> ListenerId:
        return self._users.listen_to_all(listener)

    def remove_users_listener(self, listener_id: ListenerId) -> None:
        self._users.remove_list_listener(listener_id)

    # ------------------------------------------------------------------
    # Groups

    def add_group(self, group: Group | None) -> None:
        self._groups.add(group)

    def get_group_by_id(self, group_id: str) -> Group | None:
        return self._groups.get(group_id)

    def get_all_groups(self) -> list[Group]:
        return self._groups.get_all()

    def listen_to_group(self, group_id: str, listener: Listener) -> ListenerId:
        return self._groups.listen(group_id, listener)

    def remove_group_listener(self, group_id: str, listener_id: ListenerId) -> None:
        self._groups.remove_listener(group_id, listener_id)

    def listen_to_groups(self, listener: Listener) -> ListenerId:
        return self._groups.listen_to_all(listener)

    def remove_groups_listener(self, listener_id: ListenerId) -> None:
        self._groups.remove_list_listener(listener_id)

    # ------------------------------------------------------------------
    # Invite links

    def add_invite_link_response(self, response: InviteLinkResponse | None) -> None:
        self._invite_links.add(response)

    def get_invite_link_response_by_id(self, link_id: str) -> InviteLinkResponse | None:
        return self._invite_links.get(link_id)

    def listen_to_invite_link(self, link_id: str, listener: Listener) -> ListenerId:
        return self._invite_links.listen(link_id, listener)

    def remove_invite_link_listener(self, link_id: str, listener_id: ListenerId) -> None:
        self._invite_links.remove_listener(link_id, listener_id)

    # ------------------------------------------------------------------
    # Feed items

    def add_feed_item(self, item: FeedItem | None) -> None:
        self._feed_items.add(item)

    def get_feed_item_by_id(self, item_id: str) -> FeedItem | None:
        return self._feed_items.get(item_id)

    def get_all_feed_items(self) -> list[FeedItem]:
        """Every stored feed item, newest first."""
        return self._feed_items.get_all()

    def get_all_feed_item_ids(self) -> list[str]:
        return self._feed_items.get_all_ids()

    def has_feed_item(self, item_id: str) -> bool:
        return item_id in self._feed_items

    def listen_to_feed_item(self, item_id: str, listener: Listener) -> ListenerId:
        return self._feed_items.listen(item_id, listener)

    def remove_feed_item_listener(self, item_id: str, listener_id: ListenerId) -> None:
        self._feed_items.remove_listener(item_id, listener_id)

    def listen_to_feed_items(self, listener: Listener) -> ListenerId:
        return self._feed_items.listen_to_all(listener)

    def remove_feed_items_listener(self, listener_id: ListenerId) -> None:
        self._feed_items.remove_list_listener(listener_id)

    def listen_to_feed_item_ids(self, listener: Listener) -> ListenerId:
        return self._feed_items.listen_to_ids(listener)

    def remove_feed_item_ids_listener(self, listener_id: ListenerId) -> None:
        self._feed_items.remove_ids_listener(listener_id)

    # ------------------------------------------------------------------
    # Incoming set

    def count_incoming_feed_items(self) -> int:
        return len(self._incoming_items)

    def get_incoming_feed_items(self) -> set[str]:
        return set(self._incoming_items)

    def add_incoming_feed(self, item_ids: Iterable[str]) -> None:
        self._incoming_items = self._incoming_items | set(item_ids)
        self._notify_incoming()

    def reset_incoming_feed(self) -> None:
        self._incoming_items = set()
        self._notify_incoming()

    def listen_to_incoming(self, listener: Listener) -> ListenerId:
        return self._incoming_listeners.add(listener)

    def remove_incoming_listener(self, listener_id: ListenerId) -> None:
        self._incoming_listeners.remove(listener_id)

    def _notify_incoming(self) -> None:
        if self._incoming_items == self._last_notified_incoming:
            return
        self._last_notified_incoming = set(self._incoming_items)
        self._incoming_listeners.notify(set(self._incoming_items))
