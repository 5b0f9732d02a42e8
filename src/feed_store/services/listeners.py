"""Listener registries used by the store.

Every registration returns an opaque :data:`ListenerId`; removing an id that
is not (or no longer) registered is a no-op.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

ListenerId = str
Listener = Callable[..., Any]


def new_listener_id() -> ListenerId:
    return secrets.token_hex(8)


def call_listener(listener: Listener, *args: Any) -> None:
    """Invoke one callback, logging instead of propagating its failure."""
    try:
        listener(*args)
    except Exception:
        logger.exception("Listener %r raised while being notified", listener)


class ListenerRegistry:
    """Ordered set of callbacks with no key (collection and value listeners)."""

    def __init__(self) -> None:
        self._listeners: dict[ListenerId, Listener] = {}

    def add(self, listener: Listener) -> ListenerId:
        listener_id = new_listener_id()
        self._listeners[listener_id] = listener
        return listener_id

    def remove(self, listener_id: ListenerId) -> None:
        self._listeners.pop(listener_id, None)

    def notify(self, *args: Any) -> None:
        # Copy so callbacks may (un)register listeners while being notified
        for listener in list(self._listeners.values()):
            call_listener(listener, *args)

    def __len__(self) -> int:
        return len(self._listeners)


class KeyedListenerRegistry:
    """Callbacks grouped by entity id."""

    def __init__(self) -> None:
        self._by_key: dict[str, ListenerRegistry] = {}

    def add(self, key: str, listener: Listener) -> ListenerId:
        registry = self._by_key.setdefault(key, ListenerRegistry())
        return registry.add(listener)

    def remove(self, key: str, listener_id: ListenerId) -> None:
        registry = self._by_key.get(key)
        if registry is None:
            return
        registry.remove(listener_id)
        if not registry:
            del self._by_key[key]

    def notify(self, key: str, *args: Any) -> None:
        registry = self._by_key.get(key)
        if registry is not None:
            registry.notify(*args)
