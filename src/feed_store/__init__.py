"""Local data store and feed ranking engine for an offline-first messaging client."""

from feed_store.services.discussions import DiscussionStore
from feed_store.services.orchestrator import FeedOrchestrator

__all__ = ["DiscussionStore", "FeedOrchestrator"]
