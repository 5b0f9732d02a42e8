# src/feed_store/services/__init__.py
"""Store, synchronizer, ranking, orchestrator and network client."""
