# src/feed_store/core/errors.py
"""Exception hierarchy for the feed store."""

from __future__ import annotations


class FeedStoreError(RuntimeError):
    """Base class for every error raised by the feed store."""


class InvalidArgumentError(FeedStoreError, ValueError):
    """Raised when a caller passes an argument that can never be valid."""


class DiscussionNotFoundError(FeedStoreError, LookupError):
    """Raised when an operation needs a discussion the store does not hold.

    This signals an ordering bug in the caller (for example appending a
    message before the discussion itself was loaded).
    """

    def __init__(self, did: str | None = None) -> None:
        super().__init__("Discussion not found")
        self.did = did


class MalformedPayloadError(FeedStoreError):
    """Raised when a network payload cannot be interpreted at all."""


class ApiError(FeedStoreError):
    """Raised for failed requests to the remote API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ApiAuthError(ApiError):
    """Raised when a request is attempted without an auth token."""
