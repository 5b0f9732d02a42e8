"""Shared Pydantic schemas for users, groups and invite links."""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from feed_store.utils.time import ensure_aware

Timestamp = Annotated[datetime, AfterValidator(ensure_aware)]

MISSING_USER_NAME = "[deleted]"


class WireModel(BaseModel):
    """Base model for records received from the API.

    Unknown fields are ignored so that newer servers do not break older
    clients.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class HLC(WireModel):
    """Hybrid logical clock attached to replicated records."""

    counter: int = 0
    node: str = ""
    ts: Timestamp | None = None


class Contact(WireModel):
    """Public profile of another user."""

    id: str
    name: str
    avatar: str | None = ""
    profile: dict[str, Any] | None = None


class User(Contact):
    """Full profile of the authenticated user."""

    clock: HLC | None = None
    phone_number: str | None = None
    created_at: Timestamp | None = None
    updated_at: Timestamp | None = None
    is_test: bool = False
    is_admin: bool = False
    settings: dict[str, Any] | None = None

    def as_contact(self) -> Contact:
        return Contact(id=self.id, name=self.name, avatar=self.avatar, profile=self.profile)


class Group(WireModel):
    """A named set of users that discussions can be posted to."""

    id: str
    name: str
    created_by: str | None = None
    owner: str | None = None
    description: str | None = None
    avatar: str | None = None
    created_at: Timestamp | None = None
    updated_at: Timestamp | None = None
    admins: list[str] = Field(default_factory=list)
    members: list[str] = Field(default_factory=list)
    archived_uids: list[str] = Field(default_factory=list)
    is_public: bool = False
    settings: dict[str, Any] | None = None


class PendingContactRequest(WireModel):
    """A contact request waiting on the authenticated user."""

    id: str
    contact: Contact


class InviteLink(WireModel):
    id: str
    type: str | None = None
    code: str | None = None
    created_by: str | None = None
    group_id: str | None = None
    created_at: Timestamp | None = None
    expires_at: Timestamp | None = None


class InviteLinkResponse(WireModel):
    """Invite link together with the records needed to render it."""

    invite_link: InviteLink
    invited_by: Contact | None = None
    group: Group | None = None


class FeatureFlagValues(WireModel):
    values: dict[str, bool] = Field(default_factory=dict)


class MeResponse(WireModel):
    """Self-profile payload; every section is optional."""

    user: User | None = None
    contacts: list[Contact] | None = None
    groups: list[Group] | None = None
    contact_requests: list[PendingContactRequest] | None = None
    flags: FeatureFlagValues | None = None
