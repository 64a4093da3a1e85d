"""
Pydantic models for the HubSpot sync engine.

Two families live here:

- Wire models (``RawRecord``, ``PageResult``, ``AssociationResult``,
  ``TokenGrant``) validate what HubSpot returns.
- Engine models (``HubSpotAccount``, ``DomainRecord``, ``NormalizedEvent``)
  are what the processors, queue and store pass around.

Account models keep the camelCase aliases of the persisted document so
``model_dump(by_alias=True)`` round-trips with the store.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


ENTITY_KINDS: tuple[str, ...] = ("contacts", "companies", "meetings")


def _ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# HubSpot wire models
# ---------------------------------------------------------------------------


class RawRecord(BaseModel):
    """A CRM object as returned by the search API."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    id: str
    properties: Optional[dict[str, Any]] = None
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    @field_validator("created_at", "updated_at")
    @classmethod
    def timestamps_as_utc(cls, value: datetime) -> datetime:
        return _ensure_utc(value)

    def prop(self, name: str) -> Any:
        """Property value, or None when the property (or the whole map) is missing."""
        if not self.properties:
            return None
        return self.properties.get(name)


class NextPage(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    after: Optional[str] = None


class Paging(BaseModel):
    next: Optional[NextPage] = None


class PageResult(BaseModel):
    """One page of search results."""

    results: list[RawRecord] = Field(default_factory=list)
    paging: Optional[Paging] = None

    @property
    def next_after(self) -> Optional[str]:
        if self.paging and self.paging.next:
            return self.paging.next.after or None
        return None


class AssociationRef(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: Optional[str] = None


class AssociationResult(BaseModel):
    """One ``from -> [to]`` row of a batch association read."""

    model_config = ConfigDict(populate_by_name=True)

    from_: Optional[AssociationRef] = Field(default=None, alias="from")
    to: list[AssociationRef] = Field(default_factory=list)


class TokenGrant(BaseModel):
    """Result of an OAuth refresh-token exchange."""

    access_token: str
    expires_in: int
    refresh_token: Optional[str] = None

    @classmethod
    def from_response(cls, body: dict[str, Any]) -> "TokenGrant":
        """Accept both the raw OAuth (snake_case) and SDK (camelCase) shapes."""

        def pick(snake: str, camel: str) -> Any:
            return body[snake] if snake in body else body.get(camel)

        return cls(
            access_token=pick("access_token", "accessToken"),
            expires_in=pick("expires_in", "expiresIn"),
            refresh_token=pick("refresh_token", "refreshToken"),
        )


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class LastPulledDates(BaseModel):
    """Per-entity timestamp of the last completed sweep."""

    contacts: Optional[datetime] = None
    companies: Optional[datetime] = None
    meetings: Optional[datetime] = None

    @field_validator("contacts", "companies", "meetings")
    @classmethod
    def dates_as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _ensure_utc(value)

    def get(self, entity_kind: str) -> Optional[datetime]:
        return getattr(self, entity_kind)

    def set(self, entity_kind: str, value: datetime) -> None:
        if entity_kind not in ENTITY_KINDS:
            raise ValueError(f"Unknown entity kind: {entity_kind}")
        setattr(self, entity_kind, _ensure_utc(value))


class HubSpotAccount(BaseModel):
    """A connected HubSpot portal with its tokens and sync progress."""

    model_config = ConfigDict(populate_by_name=True)

    hub_id: str = Field(alias="hubId")
    access_token: Optional[str] = Field(default=None, alias="accessToken")
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")
    last_pulled_dates: LastPulledDates = Field(
        default_factory=LastPulledDates, alias="lastPulledDates"
    )

    @field_validator("hub_id", mode="before")
    @classmethod
    def hub_id_as_str(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    def to_document(self) -> dict[str, Any]:
        """Serialize to the persisted JSON shape."""
        return self.model_dump(by_alias=True, mode="json")


class DomainRecord(BaseModel):
    """The managed domain and the HubSpot accounts connected to it."""

    id: Optional[UUID] = None
    api_key: Optional[str] = None
    hubspot_accounts: list[HubSpotAccount] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Sink-facing events
# ---------------------------------------------------------------------------


class ContactRef(BaseModel):
    """Meeting -> contact association with the contact's email when known."""

    id: str
    email: Optional[str] = None


class NormalizedEvent(BaseModel):
    """A record change in the shape the analytics sink ingests."""

    model_config = ConfigDict(frozen=True)

    action_name: str
    action_date: datetime
    properties_key: str
    properties: dict[str, Any] = Field(default_factory=dict)
    identity: Optional[str] = None
    include_in_analytics: int = 0

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "actionName": self.action_name,
            "actionDate": self.action_date.isoformat(),
            "includeInAnalytics": self.include_in_analytics,
            self.properties_key: dict(self.properties),
        }
        if self.identity is not None:
            payload["identity"] = self.identity
        return payload
