"""Calendly API resources, normalized for the sync engine"""

from datetime import datetime, timedelta
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from .shared.validators import parse_provider_time, utcnow


class ProviderModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_resource(cls, data: dict[str, Any]):
        """Calendly wraps single objects in {"resource": {...}}; accept either shape"""
        return cls.model_validate(data.get("resource", data))


class TokenSet(ProviderModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_in: int = 7200
    scope: Optional[str] = None

    def expires_at(self) -> datetime:
        return utcnow() + timedelta(seconds=self.expires_in)


class ProviderIdentity(ProviderModel):
    """Subset of GET /users/me"""

    uri: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    scheduling_url: Optional[str] = None
    current_organization: Optional[str] = None


class ProviderEvent(ProviderModel):
    """A Calendly scheduled event"""

    uri: str
    name: Optional[str] = None
    event_type: Optional[str] = None
    status: Optional[str] = None  # "active" or "canceled"
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def parse_time(cls, v):
        if isinstance(v, datetime) or v is None:
            return v
        return parse_provider_time(v)

    @property
    def is_canceled(self) -> bool:
        return self.status == "canceled"


class ProviderInvitee(ProviderModel):
    """A Calendly invitee; only the first invitee of an event is modeled"""

    uri: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    event: Optional[str] = None
    status: Optional[str] = None
    rescheduled: bool = False


class EventTypeLink(BaseModel):
    """Booking link for one event type"""

    name: str
    url: str
    uri: str
