"""Calendly domain schemas - request/response models"""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from ...schemas import EventTypeLink


class SyncResult(BaseModel):
    synced: int
    count: int


class SyncResponse(BaseModel):
    ok: bool = True
    synced: int
    count: int


class RegisterWebhookResponse(BaseModel):
    ok: bool = True
    webhook_id: Optional[str] = None


class CalendlyOAuthResponse(BaseModel):
    authorization_url: str
    state: str


class LinksResponse(BaseModel):
    links: list[EventTypeLink]
    error: Optional[str] = None


class WebhookAck(BaseModel):
    received: bool = True


class WebhookInviteePayload(BaseModel):
    """The invitee object Calendly posts; only the fields used for resolution"""

    model_config = ConfigDict(extra="allow")

    uri: str
    event: Optional[str] = None
    canceled: Optional[bool] = None
    rescheduled: Optional[bool] = None


class WebhookEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str
    payload: WebhookInviteePayload
