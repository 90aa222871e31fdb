"""
Calendly webhook handling

received -> signature-verified (router) -> event-resolved -> reconciled -> acknowledged.
Resolution failures are logged and acknowledged so Calendly does not retry
events that can never be resolved.
"""

import json
import logging
from enum import Enum
from typing import Any

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ...exceptions import CalendlySyncError, NotConnected, ResolutionFailed
from ...services.calendly_service import CalendlyService
from ..appointments.repository import AppointmentRepository
from ..appointments.schemas import AppointmentCandidate
from ..credentials.service import CredentialService
from .schemas import WebhookEnvelope

logger = logging.getLogger(__name__)

INVITEE_CREATED = "invitee.created"
INVITEE_CANCELED = "invitee.canceled"
RECOGNIZED_EVENTS = (INVITEE_CREATED, INVITEE_CANCELED)


class WebhookOutcome(str, Enum):
    RECONCILED = "reconciled"
    IGNORED = "ignored"  # unrecognized event kind
    DROPPED = "dropped"  # user disconnected, or event could not be resolved


class MalformedWebhook(ValueError):
    """Body is not JSON or lacks the event kind / invitee URI"""


def parse_webhook_body(raw_body: bytes) -> tuple[WebhookEnvelope, dict[str, Any]]:
    """Parse the raw body into the envelope and the verbatim JSON kept as raw_payload"""
    try:
        data = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedWebhook("Invalid JSON body") from e
    if not isinstance(data, dict):
        raise MalformedWebhook("Invalid payload")
    try:
        envelope = WebhookEnvelope.model_validate(data)
    except ValidationError as e:
        raise MalformedWebhook("Invalid payload") from e
    return envelope, data


def candidate_status(envelope: WebhookEnvelope) -> str:
    if envelope.event == INVITEE_CANCELED:
        return "canceled"
    # Provisional: whether Calendly ever flags a new booking as a reschedule is unconfirmed
    return "rescheduled" if envelope.payload.rescheduled else "booked"


class CalendlyWebhookService:
    """Resolves verified webhooks into appointments"""

    def __init__(self, db: Session, calendly: CalendlyService):
        self.db = db
        self.calendly = calendly
        self.credentials = CredentialService(db, calendly)
        self.appointments = AppointmentRepository()

    async def handle(
        self, user_id: str, envelope: WebhookEnvelope, raw_payload: dict[str, Any]
    ) -> WebhookOutcome:
        if envelope.event not in RECOGNIZED_EVENTS:
            logger.debug(f"Unhandled event type: {envelope.event}")
            return WebhookOutcome.IGNORED

        try:
            credential = await self.credentials.get_fresh_credential(user_id)
        except NotConnected:
            logger.info(f"ℹ️ Dropping {envelope.event} for disconnected user {user_id}")
            return WebhookOutcome.DROPPED
        except CalendlySyncError as e:
            logger.error(f"❌ No usable Calendly credential for user {user_id}: {e}")
            return WebhookOutcome.DROPPED

        try:
            candidate = await self.resolve(user_id, credential.access_token, envelope, raw_payload)
        except Exception as e:
            logger.error(f"❌ Could not resolve {envelope.event} for {envelope.payload.uri}: {e}")
            return WebhookOutcome.DROPPED

        # Storage failures propagate; Calendly retries on the resulting 5xx
        self.appointments.reconcile(self.db, candidate)
        logger.info(
            f"📥 {envelope.event} reconciled {candidate.event_uri} as {candidate.status} for user {user_id}"
        )
        return WebhookOutcome.RECONCILED

    async def resolve(
        self,
        user_id: str,
        access_token: str,
        envelope: WebhookEnvelope,
        raw_payload: dict[str, Any],
    ) -> AppointmentCandidate:
        """
        Build the canonical appointment: fetch the invitee, then follow its
        event link for the scheduled times.

        Raises:
            ResolutionFailed: the invitee carries no event link
            ProviderRequestFailed: an invitee or event lookup failed
        """
        invitee = await self.calendly.get_invitee(access_token, envelope.payload.uri)
        event_uri = invitee.event or envelope.payload.event
        if not event_uri:
            raise ResolutionFailed(f"No event link for invitee {envelope.payload.uri}")

        event = await self.calendly.get_event(access_token, event_uri)

        return AppointmentCandidate(
            user_id=user_id,
            event_uri=event.uri or event_uri,
            event_type=event.event_type,
            invitee_email=invitee.email,
            invitee_name=invitee.name,
            start_time=event.start_time,
            end_time=event.end_time,
            status=candidate_status(envelope),
            raw_payload=raw_payload,
        )
