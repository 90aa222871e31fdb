"""
Calendly polling sync

A sweep lists the user's events in the bounded window and reconciles each
one. Events are processed sequentially to stay inside Calendly's rate
limits; a failure on one event never aborts the rest of the sweep.
"""

import asyncio
import logging
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...database import SessionLocal
from ...exceptions import ProviderRequestFailed, SyncCancelled
from ...schemas import ProviderEvent
from ...services.calendly_service import CalendlyService
from ..appointments.repository import AppointmentRepository
from ..appointments.schemas import AppointmentCandidate
from ..credentials.service import CredentialService
from .schemas import SyncResult

logger = logging.getLogger(__name__)


class AppointmentSyncService:
    """Full-window catch-up sync for one user"""

    def __init__(self, db: Session, calendly: CalendlyService):
        self.db = db
        self.calendly = calendly
        self.credentials = CredentialService(db, calendly)
        self.appointments = AppointmentRepository()

    async def sync(self, user_id: str, cancel_event: Optional[asyncio.Event] = None) -> SyncResult:
        """
        Sweep the user's Calendly events into the appointments table.

        Raises:
            NotConnected: no credential row for the user
            MissingProviderIdentity: identity could not be resolved
            ProviderRequestFailed: identity lookup or event listing failed
            SyncCancelled: cancel_event was set mid-sweep
        """
        credential = await self.credentials.get_fresh_credential(user_id)
        credential = await self.credentials.ensure_identity(credential)

        events = await self.calendly.list_events(
            credential.access_token,
            user_uri=credential.calendly_user_uri,
            organization_uri=credential.calendly_organization_uri,
        )
        logger.info(f"🔄 Syncing {len(events)} Calendly events for user {user_id}")

        synced = 0
        for processed, event in enumerate(events):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"⏹️ Sync for user {user_id} cancelled after {processed} events")
                raise SyncCancelled(processed)

            if await self._sync_event(user_id, credential.access_token, event):
                synced += 1

        logger.info(f"✅ Synced {synced}/{len(events)} Calendly events for user {user_id}")
        return SyncResult(synced=synced, count=len(events))

    async def _sync_event(self, user_id: str, access_token: str, event: ProviderEvent) -> bool:
        try:
            invitee = await self.calendly.fetch_invitee(access_token, event.uri)
        except (ProviderRequestFailed, ValidationError) as e:
            logger.warning(f"⚠️ Failed to get invitees for event {event.uri}: {e}")
            return False

        candidate = AppointmentCandidate(
            user_id=user_id,
            event_uri=event.uri,
            event_type=event.event_type,
            invitee_email=invitee.email if invitee else None,
            invitee_name=invitee.name if invitee else None,
            start_time=event.start_time,
            end_time=event.end_time,
            status="canceled" if event.is_canceled else "booked",
        )

        try:
            self.appointments.reconcile(self.db, candidate)
        except SQLAlchemyError as e:
            logger.error(f"❌ Failed to store event {event.uri} for user {user_id}: {e}")
            return False
        return True


async def run_sync_for_user(user_id: str) -> int:
    """Sweep with a fresh session and the default client; used outside request scope"""
    db = SessionLocal()
    try:
        result = await AppointmentSyncService(db, CalendlyService()).sync(user_id)
        return result.synced
    finally:
        db.close()
