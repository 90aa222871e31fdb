"""Shared FastAPI dependencies"""

from fastapi import Depends
from sqlalchemy.orm import Session

from .database import get_db
from .domain.appointments.distributor import ChangeDistributor, change_distributor
from .domain.calendly.registrar import WebhookRegistrar
from .domain.calendly.sync_service import AppointmentSyncService
from .domain.calendly.webhook_service import CalendlyWebhookService
from .domain.credentials.service import CredentialService
from .services.calendly_service import CalendlyService

calendly_service = CalendlyService()


def get_calendly_service() -> CalendlyService:
    return calendly_service


def get_change_distributor() -> ChangeDistributor:
    return change_distributor


def get_credential_service(
    db: Session = Depends(get_db), calendly: CalendlyService = Depends(get_calendly_service)
) -> CredentialService:
    return CredentialService(db, calendly)


def get_sync_service(
    db: Session = Depends(get_db), calendly: CalendlyService = Depends(get_calendly_service)
) -> AppointmentSyncService:
    return AppointmentSyncService(db, calendly)


def get_webhook_service(
    db: Session = Depends(get_db), calendly: CalendlyService = Depends(get_calendly_service)
) -> CalendlyWebhookService:
    return CalendlyWebhookService(db, calendly)


def get_webhook_registrar(
    db: Session = Depends(get_db), calendly: CalendlyService = Depends(get_calendly_service)
) -> WebhookRegistrar:
    return WebhookRegistrar(db, calendly)
