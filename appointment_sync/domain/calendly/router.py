"""
Calendly connection routes
OAuth connect/callback, status, disconnect, booking links, manual sync and
webhook registration
"""

import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError

from ... import config
from ...auth import CurrentUser, get_current_user
from ...dependencies import (
    get_calendly_service,
    get_credential_service,
    get_sync_service,
    get_webhook_registrar,
)
from ...exceptions import (
    AuthExchangeFailed,
    MissingProviderIdentity,
    NotConnected,
    ProviderRequestFailed,
)
from ...services.calendly_service import CalendlyService
from ...shared.validators import validate_user_id
from ..credentials.schemas import ConnectionStatus
from ..credentials.service import CredentialService
from .registrar import WebhookRegistrar
from .schemas import (
    CalendlyOAuthResponse,
    LinksResponse,
    RegisterWebhookResponse,
    SyncResponse,
)
from .sync_service import AppointmentSyncService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["calendly"])


def _error_redirect(error: str) -> RedirectResponse:
    return RedirectResponse(
        f"{config.OAUTH_ERROR_REDIRECT_URL}?{urlencode({'error': error})}", status_code=302
    )


@router.get("/oauth/connect", response_model=CalendlyOAuthResponse)
async def initiate_calendly_connection(
    current_user: CurrentUser = Depends(get_current_user),
    calendly: CalendlyService = Depends(get_calendly_service),
):
    """Initiate Calendly OAuth flow; the state parameter carries the user id"""
    try:
        auth_url = calendly.get_authorization_url(current_user.id)
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return CalendlyOAuthResponse(authorization_url=auth_url, state=current_user.id)


@router.get("/oauth/callback")
async def calendly_oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    credentials: CredentialService = Depends(get_credential_service),
):
    """
    Handle the OAuth redirect from Calendly.

    state is the local user id; no server-side session is consulted. Only the
    tokens are stored here, identity is resolved on first use.
    """
    if error:
        logger.warning(f"⚠️ Calendly OAuth returned error: {error}")
        return _error_redirect(error)
    if not code or not state:
        return _error_redirect("missing_params")
    if not validate_user_id(state):
        logger.warning("🚫 Calendly OAuth callback with invalid state")
        return _error_redirect("invalid_state")

    try:
        await credentials.connect(state, code)
    except AuthExchangeFailed as e:
        logger.error(f"❌ Failed to connect Calendly for user {state}: {e}")
        return _error_redirect("auth_exchange_failed")
    except SQLAlchemyError as e:
        logger.error(f"❌ Database error storing Calendly tokens for user {state}: {e}")
        return _error_redirect("db_failed")

    return RedirectResponse(config.OAUTH_SUCCESS_REDIRECT_URL, status_code=302)


@router.get("/status", response_model=ConnectionStatus)
async def get_calendly_status(
    current_user: CurrentUser = Depends(get_current_user),
    credentials: CredentialService = Depends(get_credential_service),
):
    """Get Calendly connection status"""
    return credentials.get_status(current_user.id)


@router.post("/disconnect")
async def disconnect_calendly(
    current_user: CurrentUser = Depends(get_current_user),
    credentials: CredentialService = Depends(get_credential_service),
):
    """Disconnect Calendly integration; synced appointments are kept"""
    if not credentials.disconnect(current_user.id):
        raise HTTPException(status_code=404, detail="No Calendly integration found")
    return {"message": "Calendly disconnected successfully"}


@router.get("/links", response_model=LinksResponse)
async def get_booking_links(
    current_user: CurrentUser = Depends(get_current_user),
    credentials: CredentialService = Depends(get_credential_service),
    calendly: CalendlyService = Depends(get_calendly_service),
):
    """Booking links for the user's Calendly event types"""
    try:
        credential = await credentials.get_fresh_credential(current_user.id)
        credential = await credentials.ensure_identity(credential)
    except (NotConnected, MissingProviderIdentity, ProviderRequestFailed):
        return LinksResponse(links=[], error="Calendly not connected")

    if not credential.calendly_user_uri:
        return LinksResponse(links=[], error="Calendly not connected")

    try:
        links = await calendly.list_event_types(credential.access_token, credential.calendly_user_uri)
    except ProviderRequestFailed as e:
        logger.error(f"❌ Calendly event types failed for user {current_user.id}: {e}")
        return LinksResponse(links=[], error="Failed to fetch event types")
    return LinksResponse(links=links)


@router.post("/sync", response_model=SyncResponse)
async def sync_appointments(
    current_user: CurrentUser = Depends(get_current_user),
    sync_service: AppointmentSyncService = Depends(get_sync_service),
):
    """Pull the user's Calendly events into appointments (catches missed webhooks)"""
    try:
        result = await sync_service.sync(current_user.id)
    except NotConnected as e:
        raise HTTPException(status_code=400, detail="Calendly not connected") from e
    except MissingProviderIdentity as e:
        raise HTTPException(status_code=400, detail="Missing Calendly user/org URI") from e
    except ProviderRequestFailed as e:
        logger.error(f"❌ Calendly sync failed for user {current_user.id}: {e}")
        raise HTTPException(status_code=502, detail="Failed to fetch Calendly events") from e

    return SyncResponse(synced=result.synced, count=result.count)


@router.post("/register-webhook", response_model=RegisterWebhookResponse)
async def register_webhook(
    current_user: CurrentUser = Depends(get_current_user),
    registrar: WebhookRegistrar = Depends(get_webhook_registrar),
):
    """Register the webhook endpoint with Calendly; called by the app after OAuth"""
    try:
        webhook_id = await registrar.register(current_user.id)
    except NotConnected as e:
        raise HTTPException(status_code=400, detail="Calendly not connected") from e
    except MissingProviderIdentity as e:
        raise HTTPException(status_code=400, detail="Missing Calendly org/user URI") from e
    except ProviderRequestFailed as e:
        logger.error(f"❌ Calendly webhook register failed for user {current_user.id}: {e}")
        raise HTTPException(status_code=502, detail="Failed to register webhook") from e

    return RegisterWebhookResponse(webhook_id=webhook_id)
