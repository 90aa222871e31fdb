"""
Calendly Webhook Routes
Handles incoming webhooks from Calendly for appointment synchronization
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from ... import config
from ...dependencies import get_webhook_service
from ...exceptions import SignatureInvalid
from ...rate_limiter import create_rate_limiter
from ...shared.validators import validate_user_id
from ...webhook_security import verify_calendly_webhook
from .schemas import WebhookAck
from .webhook_service import CalendlyWebhookService, MalformedWebhook, parse_webhook_body

logger = logging.getLogger(__name__)

router = APIRouter(tags=["calendly-webhooks"])

rate_limit_webhook = create_rate_limiter(
    limit=config.WEBHOOK_RATE_LIMIT,
    window_seconds=config.WEBHOOK_RATE_WINDOW,
    key_prefix="webhook_calendly",
)


@router.post("/webhook", response_model=WebhookAck)
async def handle_calendly_webhook(
    request: Request,
    user_id: Optional[str] = None,
    service: CalendlyWebhookService = Depends(get_webhook_service),
    _: None = Depends(rate_limit_webhook),
):
    """
    Handle Calendly webhook events
    Supported events: invitee.created, invitee.canceled

    Security:
    - Signature verification using HMAC-SHA256 over "<t>.<body>"
    - Rate limiting to prevent abuse

    Every handled, ignored or unresolvable event is acknowledged with 200 so
    Calendly does not retry it.
    """
    try:
        raw_body = await verify_calendly_webhook(
            request,
            config.CALENDLY_WEBHOOK_SIGNING_KEY,
            allow_unsigned=config.CALENDLY_WEBHOOK_ALLOW_UNSIGNED,
            tolerance_seconds=config.CALENDLY_WEBHOOK_TOLERANCE_SECONDS,
        )
    except SignatureInvalid as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    if not validate_user_id(user_id):
        raise HTTPException(status_code=400, detail="Missing user_id in callback URL")

    try:
        envelope, payload = parse_webhook_body(raw_body)
    except MalformedWebhook as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    logger.debug(f"📥 Received Calendly webhook: {envelope.event}")
    outcome = await service.handle(user_id, envelope, payload)
    logger.debug(f"Calendly webhook {envelope.event} for user {user_id}: {outcome.value}")
    return WebhookAck()
