"""Webhook subscription registration, run once after OAuth connection"""

import logging
from typing import Optional
from urllib.parse import urlencode

from sqlalchemy.orm import Session

from ... import config
from ...services.calendly_service import WEBHOOK_EVENTS, CalendlyService
from ..credentials.service import CredentialService

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/webhook"


def build_callback_url(user_id: str, base_url: Optional[str] = None) -> str:
    """Callback URL with the local user id bound in; webhooks carry no user identity"""
    base = (base_url or config.PUBLIC_API_URL).rstrip("/")
    return f"{base}{WEBHOOK_PATH}?{urlencode({'user_id': user_id})}"


class WebhookRegistrar:
    """
    Registers the webhook endpoint with Calendly for a connected user.

    Best effort: a failure is reported to the caller but never rolls back the
    connection; the user falls back to manual sync until registration is retried.
    """

    def __init__(self, db: Session, calendly: CalendlyService):
        self.calendly = calendly
        self.credentials = CredentialService(db, calendly)

    async def register(self, user_id: str) -> Optional[str]:
        """
        Returns:
            The Calendly subscription URI, or None if one already existed

        Raises:
            NotConnected, MissingProviderIdentity, ProviderRequestFailed
        """
        credential = await self.credentials.get_fresh_credential(user_id)
        credential = await self.credentials.ensure_identity(credential)

        if credential.calendly_organization_uri:
            scope = "organization"
        else:
            scope = "user"

        webhook_id = await self.calendly.create_webhook_subscription(
            credential.access_token,
            url=build_callback_url(user_id),
            events=WEBHOOK_EVENTS,
            scope=scope,
            organization_uri=credential.calendly_organization_uri,
            user_uri=credential.calendly_user_uri,
        )
        logger.info(f"✅ Calendly webhook registered for user {user_id} (scope={scope})")
        return webhook_id
