"""Credential service - OAuth connection lifecycle for Calendly"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ... import config
from ...exceptions import (
    AuthExchangeFailed,
    MissingProviderIdentity,
    NotConnected,
    ProviderRequestFailed,
)
from ...services.calendly_service import CalendlyService
from ...shared.validators import utcnow
from .repository import CredentialRepository
from .schemas import ConnectionStatus, Credential

logger = logging.getLogger(__name__)


class CredentialService:
    """Owns token storage, refresh and lazy identity resolution"""

    def __init__(self, db: Session, calendly: CalendlyService):
        self.db = db
        self.calendly = calendly
        self.repo = CredentialRepository()

    def get_credential(self, user_id: str) -> Credential:
        credential = self.repo.get(self.db, user_id)
        if credential is None:
            raise NotConnected(user_id)
        return credential

    def is_connected(self, user_id: str) -> bool:
        return self.repo.get(self.db, user_id) is not None

    async def connect(self, user_id: str, code: str, redirect_uri: Optional[str] = None) -> None:
        """
        Exchange an OAuth code and persist the tokens.

        Identity is not fetched here; it is resolved lazily on first use to
        keep the OAuth callback short.
        """
        tokens = await self.calendly.exchange_code_for_token(code, redirect_uri)
        if not tokens.refresh_token:
            raise AuthExchangeFailed("Calendly token response missing refresh_token")

        self.repo.upsert(
            self.db,
            user_id,
            create=True,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_type=tokens.token_type or "Bearer",
            expires_at=tokens.expires_at(),
            calendly_user_uri=None,
            calendly_organization_uri=None,
            scheduling_url=None,
        )
        logger.info(f"✅ Calendly connected for user {user_id}")

    async def get_fresh_credential(self, user_id: str) -> Credential:
        """Return the credential, refreshing the access token if it is about to expire"""
        credential = self.get_credential(user_id)
        margin = timedelta(seconds=config.TOKEN_REFRESH_MARGIN_SECONDS)
        if credential.expires_at - utcnow() > margin:
            return credential

        logger.info(f"🔄 Refreshing Calendly token for user {user_id}")
        try:
            tokens = await self.calendly.refresh_access_token(credential.refresh_token)
        except AuthExchangeFailed as e:
            # The stale token is still tried; a 401 from Calendly surfaces to the caller
            logger.warning(f"⚠️ Calendly token refresh failed for user {user_id}: {e}")
            return credential

        refreshed = credential.model_copy(
            update={
                "access_token": tokens.access_token,
                "refresh_token": tokens.refresh_token or credential.refresh_token,
                "expires_at": tokens.expires_at(),
            }
        )
        stored = self.repo.upsert(
            self.db,
            user_id,
            access_token=refreshed.access_token,
            refresh_token=refreshed.refresh_token,
            expires_at=refreshed.expires_at,
        )
        if not stored:
            logger.info(f"🔌 User {user_id} disconnected during token refresh")
            raise NotConnected(user_id)
        return refreshed

    async def ensure_identity(self, credential: Credential) -> Credential:
        """
        Resolve and persist the Calendly user/org URI and scheduling URL if missing.

        Raises:
            ProviderRequestFailed: /users/me failed and no identity is stored yet
            MissingProviderIdentity: Calendly returned neither a user nor an org URI
        """
        if credential.has_identity and credential.scheduling_url:
            return credential

        try:
            identity = await self.calendly.fetch_identity(credential.access_token)
        except ProviderRequestFailed:
            if credential.has_identity:
                logger.warning(
                    f"⚠️ Could not refresh Calendly profile for user {credential.user_id}, using stored identity"
                )
                return credential
            raise

        if identity.uri or identity.current_organization or identity.scheduling_url:
            credential = credential.model_copy(
                update={
                    "calendly_user_uri": identity.uri,
                    "calendly_organization_uri": identity.current_organization,
                    "scheduling_url": identity.scheduling_url,
                }
            )
            self.repo.upsert(
                self.db,
                credential.user_id,
                calendly_user_uri=identity.uri,
                calendly_organization_uri=identity.current_organization,
                scheduling_url=identity.scheduling_url,
            )
            logger.info(f"✅ Resolved Calendly identity for user {credential.user_id}")

        if not credential.has_identity:
            raise MissingProviderIdentity("Missing Calendly user/org URI")
        return credential

    def disconnect(self, user_id: str) -> bool:
        """Delete the credential row; appointments are kept for history"""
        deleted = self.repo.delete(self.db, user_id)
        if deleted:
            logger.info(f"🔌 Disconnected Calendly for user {user_id}")
        return deleted

    def get_status(self, user_id: str) -> ConnectionStatus:
        credential = self.repo.get(self.db, user_id)
        if credential is None:
            return ConnectionStatus(connected=False)
        return ConnectionStatus(
            connected=True,
            scheduling_url=credential.scheduling_url,
            calendly_user_uri=credential.calendly_user_uri,
            calendly_organization_uri=credential.calendly_organization_uri,
            expires_at=credential.expires_at,
        )
