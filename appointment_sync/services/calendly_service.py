import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from .. import config
from ..exceptions import AuthExchangeFailed, ProviderRequestFailed
from ..schemas import (
    EventTypeLink,
    ProviderEvent,
    ProviderIdentity,
    ProviderInvitee,
    TokenSet,
)
from ..shared.validators import format_provider_time, utcnow

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS = ["invitee.created", "invitee.canceled"]


def event_uuid_from_uri(event_uri: str) -> str:
    """Extract event UUID from URI"""
    return event_uri.rstrip("/").split("/")[-1]


class CalendlyService:
    """
    Service for interacting with Calendly API

    Stateless: every call takes the access token explicitly. Token refresh
    is the caller's precondition (see CredentialService).
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        base_url: Optional[str] = None,
        auth_base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.client_id = client_id or config.CALENDLY_CLIENT_ID
        self.client_secret = client_secret or config.CALENDLY_CLIENT_SECRET
        self.redirect_uri = redirect_uri or config.CALENDLY_REDIRECT_URI
        self.base_url = (base_url or config.CALENDLY_API_BASE_URL).rstrip("/")
        auth_base = (auth_base_url or config.CALENDLY_AUTH_BASE_URL).rstrip("/")
        self.auth_url = f"{auth_base}/oauth/authorize"
        self.token_url = f"{auth_base}/oauth/token"  # noqa: S105 - OAuth endpoint URL
        self.timeout = timeout if timeout is not None else config.CALENDLY_REQUEST_TIMEOUT
        self.retries = retries if retries is not None else config.CALENDLY_TRANSPORT_RETRIES
        self._http_client = http_client

    @asynccontextmanager
    async def _client(self):
        if self._http_client is not None:
            yield self._http_client
            return
        # Transport retries cover connection failures only, never HTTP error responses
        transport = httpx.AsyncHTTPTransport(retries=self.retries)
        async with httpx.AsyncClient(timeout=self.timeout, transport=transport) as client:
            yield client

    async def _request(
        self,
        method: str,
        url: str,
        access_token: Optional[str] = None,
        **kwargs,
    ) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        async with self._client() as client:
            try:
                response = await client.request(method, url, headers=headers, **kwargs)
            except httpx.TransportError as e:
                logger.error(f"❌ Calendly unreachable for {method} {url}: {e}")
                raise ProviderRequestFailed(f"Calendly request failed: {e}") from e
        return response

    async def _get_json(self, url: str, access_token: str, **kwargs) -> dict[str, Any]:
        response = await self._request("GET", url, access_token, **kwargs)
        if response.status_code >= 400:
            logger.error(f"❌ Calendly GET {url} failed: {response.status_code}")
            raise ProviderRequestFailed(
                f"Calendly GET {url} failed: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.error(f"❌ Calendly GET {url} returned a non-JSON body ({response.status_code})")
            raise ProviderRequestFailed(
                f"Calendly GET {url} returned an unreadable body",
                status_code=response.status_code,
                body=response.text,
            )
        return data

    def _resource_url(self, uri_or_path: str) -> str:
        if uri_or_path.startswith("http"):
            return uri_or_path
        return f"{self.base_url}/{uri_or_path.lstrip('/')}"

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def get_authorization_url(self, state: str) -> str:
        """Generate OAuth authorization URL"""
        if not self.redirect_uri:
            logger.error("CALENDLY_REDIRECT_URI not configured in environment variables")
            raise ValueError("Calendly redirect URI not configured")

        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "state": state,
        }
        return f"{self.auth_url}?{urlencode(params)}"

    async def _token_request(self, payload: dict[str, str], action: str) -> TokenSet:
        try:
            response = await self._request(
                "POST",
                self.token_url,
                data=payload,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except ProviderRequestFailed as e:
            raise AuthExchangeFailed(f"Calendly {action} failed: {e}") from e

        if response.status_code >= 300:
            logger.error(f"❌ Calendly {action} failed: {response.status_code}")
            logger.debug(f"Calendly {action} error response: {response.text}")
            raise AuthExchangeFailed(
                f"Calendly {action} failed: {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return TokenSet.model_validate(response.json())
        except ValueError as e:
            # Covers both a non-JSON body and a token response without access_token
            logger.error(f"❌ Calendly {action} returned an unusable token response")
            raise AuthExchangeFailed(f"Calendly {action} returned an invalid response") from e

    async def exchange_code_for_token(self, code: str, redirect_uri: Optional[str] = None) -> TokenSet:
        """Exchange authorization code for access token"""
        redirect_uri = redirect_uri or self.redirect_uri
        logger.info(f"🔄 Exchanging OAuth code for token with redirect_uri: {redirect_uri}")
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "client_id": self.client_id or "",
                "client_secret": self.client_secret or "",
                "redirect_uri": redirect_uri or "",
            },
            "token exchange",
        )

    async def refresh_access_token(self, refresh_token: str) -> TokenSet:
        """Refresh expired access token"""
        return await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.client_id or "",
                "client_secret": self.client_secret or "",
            },
            "token refresh",
        )

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    async def fetch_identity(self, access_token: str) -> ProviderIdentity:
        """Get current user information"""
        data = await self._get_json(f"{self.base_url}/users/me", access_token)
        return ProviderIdentity.from_resource(data)

    @staticmethod
    def clamp_window(
        window_start: Optional[datetime],
        window_end: Optional[datetime],
        now: Optional[datetime] = None,
    ) -> tuple[datetime, datetime]:
        """Clamp a sweep window to [now - past hours, now + future days]"""
        now = now or utcnow()
        earliest = now - timedelta(hours=config.SYNC_WINDOW_PAST_HOURS)
        latest = now + timedelta(days=config.SYNC_WINDOW_FUTURE_DAYS)
        start = earliest if window_start is None else max(window_start, earliest)
        end = latest if window_end is None else min(window_end, latest)
        return start, end

    async def list_events(
        self,
        access_token: str,
        user_uri: Optional[str] = None,
        organization_uri: Optional[str] = None,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
        count: int = 100,
        max_pages: Optional[int] = None,
    ) -> list[ProviderEvent]:
        """
        List scheduled events for a user (or organization) within the sweep window.

        Both active and canceled events are returned so that missed
        cancellations are picked up. Follows pagination up to max_pages.
        """
        if not user_uri and not organization_uri:
            raise ValueError("list_events requires a user or organization URI")

        start, end = self.clamp_window(window_start, window_end)
        params: dict[str, Any] = {
            "min_start_time": format_provider_time(start),
            "max_start_time": format_provider_time(end),
            "count": count,
        }
        if user_uri:
            params["user"] = user_uri
        else:
            params["organization"] = organization_uri

        max_pages = max_pages or config.SYNC_MAX_PAGES
        events: list[ProviderEvent] = []
        url: Optional[str] = f"{self.base_url}/scheduled_events"
        page = 0
        while url and page < max_pages:
            data = await self._get_json(url, access_token, params=params if page == 0 else None)
            events.extend(ProviderEvent.model_validate(item) for item in data.get("collection", []))
            url = (data.get("pagination") or {}).get("next_page")
            page += 1

        if url:
            logger.warning(f"⚠️ Calendly event listing truncated after {max_pages} pages")
        return events

    async def get_event(self, access_token: str, event_uri: str) -> ProviderEvent:
        """Get details of a scheduled event"""
        data = await self._get_json(self._resource_url(event_uri), access_token)
        return ProviderEvent.from_resource(data)

    async def get_invitee(self, access_token: str, invitee_uri: str) -> ProviderInvitee:
        """Get one invitee by its URI"""
        data = await self._get_json(self._resource_url(invitee_uri), access_token)
        return ProviderInvitee.from_resource(data)

    async def fetch_invitee(self, access_token: str, event_uri: str) -> Optional[ProviderInvitee]:
        """Get the first invitee of a scheduled event, or None if it has none"""
        event_uuid = event_uuid_from_uri(event_uri)
        data = await self._get_json(
            f"{self.base_url}/scheduled_events/{event_uuid}/invitees", access_token
        )
        invitees = data.get("collection", [])
        if not invitees:
            return None
        return ProviderInvitee.model_validate(invitees[0])

    async def list_event_types(self, access_token: str, user_uri: str) -> list[EventTypeLink]:
        """List user's event types as booking links"""
        data = await self._get_json(
            f"{self.base_url}/event_types", access_token, params={"user": user_uri}
        )
        links = []
        for item in data.get("collection", []):
            resource = item.get("resource", item)
            links.append(
                EventTypeLink(
                    name=resource.get("name") or "Meeting",
                    url=resource.get("scheduling_url") or "",
                    uri=resource.get("uri") or "",
                )
            )
        return links

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def create_webhook_subscription(
        self,
        access_token: str,
        url: str,
        events: list[str],
        scope: str,
        organization_uri: Optional[str] = None,
        user_uri: Optional[str] = None,
    ) -> Optional[str]:
        """
        Create a webhook subscription

        Args:
            access_token: Calendly access token
            url: Your webhook endpoint URL
            events: List of events to subscribe to (e.g., ['invitee.created', 'invitee.canceled'])
            scope: 'organization' or 'user'
            organization_uri: Organization URI from user info
            user_uri: User URI, required for user scope

        Returns:
            The subscription URI, or None when Calendly reports it already exists
        """
        body: dict[str, Any] = {"url": url, "events": events, "scope": scope}
        if organization_uri:
            body["organization"] = organization_uri
        if scope == "user":
            body["user"] = user_uri

        response = await self._request(
            "POST",
            f"{self.base_url}/webhook_subscriptions",
            access_token,
            json=body,
            headers={"Content-Type": "application/json"},
        )

        if response.status_code == 409:
            logger.info(f"ℹ️ Calendly webhook already registered for {url}")
            return None
        if response.status_code >= 300:
            logger.error(f"❌ Calendly webhook register failed: {response.status_code}")
            raise ProviderRequestFailed(
                f"Failed to register webhook: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return (response.json().get("resource") or {}).get("uri")
        except (ValueError, AttributeError):
            logger.warning(f"⚠️ Calendly webhook registered for {url} but the response had no subscription URI")
            return None
