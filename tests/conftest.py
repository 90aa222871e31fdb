"""Pytest fixtures: in-memory database, fake Calendly API and a wired test client."""

import os
import re
import time
from datetime import timedelta
from typing import Optional
from urllib.parse import parse_qs, urlencode

# Set required env vars before the package reads its config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["AUTH_JWT_SECRET"] = "test-jwt-secret"
os.environ["CALENDLY_CLIENT_ID"] = "test-client-id"
os.environ["CALENDLY_CLIENT_SECRET"] = "test-client-secret"
os.environ["CALENDLY_REDIRECT_URI"] = "http://testserver/oauth/callback"
os.environ["CALENDLY_WEBHOOK_SIGNING_KEY"] = "test-signing-key"
os.environ["PUBLIC_API_URL"] = "https://api.example.test"
os.environ["FRONTEND_URL"] = "https://app.example.test"

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt as jose_jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from appointment_sync import rate_limiter
from appointment_sync.auth import CurrentUser, get_current_user
from appointment_sync.database import Base, get_db
from appointment_sync.dependencies import get_calendly_service
from appointment_sync.domain.credentials.repository import CredentialRepository
from appointment_sync.main import app
from appointment_sync.services.calendly_service import CalendlyService
from appointment_sync.shared.validators import utcnow

API_BASE = "https://api.calendly.test"
AUTH_BASE = "https://auth.calendly.test"
SIGNING_KEY = "test-signing-key"
USER_ID = "user-1"

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeCalendly:
    """In-memory stand-in for the Calendly API, served through httpx.MockTransport"""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.user_uri = f"{API_BASE}/users/U1"
        self.org_uri = f"{API_BASE}/organizations/O1"
        self.identity: dict = {
            "uri": self.user_uri,
            "email": "host@example.com",
            "name": "Host",
            "scheduling_url": "https://calendly.com/host",
            "current_organization": self.org_uri,
        }
        self.identity_status = 200
        self.token_status = 200
        self.webhook_status = 201
        self.events: dict[str, dict] = {}
        self.invitees: dict[str, list[dict]] = {}
        self.invitee_failures: set[str] = set()
        self.event_failures: set[str] = set()
        self.page_size: Optional[int] = None
        self.on_invitee_fetch = None
        self.invitee_responses: dict[str, httpx.Response] = {}
        self.on_token_request = None
        self.token_payload: Optional[dict] = None
        self._token_counter = 0

    def add_event(
        self,
        uuid: str,
        start: str = "2030-01-01T10:00:00.000000Z",
        end: str = "2030-01-01T10:30:00.000000Z",
        status: str = "active",
        email: Optional[str] = None,
        name: Optional[str] = None,
    ) -> str:
        uri = f"{API_BASE}/scheduled_events/{uuid}"
        self.events[uuid] = {
            "uri": uri,
            "name": "Consultation",
            "event_type": f"{API_BASE}/event_types/ET1",
            "status": status,
            "start_time": start,
            "end_time": end,
        }
        self.invitees[uuid] = [
            {
                "uri": f"{uri}/invitees/INV-{uuid}",
                "email": email or f"{uuid}@example.com",
                "name": name or f"Invitee {uuid}",
                "event": uri,
                "status": "canceled" if status == "canceled" else "active",
            }
        ]
        return uri

    def invitee_uri(self, uuid: str) -> str:
        return self.invitees[uuid][0]["uri"]

    def requests_to(self, path: str, method: str = "GET") -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path and r.method == method]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == "auth.calendly.test" and path == "/oauth/token":
            return self._token(request)
        if path == "/users/me":
            if self.identity_status != 200:
                return httpx.Response(self.identity_status, json={"title": "error"})
            return httpx.Response(200, json={"resource": self.identity})
        if path == "/scheduled_events":
            return self._list_events(request)
        if path == "/event_types":
            return httpx.Response(
                200,
                json={
                    "collection": [
                        {
                            "uri": f"{API_BASE}/event_types/ET1",
                            "name": "Consultation",
                            "scheduling_url": "https://calendly.com/host/consultation",
                        }
                    ]
                },
            )
        if path == "/webhook_subscriptions" and request.method == "POST":
            if self.webhook_status >= 300:
                return httpx.Response(self.webhook_status, json={"title": "error"})
            return httpx.Response(
                self.webhook_status,
                json={"resource": {"uri": f"{API_BASE}/webhook_subscriptions/WH1"}},
            )

        match = re.match(r"^/scheduled_events/([^/]+)/invitees$", path)
        if match:
            uuid = match.group(1)
            if self.on_invitee_fetch is not None:
                self.on_invitee_fetch(uuid)
            if uuid in self.invitee_failures:
                return httpx.Response(500, json={"title": "error"})
            if uuid in self.invitee_responses:
                return self.invitee_responses[uuid]
            return httpx.Response(200, json={"collection": self.invitees.get(uuid, [])})

        match = re.match(r"^/scheduled_events/([^/]+)/invitees/([^/]+)$", path)
        if match:
            for invitee in self.invitees.get(match.group(1), []):
                if invitee["uri"].endswith(f"/{match.group(2)}"):
                    return httpx.Response(200, json={"resource": invitee})
            return httpx.Response(404, json={"title": "Resource Not Found"})

        match = re.match(r"^/scheduled_events/([^/]+)$", path)
        if match:
            uuid = match.group(1)
            if uuid in self.event_failures or uuid not in self.events:
                return httpx.Response(404, json={"title": "Resource Not Found"})
            return httpx.Response(200, json={"resource": self.events[uuid]})

        return httpx.Response(404, json={"title": "Resource Not Found"})

    def _token(self, request: httpx.Request) -> httpx.Response:
        if self.on_token_request is not None:
            self.on_token_request(request)
        if self.token_status != 200:
            return httpx.Response(self.token_status, json={"error": "invalid_grant"})
        if self.token_payload is not None:
            return httpx.Response(200, json=self.token_payload)
        form = parse_qs(request.content.decode())
        self._token_counter += 1
        return httpx.Response(
            200,
            json={
                "access_token": f"access-{self._token_counter}",
                "refresh_token": f"refresh-{self._token_counter}",
                "token_type": "Bearer",
                "expires_in": 7200,
                "grant_type": form.get("grant_type", [""])[0],
            },
        )

    def _list_events(self, request: httpx.Request) -> httpx.Response:
        items = list(self.events.values())
        offset = int(request.url.params.get("page_token", "0"))
        size = self.page_size or len(items) or 1
        page = items[offset : offset + size]
        next_offset = offset + size
        next_page = None
        if next_offset < len(items):
            next_page = f"{API_BASE}/scheduled_events?{urlencode({'page_token': next_offset})}"
        return httpx.Response(200, json={"collection": page, "pagination": {"next_page": next_page}})


@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    rate_limiter.memory_cache.clear()
    yield


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_calendly():
    return FakeCalendly()


@pytest.fixture
def calendly(fake_calendly):
    """CalendlyService wired to the fake API"""
    return CalendlyService(
        client_id="test-client-id",
        client_secret="test-client-secret",
        redirect_uri="http://testserver/oauth/callback",
        base_url=API_BASE,
        auth_base_url=AUTH_BASE,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake_calendly.handler)),
    )


@pytest.fixture
def seed_credential(db, fake_calendly):
    """Store a credential; with_identity=False leaves it as the OAuth callback does"""

    def _seed(user_id: str = USER_ID, with_identity: bool = True, expires_in: int = 7200):
        fields = {
            "access_token": "access-0",
            "refresh_token": "refresh-0",
            "token_type": "Bearer",
            "expires_at": utcnow() + timedelta(seconds=expires_in),
            "calendly_user_uri": None,
            "calendly_organization_uri": None,
            "scheduling_url": None,
        }
        if with_identity:
            fields.update(
                calendly_user_uri=fake_calendly.user_uri,
                calendly_organization_uri=fake_calendly.org_uri,
                scheduling_url="https://calendly.com/host",
            )
        CredentialRepository.upsert(db, user_id, create=True, **fields)

    return _seed


@pytest.fixture
def client(calendly):
    """Test client with database, auth and Calendly overridden"""

    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: CurrentUser(id=USER_ID)
    app.dependency_overrides[get_calendly_service] = lambda: calendly
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_token():
    def _make(sub: str = USER_ID, expires_in: int = 3600, **claims):
        payload = {"sub": sub, "aud": "authenticated", "exp": int(time.time()) + expires_in}
        payload.update(claims)
        return jose_jwt.encode(payload, "test-jwt-secret", algorithm="HS256")

    return _make
