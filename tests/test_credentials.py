"""Tests for credential storage, refresh and lazy identity."""

from datetime import timedelta

import pytest

from appointment_sync.domain.credentials.repository import CredentialRepository
from appointment_sync.domain.credentials.service import CredentialService
from appointment_sync.exceptions import AuthExchangeFailed, NotConnected
from appointment_sync.models import CalendlyCredential
from appointment_sync.security_utils import decrypt_token, derive_fernet_key, encrypt_token
from appointment_sync.shared.validators import utcnow

pytestmark = pytest.mark.unit


class TestStorage:
    def test_tokens_encrypted_at_rest(self, db, seed_credential):
        seed_credential()

        row = db.get(CalendlyCredential, "user-1")
        assert row.access_token != "access-0"
        assert row.refresh_token != "refresh-0"
        assert decrypt_token(row.access_token) == "access-0"
        assert CredentialRepository.get(db, "user-1").refresh_token == "refresh-0"

    def test_derived_key_is_valid_fernet_key(self):
        assert len(derive_fernet_key("anything")) == 44
        assert decrypt_token(encrypt_token("secret")) == "secret"

    def test_one_row_per_user(self, db, seed_credential):
        seed_credential()
        seed_credential()

        assert db.query(CalendlyCredential).count() == 1

    def test_partial_write_does_not_create_row(self, db):
        stored = CredentialRepository.upsert(db, "ghost", calendly_user_uri="https://api.calendly.test/users/X")

        assert stored is False
        assert CredentialRepository.get(db, "ghost") is None

    def test_token_write_without_create_does_not_create_row(self, db):
        stored = CredentialRepository.upsert(
            db,
            "ghost",
            access_token="access-9",
            refresh_token="refresh-9",
            expires_at=utcnow() + timedelta(hours=1),
        )

        assert stored is False
        assert CredentialRepository.get(db, "ghost") is None

    def test_create_requires_token_fields(self, db):
        with pytest.raises(ValueError):
            CredentialRepository.upsert(db, "ghost", create=True, access_token="access-9")
        assert CredentialRepository.get(db, "ghost") is None

    def test_delete_reports_presence(self, db, seed_credential):
        seed_credential()

        assert CredentialRepository.delete(db, "user-1") is True
        assert CredentialRepository.delete(db, "user-1") is False


class TestConnect:
    async def test_connect_stores_tokens_without_identity(self, db, calendly):
        await CredentialService(db, calendly).connect("user-42", "code")

        stored = CredentialRepository.get(db, "user-42")
        assert stored.access_token == "access-1"
        assert stored.refresh_token == "refresh-1"
        assert stored.calendly_user_uri is None
        assert stored.calendly_organization_uri is None
        assert stored.scheduling_url is None
        assert stored.expires_at > utcnow() + timedelta(hours=1)

    async def test_reconnect_replaces_tokens_and_clears_identity(self, db, calendly, seed_credential):
        seed_credential()

        await CredentialService(db, calendly).connect("user-1", "code")
        db.expire_all()

        stored = CredentialRepository.get(db, "user-1")
        assert stored.access_token == "access-1"
        assert stored.calendly_user_uri is None

    async def test_failed_exchange_stores_nothing(self, db, calendly, fake_calendly):
        fake_calendly.token_status = 401

        with pytest.raises(AuthExchangeFailed):
            await CredentialService(db, calendly).connect("user-42", "code")
        assert CredentialRepository.get(db, "user-42") is None


class TestRefresh:
    async def test_valid_token_not_refreshed(self, db, calendly, fake_calendly, seed_credential):
        seed_credential()

        credential = await CredentialService(db, calendly).get_fresh_credential("user-1")

        assert credential.access_token == "access-0"
        assert fake_calendly.requests == []

    async def test_expiring_token_refreshed_and_persisted(self, db, calendly, fake_calendly, seed_credential):
        seed_credential(expires_in=30)

        credential = await CredentialService(db, calendly).get_fresh_credential("user-1")
        db.expire_all()

        assert credential.access_token == "access-1"
        stored = CredentialRepository.get(db, "user-1")
        assert stored.access_token == "access-1"
        assert stored.refresh_token == "refresh-1"
        assert stored.calendly_user_uri == fake_calendly.user_uri

    async def test_disconnect_during_refresh_is_not_undone(self, db, calendly, fake_calendly, seed_credential):
        seed_credential(expires_in=30)
        fake_calendly.on_token_request = lambda request: CredentialRepository.delete(db, "user-1")

        with pytest.raises(NotConnected):
            await CredentialService(db, calendly).get_fresh_credential("user-1")

        assert CredentialRepository.get(db, "user-1") is None

    async def test_refresh_failure_falls_back_to_stale_token(self, db, calendly, fake_calendly, seed_credential):
        seed_credential(expires_in=-60)
        fake_calendly.token_status = 400

        credential = await CredentialService(db, calendly).get_fresh_credential("user-1")

        assert credential.access_token == "access-0"

    async def test_not_connected(self, db, calendly):
        service = CredentialService(db, calendly)

        with pytest.raises(NotConnected):
            await service.get_fresh_credential("nobody")
        assert service.is_connected("nobody") is False


class TestIdentity:
    async def test_stored_identity_used_when_lookup_fails(self, db, calendly, fake_calendly, seed_credential):
        seed_credential()
        CredentialRepository.upsert(db, "user-1", scheduling_url=None)
        fake_calendly.identity_status = 500
        service = CredentialService(db, calendly)

        credential = await service.ensure_identity(service.get_credential("user-1"))

        assert credential.calendly_user_uri == fake_calendly.user_uri

    async def test_status_reflects_connection(self, db, calendly, seed_credential):
        service = CredentialService(db, calendly)
        assert service.get_status("user-1").connected is False

        seed_credential()

        status = service.get_status("user-1")
        assert status.connected is True
        assert status.scheduling_url == "https://calendly.com/host"
