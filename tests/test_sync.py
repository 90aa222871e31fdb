"""Tests for the polling sweep."""

import asyncio
from datetime import timedelta

import httpx
import pytest
from sqlalchemy import func, select

from appointment_sync.domain.appointments.repository import AppointmentRepository
from appointment_sync.domain.calendly.sync_service import AppointmentSyncService
from appointment_sync.domain.credentials.repository import CredentialRepository
from appointment_sync.exceptions import (
    MissingProviderIdentity,
    NotConnected,
    ProviderRequestFailed,
    SyncCancelled,
)
from appointment_sync.models import Appointment
from appointment_sync.shared.validators import parse_provider_time, utcnow

pytestmark = pytest.mark.unit


def _count(db) -> int:
    return db.scalar(select(func.count()).select_from(Appointment))


class TestSweep:
    async def test_invitee_failures_skip_only_their_events(self, db, calendly, fake_calendly, seed_credential):
        seed_credential()
        for i in range(10):
            fake_calendly.add_event(f"EV{i}")
        fake_calendly.invitee_failures.update({"EV2", "EV5", "EV7"})

        result = await AppointmentSyncService(db, calendly).sync("user-1")

        assert result.synced == 7
        assert result.count == 10
        assert _count(db) == 7
        assert AppointmentRepository.get_by_event_uri(db, fake_calendly.events["EV2"]["uri"]) is None

    async def test_unreadable_invitee_body_skips_only_that_event(self, db, calendly, fake_calendly, seed_credential):
        seed_credential()
        for i in range(5):
            fake_calendly.add_event(f"EV{i}")
        fake_calendly.invitee_responses["EV1"] = httpx.Response(
            200, text="<html>gateway</html>", headers={"Content-Type": "text/html"}
        )

        result = await AppointmentSyncService(db, calendly).sync("user-1")

        assert result.synced == 4
        assert result.count == 5
        assert _count(db) == 4
        assert AppointmentRepository.get_by_event_uri(db, fake_calendly.events["EV1"]["uri"]) is None

    async def test_malformed_invitee_skips_only_that_event(self, db, calendly, fake_calendly, seed_credential):
        seed_credential()
        for i in range(3):
            fake_calendly.add_event(f"EV{i}")
        fake_calendly.invitees["EV2"] = ["not-an-invitee"]

        result = await AppointmentSyncService(db, calendly).sync("user-1")

        assert result.synced == 2
        assert AppointmentRepository.get_by_event_uri(db, fake_calendly.events["EV2"]["uri"]) is None

    async def test_disconnect_during_refresh_aborts_sweep(self, db, calendly, fake_calendly, seed_credential):
        seed_credential(expires_in=30)
        fake_calendly.add_event("EV1")
        fake_calendly.on_token_request = lambda request: CredentialRepository.delete(db, "user-1")

        with pytest.raises(NotConnected):
            await AppointmentSyncService(db, calendly).sync("user-1")

        assert CredentialRepository.get(db, "user-1") is None
        assert _count(db) == 0

    async def test_second_sweep_adds_no_rows(self, db, calendly, fake_calendly, seed_credential):
        seed_credential()
        for i in range(3):
            fake_calendly.add_event(f"EV{i}")
        service = AppointmentSyncService(db, calendly)

        await service.sync("user-1")
        before = {row.event_uri: (row.id, row.created_at) for row in AppointmentRepository.list_for_user(db, "user-1")}
        result = await service.sync("user-1")
        db.expire_all()
        after = {row.event_uri: (row.id, row.created_at) for row in AppointmentRepository.list_for_user(db, "user-1")}

        assert result.synced == 3
        assert after == before

    async def test_canceled_event_detected_by_sweep(self, db, calendly, fake_calendly, seed_credential):
        seed_credential()
        event_uri = fake_calendly.add_event("EV1")
        service = AppointmentSyncService(db, calendly)
        await service.sync("user-1")

        fake_calendly.events["EV1"]["status"] = "canceled"
        await service.sync("user-1")
        db.expire_all()

        assert AppointmentRepository.get_by_event_uri(db, event_uri).status == "canceled"

    async def test_sweep_keeps_stored_webhook_payload(self, db, calendly, fake_calendly, seed_credential):
        from appointment_sync.domain.appointments.schemas import AppointmentCandidate

        seed_credential()
        event_uri = fake_calendly.add_event("EV1")
        AppointmentRepository.reconcile(
            db,
            AppointmentCandidate(user_id="user-1", event_uri=event_uri, raw_payload={"event": "invitee.created"}),
        )

        await AppointmentSyncService(db, calendly).sync("user-1")
        db.expire_all()

        row = AppointmentRepository.get_by_event_uri(db, event_uri)
        assert row.raw_payload == {"event": "invitee.created"}
        assert row.invitee_email == "EV1@example.com"

    async def test_identity_resolved_lazily_and_persisted(self, db, calendly, fake_calendly, seed_credential):
        seed_credential(with_identity=False)
        fake_calendly.add_event("EV1")

        await AppointmentSyncService(db, calendly).sync("user-1")

        stored = CredentialRepository.get(db, "user-1")
        assert stored.calendly_user_uri == fake_calendly.user_uri
        assert stored.calendly_organization_uri == fake_calendly.org_uri
        assert stored.scheduling_url == "https://calendly.com/host"
        assert len(fake_calendly.requests_to("/users/me")) == 1

    async def test_stored_identity_skips_profile_lookup(self, db, calendly, fake_calendly, seed_credential):
        seed_credential()

        await AppointmentSyncService(db, calendly).sync("user-1")

        assert fake_calendly.requests_to("/users/me") == []

    async def test_listing_is_scoped_to_user_within_window(self, db, calendly, fake_calendly, seed_credential):
        seed_credential()
        now = utcnow()

        await AppointmentSyncService(db, calendly).sync("user-1")

        (request,) = fake_calendly.requests_to("/scheduled_events")
        params = request.url.params
        assert params["user"] == fake_calendly.user_uri
        assert "organization" not in params
        assert params["count"] == "100"
        start = parse_provider_time(params["min_start_time"])
        end = parse_provider_time(params["max_start_time"])
        assert abs((now - timedelta(hours=24)) - start) < timedelta(minutes=1)
        assert abs((now + timedelta(days=90)) - end) < timedelta(minutes=1)

    async def test_listing_falls_back_to_organization(self, db, calendly, fake_calendly, seed_credential):
        seed_credential(with_identity=False)
        fake_calendly.identity = {"current_organization": fake_calendly.org_uri}

        await AppointmentSyncService(db, calendly).sync("user-1")

        (request,) = fake_calendly.requests_to("/scheduled_events")
        assert request.url.params["organization"] == fake_calendly.org_uri
        assert "user" not in request.url.params

    async def test_not_connected(self, db, calendly):
        with pytest.raises(NotConnected):
            await AppointmentSyncService(db, calendly).sync("user-1")

    async def test_missing_identity(self, db, calendly, fake_calendly, seed_credential):
        seed_credential(with_identity=False)
        fake_calendly.identity = {"email": "host@example.com"}

        with pytest.raises(MissingProviderIdentity):
            await AppointmentSyncService(db, calendly).sync("user-1")

    async def test_profile_lookup_failure_without_identity(self, db, calendly, fake_calendly, seed_credential):
        seed_credential(with_identity=False)
        fake_calendly.identity_status = 401

        with pytest.raises(ProviderRequestFailed):
            await AppointmentSyncService(db, calendly).sync("user-1")


class TestSweepCancellation:
    async def test_cancel_signal_stops_between_events(self, db, calendly, fake_calendly, seed_credential):
        seed_credential()
        for i in range(5):
            fake_calendly.add_event(f"EV{i}")
        cancel = asyncio.Event()

        def cancel_after_third(uuid: str):
            if uuid == "EV2":
                cancel.set()

        fake_calendly.on_invitee_fetch = cancel_after_third

        with pytest.raises(SyncCancelled) as exc_info:
            await AppointmentSyncService(db, calendly).sync("user-1", cancel_event=cancel)

        assert exc_info.value.processed == 3
        assert _count(db) == 3

    async def test_cancel_before_start_writes_nothing(self, db, calendly, fake_calendly, seed_credential):
        seed_credential()
        fake_calendly.add_event("EV1")
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(SyncCancelled) as exc_info:
            await AppointmentSyncService(db, calendly).sync("user-1", cancel_event=cancel)

        assert exc_info.value.processed == 0
        assert _count(db) == 0


class TestConnectThenSweep:
    async def test_fresh_connection_resolves_identity_and_converges(self, db, calendly, fake_calendly):
        from appointment_sync.domain.credentials.service import CredentialService

        await CredentialService(db, calendly).connect("user-42", "abc123")
        assert CredentialRepository.get(db, "user-42").calendly_user_uri is None
        for i in range(4):
            fake_calendly.add_event(f"EV{i}")
        service = AppointmentSyncService(db, calendly)

        first = await service.sync("user-42")
        rows_after_first = {
            row.event_uri: (row.id, row.status) for row in AppointmentRepository.list_for_user(db, "user-42")
        }
        second = await service.sync("user-42")
        db.expire_all()
        rows_after_second = {
            row.event_uri: (row.id, row.status) for row in AppointmentRepository.list_for_user(db, "user-42")
        }

        assert CredentialRepository.get(db, "user-42").calendly_user_uri == fake_calendly.user_uri
        assert first.synced == 4
        assert second.synced == 4
        assert rows_after_second == rows_after_first
        assert len(fake_calendly.requests_to("/users/me")) == 1
