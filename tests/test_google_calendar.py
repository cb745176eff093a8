"""
Tests for the Google Calendar sync: conflict detection, stale event updates,
token refresh failures and the per-shop sync lease
"""

import json
from datetime import datetime, timedelta

import httpx
import pytest

from barbershop.exceptions import SyncInProgressError
from barbershop.models_integrations import CalendarSyncLease, LogIntegracao
from barbershop.services.google_calendar_service import (
    CalendarSettings,
    GoogleCalendarService,
    SyncConflict,
)
from barbershop.services.integration_config import save_integration_config
from barbershop.shared.dates import ms_epoch, to_rfc3339


def _event(event_id, start, end, summary="Dentista", private=None):
    event = {
        "id": event_id,
        "summary": summary,
        "start": {"dateTime": to_rfc3339(start)},
        "end": {"dateTime": to_rfc3339(end)},
    }
    if private is not None:
        event["extendedProperties"] = {"private": private}
    return event


def _settings(**overrides):
    values = {"client_id": "cid", "client_secret": "secret", "access_token": "tok", "refresh_token": "ref"}
    values.update(overrides)
    return CalendarSettings(**values)


class FakeCalendar:
    """Records requests and answers like the Calendar API"""

    def __init__(self, events=None, create_status=200, token_status=200):
        self.events = events or []
        self.create_status = create_status
        self.token_status = token_status
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "oauth2.googleapis.com":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": "new-token", "expires_in": 3600})
        if request.method == "GET" and request.url.path.endswith("/events"):
            return httpx.Response(200, json={"items": self.events})
        if request.method == "POST":
            if self.create_status != 200:
                return httpx.Response(self.create_status, json={"error": "unauthorized"})
            return httpx.Response(200, json={"id": "evt-new"})
        if request.method == "PUT":
            return httpx.Response(200, json={"id": request.url.path.rsplit("/", 1)[-1]})
        if request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(404)

    def by_method(self, method):
        return [r for r in self.requests if r.method == method and r.url.host == "www.googleapis.com"]


@pytest.fixture
def calendar_service(db, tenant):
    def _make(fake: FakeCalendar, **settings):
        return GoogleCalendarService(
            db, tenant.id, settings=_settings(**settings), transport=httpx.MockTransport(fake)
        )

    return _make


class TestConflictDetection:
    """Overlaps between external events and local appointments"""

    def test_external_event_overlapping_appointment(self, db, tenant, make_appointment, future_day):
        start = datetime.combine(future_day, datetime.min.time()).replace(hour=14, minute=15)
        appointment = make_appointment(start)
        service = GoogleCalendarService(db, tenant.id, settings=_settings())

        remote = _event("ext-1", start.replace(minute=0), start.replace(minute=30))
        conflicts = service.detect_conflicts(remote, [appointment])

        assert len(conflicts) == 1
        assert conflicts[0].type == "time_overlap"
        assert conflicts[0].appointment_id == appointment.id
        assert conflicts[0].event_id == "ext-1"
        assert conflicts[0].remote_start == start.replace(minute=0)

    def test_system_event_never_conflicts(self, db, tenant, make_appointment, future_day):
        start = datetime.combine(future_day, datetime.min.time()).replace(hour=14, minute=15)
        appointment = make_appointment(start)
        service = GoogleCalendarService(db, tenant.id, settings=_settings())

        remote = _event(
            "ours-1",
            start.replace(minute=0),
            start.replace(minute=30),
            private={"barbeariaId": tenant.id, "agendamentoId": appointment.id},
        )
        assert service.detect_conflicts(remote, [appointment]) == []

    def test_adjacent_event_is_not_a_conflict(self, db, tenant, make_appointment, future_day):
        start = datetime.combine(future_day, datetime.min.time()).replace(hour=14)
        appointment = make_appointment(start)
        service = GoogleCalendarService(db, tenant.id, settings=_settings())

        remote = _event("ext-2", start + timedelta(minutes=30), start + timedelta(minutes=60))
        assert service.detect_conflicts(remote, [appointment]) == []


class TestSync:
    async def test_creates_missing_events_and_links_them(
        self, db, make_appointment, future_day, calendar_service
    ):
        appointment = make_appointment(datetime.combine(future_day, datetime.min.time()).replace(hour=10))
        fake = FakeCalendar()

        result = await calendar_service(fake).sync_with_local_appointments()

        assert result.success is True
        assert result.created == 1
        db.refresh(appointment)
        assert appointment.google_calendar_event_id == "evt-new"

        body = json.loads(fake.by_method("POST")[0].content)
        private = body["extendedProperties"]["private"]
        assert private["agendamentoId"] == appointment.id
        assert private["syncVersion"]

    async def test_stale_event_is_updated(self, db, tenant, make_appointment, future_day, calendar_service):
        start = datetime.combine(future_day, datetime.min.time()).replace(hour=10)
        appointment = make_appointment(start, google_calendar_event_id="evt-1")
        remote = _event(
            "evt-1",
            start,
            start + timedelta(minutes=30),
            private={"barbeariaId": tenant.id, "agendamentoId": appointment.id, "syncVersion": "1000"},
        )
        fake = FakeCalendar(events=[remote])

        result = await calendar_service(fake).sync_with_local_appointments()

        assert result.updated == 1
        assert result.created == 0
        assert result.conflicts == []
        assert fake.by_method("PUT")[0].url.path.endswith("/events/evt-1")

    async def test_fresh_event_is_left_alone(self, db, tenant, make_appointment, future_day, calendar_service):
        start = datetime.combine(future_day, datetime.min.time()).replace(hour=10)
        appointment = make_appointment(start, google_calendar_event_id="evt-1")
        remote = _event(
            "evt-1",
            start,
            start + timedelta(minutes=30),
            private={
                "barbeariaId": tenant.id,
                "agendamentoId": appointment.id,
                "syncVersion": str(ms_epoch() + 60_000),
            },
        )
        fake = FakeCalendar(events=[remote])

        result = await calendar_service(fake).sync_with_local_appointments()

        assert result.updated == 0
        assert fake.by_method("PUT") == []

    async def test_reports_conflicts_with_external_events(
        self, make_appointment, future_day, calendar_service
    ):
        start = datetime.combine(future_day, datetime.min.time()).replace(hour=14, minute=15)
        make_appointment(start)
        fake = FakeCalendar(events=[_event("ext-1", start.replace(minute=0), start.replace(minute=30))])

        result = await calendar_service(fake).sync_with_local_appointments()

        assert result.success is True
        assert len(result.conflicts) == 1
        assert result.to_dict()["conflicts"][0]["event_id"] == "ext-1"

    async def test_lease_is_released_after_sync(self, db, tenant, calendar_service):
        await calendar_service(FakeCalendar()).sync_with_local_appointments()
        assert db.query(CalendarSyncLease).filter_by(barbearia_id=tenant.id).first() is None

    async def test_concurrent_sync_is_rejected(self, db, tenant, calendar_service):
        db.add(
            CalendarSyncLease(
                barbearia_id=tenant.id, holder="other-worker", expires_at=datetime.utcnow() + timedelta(minutes=5)
            )
        )
        db.commit()

        with pytest.raises(SyncInProgressError):
            await calendar_service(FakeCalendar()).sync_with_local_appointments()

    async def test_expired_lease_is_taken_over(self, db, tenant, calendar_service):
        db.add(
            CalendarSyncLease(
                barbearia_id=tenant.id, holder="dead-worker", expires_at=datetime.utcnow() - timedelta(minutes=1)
            )
        )
        db.commit()

        result = await calendar_service(FakeCalendar()).sync_with_local_appointments()
        assert result.success is True


class TestTokenRefresh:
    async def test_failed_refresh_makes_create_event_fail(self, db, tenant, calendar_service):
        fake = FakeCalendar(create_status=401, token_status=400)
        service = calendar_service(fake)

        event_id = await service.create_event({"summary": "Corte - João"}, "ag-1")

        assert event_id is None
        errors = db.query(LogIntegracao).filter_by(tipo_integracao="google_calendar", status="erro").all()
        assert {log.acao for log in errors} >= {"refresh_token", "create_event"}

    async def test_expired_token_is_refreshed_on_initialize(self, db, tenant, calendar_service):
        fake = FakeCalendar()
        service = calendar_service(fake, token_expiry_date=ms_epoch() - 1000)

        await service.initialize()

        assert service.settings.access_token == "new-token"
        assert service.settings.token_expiry_date > ms_epoch()


class TestConflictResolution:
    async def test_keep_remote_cancels_appointment(self, db, tenant, make_appointment, future_day):
        start = datetime.combine(future_day, datetime.min.time()).replace(hour=14)
        appointment = make_appointment(start)
        service = GoogleCalendarService(db, tenant.id, settings=_settings())
        conflict = SyncConflict(
            appointment_id=appointment.id,
            event_id="ext-1",
            event_summary="Dentista",
            local_start=start,
            local_end=start + timedelta(minutes=30),
            remote_start=start,
            remote_end=start + timedelta(minutes=30),
        )

        assert await service.resolve_conflict(conflict, "keep_remote") is True
        db.refresh(appointment)
        assert appointment.status == "cancelado"
        assert "Dentista" in appointment.observacoes

    async def test_merge_moves_appointment_to_first_free_hour(self, db, tenant, make_appointment, future_day):
        start = datetime.combine(future_day, datetime.min.time()).replace(hour=14)
        appointment = make_appointment(start)
        service = GoogleCalendarService(db, tenant.id, settings=_settings())
        conflict = SyncConflict(
            appointment_id=appointment.id,
            event_id="ext-1",
            event_summary="Dentista",
            local_start=start,
            local_end=start + timedelta(minutes=30),
            remote_start=start,
            remote_end=start + timedelta(minutes=30),
        )

        assert await service.resolve_conflict(conflict, "merge") is True
        db.refresh(appointment)
        assert appointment.data_hora == start.replace(hour=9)
        assert appointment.data_fim == start.replace(hour=9, minute=30)

    async def test_unknown_resolution(self, db, tenant):
        service = GoogleCalendarService(db, tenant.id, settings=_settings())
        now = datetime(2030, 1, 1, 10)
        conflict = SyncConflict("a", "e", "", now, now, now, now)
        assert await service.resolve_conflict(conflict, "ignore") is False


class TestCalendarRoutes:
    def test_sync_requires_connected_calendar(self, api, admin_user, headers_for):
        response = api.post("/api/google-calendar/sync", headers=headers_for(admin_user))
        assert response.status_code == 400

    def test_sync_in_progress_returns_409(self, api, db, tenant, admin_user, headers_for):
        save_integration_config(db, "google_calendar", {"accessToken": "tok", "refreshToken": "ref"}, tenant.id)
        db.add(
            CalendarSyncLease(
                barbearia_id=tenant.id, holder="other-worker", expires_at=datetime.utcnow() + timedelta(minutes=5)
            )
        )
        db.commit()

        response = api.post("/api/google-calendar/sync", headers=headers_for(admin_user))
        assert response.status_code == 409

    def test_resolve_rejects_unknown_resolution(self, api, db, tenant, admin_user, headers_for):
        save_integration_config(db, "google_calendar", {"accessToken": "tok"}, tenant.id)
        conflict = {
            "appointment_id": "a",
            "event_id": "e",
            "local_start": "2030-01-01T10:00:00",
            "local_end": "2030-01-01T10:30:00",
            "remote_start": "2030-01-01T10:00:00",
            "remote_end": "2030-01-01T10:30:00",
        }
        response = api.post(
            "/api/google-calendar/conflicts/resolve",
            json={"conflict": conflict, "resolution": "ignore"},
            headers=headers_for(admin_user),
        )
        assert response.status_code == 400

    def test_auth_url_needs_oauth_client(self, api, admin_user, headers_for):
        response = api.get("/api/google/auth-url", headers=headers_for(admin_user))
        assert response.status_code == 500

    def test_client_cannot_sync(self, api, client_user, headers_for):
        response = api.post("/api/google-calendar/sync", headers=headers_for(client_user))
        assert response.status_code == 403
