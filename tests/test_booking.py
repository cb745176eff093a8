"""
Tests for public booking: availability grid, overlap rejection and cancellation
"""

from datetime import datetime, timedelta
from unittest.mock import Mock, patch

import pytest
from fastapi import HTTPException

from barbershop.domain.booking.repository import BookingRepository
from barbershop.domain.booking.schemas import AppointmentCreate
from barbershop.domain.booking.service import BookingService, overlaps
from barbershop.exceptions import SlotUnavailableError
from barbershop.models import Agendamento, Usuario
from barbershop.models_push import ScheduledNotification


def at(day, hour, minute=0):
    return datetime.combine(day, datetime.min.time()).replace(hour=hour, minute=minute)


class TestOverlaps:
    def test_half_open_intervals(self):
        day = datetime(2030, 5, 10).date()
        assert overlaps(at(day, 10), at(day, 11), at(day, 10, 30), at(day, 11, 30))
        assert not overlaps(at(day, 10), at(day, 11), at(day, 11), at(day, 12))


class TestAvailableSlots:
    """Free start times on the 30-minute grid"""

    def test_full_day_when_barber_is_free(self, db, barber, future_day):
        slots = BookingService(db).get_available_slots(barber.id, future_day, 30)
        assert slots[0] == "08:00"
        assert slots[-1] == "17:30"
        assert len(slots) == 20

    def test_busy_time_is_excluded(self, db, barber, make_appointment, future_day):
        make_appointment(at(future_day, 10))

        slots = BookingService(db).get_available_slots(barber.id, future_day, 30)

        assert "10:00" not in slots
        assert "09:30" in slots
        assert "10:30" in slots

    def test_longer_duration_blocks_preceding_slot(self, db, barber, make_appointment, future_day):
        make_appointment(at(future_day, 10))

        slots = BookingService(db).get_available_slots(barber.id, future_day, 60)

        assert "09:00" in slots
        assert "09:30" not in slots
        assert "17:00" in slots
        assert "17:30" not in slots

    def test_cancelled_appointment_frees_slot(self, db, barber, make_appointment, future_day):
        make_appointment(at(future_day, 10), status="cancelado")
        assert "10:00" in BookingService(db).get_available_slots(barber.id, future_day, 30)

    def test_appointment_from_previous_day_still_blocks(self, db, barber, make_appointment, future_day):
        make_appointment(at(future_day - timedelta(days=1), 23), minutes=600)

        slots = BookingService(db).get_available_slots(barber.id, future_day, 30)

        assert slots[0] == "09:00"

    def test_unknown_barber(self, db, future_day):
        with pytest.raises(HTTPException) as exc:
            BookingService(db).get_available_slots("missing", future_day, 30)
        assert exc.value.status_code == 404

    def test_slots_endpoint(self, api, barber, make_appointment, future_day):
        make_appointment(at(future_day, 8))

        response = api.get(
            f"/api/booking/barbers/{barber.id}/slots",
            params={"date": future_day.isoformat(), "duration": 30},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["barbeiroId"] == barber.id
        assert body["horarios"][0] == "08:30"


class TestCreateAppointment:
    def _payload(self, tenant, barber, services, start):
        return {
            "barbeariaId": tenant.id,
            "barbeiroId": barber.id,
            "servicoIds": [s.id for s in services],
            "dataHora": start.isoformat(),
        }

    def test_books_and_prices_services(self, db, tenant, barber, services, client_user, future_day):
        data = AppointmentCreate(**self._payload(tenant, barber, services, at(future_day, 15)))

        appointment = BookingService(db).create_appointment(data, client_user)

        assert appointment.status == "agendado"
        assert appointment.valor_total == pytest.approx(65.5)
        assert appointment.data_fim == at(future_day, 16)
        assert sorted(appointment.nomes_servicos) == ["Barba", "Corte"]

    def test_overlap_raises(self, db, tenant, barber, services, client_user, make_appointment, future_day):
        make_appointment(at(future_day, 15, 30))
        data = AppointmentCreate(**self._payload(tenant, barber, services, at(future_day, 15)))

        with pytest.raises(SlotUnavailableError):
            BookingService(db).create_appointment(data, client_user)

    def test_barber_is_locked_before_checking_availability(
        self, db, tenant, barber, services, client_user, future_day
    ):
        data = AppointmentCreate(**self._payload(tenant, barber, services, at(future_day, 15)))
        calls = Mock()

        with patch.object(
            BookingRepository, "lock_barber", wraps=BookingRepository.lock_barber
        ) as lock, patch.object(
            BookingRepository, "get_barber_appointments", wraps=BookingRepository.get_barber_appointments
        ) as busy:
            calls.attach_mock(lock, "lock")
            calls.attach_mock(busy, "busy")
            BookingService(db).create_appointment(data, client_user)

        assert [name for name, _args, _kwargs in calls.mock_calls] == ["lock", "busy"]
        assert lock.call_args.args == (db, barber.id)

    def test_past_time_rejected(self, db, tenant, barber, services, client_user):
        data = AppointmentCreate(**self._payload(tenant, barber, services, datetime(2020, 1, 1, 10)))

        with pytest.raises(HTTPException) as exc:
            BookingService(db).create_appointment(data, client_user)
        assert exc.value.status_code == 400

    def test_service_from_another_shop_rejected(self, db, tenant, barber, client_user, future_day):
        payload = {
            "barbeariaId": tenant.id,
            "barbeiroId": barber.id,
            "servicoIds": ["not-a-service"],
            "dataHora": at(future_day, 15).isoformat(),
        }
        with pytest.raises(HTTPException) as exc:
            BookingService(db).create_appointment(AppointmentCreate(**payload), client_user)
        assert exc.value.status_code == 400

    def test_api_returns_201_and_schedules_reminder(
        self, api, db, tenant, barber, services, client_user, future_day, headers_for
    ):
        response = api.post(
            "/api/booking/appointments",
            json=self._payload(tenant, barber, services[:1], at(future_day, 11)),
            headers=headers_for(client_user),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "agendado"
        assert body["valorTotal"] == 40.0

        reminders = db.query(ScheduledNotification).filter_by(user_id=client_user.id).all()
        assert [r.payload["data"]["appointmentId"] for r in reminders] == [body["id"]]

    def test_api_overlap_returns_409(
        self, api, tenant, barber, services, client_user, make_appointment, future_day, headers_for
    ):
        make_appointment(at(future_day, 11))

        response = api.post(
            "/api/booking/appointments",
            json=self._payload(tenant, barber, services[:1], at(future_day, 11)),
            headers=headers_for(client_user),
        )
        assert response.status_code == 409

    def test_api_requires_authentication(self, api, tenant, barber, services, future_day):
        response = api.post(
            "/api/booking/appointments", json=self._payload(tenant, barber, services, at(future_day, 11))
        )
        assert response.status_code in (401, 403)


class TestCancelAppointment:
    def test_client_cancels_own_appointment(self, api, db, client_user, make_appointment, future_day, headers_for):
        appointment = make_appointment(at(future_day, 9))

        response = api.post(
            f"/api/booking/appointments/{appointment.id}/cancel",
            json={"motivo": "Imprevisto"},
            headers=headers_for(client_user),
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelado"
        db.expire_all()
        stored = db.query(Agendamento).get(appointment.id)
        assert "Imprevisto" in stored.observacoes

    def test_cannot_cancel_twice(self, db, client_user, make_appointment, future_day):
        appointment = make_appointment(at(future_day, 9), status="cancelado")

        with pytest.raises(HTTPException) as exc:
            BookingService(db).cancel_appointment(appointment.id, client_user)
        assert exc.value.status_code == 400

    def test_other_client_gets_404(self, db, make_appointment, future_day, admin_user):
        stranger = Usuario(auth_id="auth-stranger", email="x@example.com", nome="X", tipo="cliente")
        db.add(stranger)
        db.commit()
        appointment = make_appointment(at(future_day, 9))

        with pytest.raises(HTTPException) as exc:
            BookingService(db).cancel_appointment(appointment.id, stranger)
        assert exc.value.status_code == 404

    def test_shop_admin_may_cancel(self, db, make_appointment, future_day, admin_user):
        appointment = make_appointment(at(future_day, 9))
        cancelled = BookingService(db).cancel_appointment(appointment.id, admin_user)
        assert cancelled.status == "cancelado"
