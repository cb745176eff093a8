"""
Tests for Web Push: template rendering, delivery and expired subscription cleanup,
scheduled notifications and appointment reminders
"""

import json
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
import requests
from pywebpush import WebPushException

from barbershop.models_push import PushSubscription, ScheduledNotification
from barbershop.services.push_notification_service import PushNotificationService, PushSettings
from barbershop.services.push_templates import create_notification_from_template, get_templates, render

SETTINGS = PushSettings(public_key="public-key", private_key="private-key", subject="mailto:test@example.com")


@pytest.fixture
def sender():
    return Mock()


@pytest.fixture
def push(db, sender):
    return PushNotificationService(db, settings=SETTINGS, sender=sender)


@pytest.fixture
def subscribed(push, client_user):
    return push.subscribe(client_user.id, "https://push.example.com/sub/1", "p256dh-key", "auth-key")


class TestTemplates:
    def test_render_keeps_unknown_placeholders(self):
        assert render("{discount}% em {service}", {"discount": 20}) == "20% em {service}"

    def test_create_from_template(self):
        payload = create_notification_from_template(
            "appointment-confirmation", {"date": "10/05/2030", "time": "14:00", "barber": "Carlos"}
        )
        assert payload["body"] == "Seu agendamento foi confirmado para 10/05/2030 às 14:00 com Carlos"
        assert payload["tag"] == "appointment-confirmation"
        assert payload["requireInteraction"] is True
        assert payload["data"]["templateId"] == "appointment-confirmation"

    def test_unknown_template(self):
        assert create_notification_from_template("nope") is None

    def test_filter_by_category(self):
        templates = get_templates("appointment")
        assert templates
        assert all(t["category"] == "appointment" for t in templates)


class TestDelivery:
    def test_not_configured(self, db, client_user):
        result = PushNotificationService(db, settings=PushSettings()).send_to_user(client_user.id, {"title": "x"})
        assert result.success is False
        assert "VAPID" in result.error

    def test_no_subscriptions(self, push, client_user):
        result = push.send_to_user(client_user.id, {"title": "x"})
        assert result.to_dict() == {"success": False, "sentCount": 0, "error": "No subscriptions found for user"}

    def test_sends_signed_payload(self, push, sender, subscribed, client_user):
        result = push.send_to_user(client_user.id, {"title": "Olá", "body": "Teste"})

        assert result.success is True
        assert result.sent_count == 1
        kwargs = sender.call_args.kwargs
        assert kwargs["subscription_info"]["endpoint"] == subscribed.endpoint
        assert kwargs["subscription_info"]["keys"] == {"p256dh": "p256dh-key", "auth": "auth-key"}
        assert json.loads(kwargs["data"])["title"] == "Olá"
        assert kwargs["vapid_private_key"] == "private-key"
        assert kwargs["vapid_claims"] == {"sub": "mailto:test@example.com"}

    def test_gone_subscription_is_removed(self, db, push, sender, subscribed, client_user):
        sender.side_effect = WebPushException("Gone", response=SimpleNamespace(status_code=410))

        result = push.send_to_user(client_user.id, {"title": "x"})

        assert result.success is False
        assert db.query(PushSubscription).count() == 0

    def test_other_failures_keep_subscription(self, db, push, sender, subscribed, client_user):
        sender.side_effect = WebPushException("Server error", response=SimpleNamespace(status_code=500))

        push.send_to_user(client_user.id, {"title": "x"})

        assert db.query(PushSubscription).count() == 1

    @pytest.mark.parametrize(
        "error", [requests.exceptions.ConnectionError("DNS failure"), ValueError("Incorrect padding")]
    )
    def test_transport_and_key_errors_keep_subscription(self, db, push, sender, subscribed, client_user, error):
        sender.side_effect = error

        result = push.send_to_user(client_user.id, {"title": "x"})

        assert result.success is False
        assert db.query(PushSubscription).count() == 1

    def test_subscribe_upserts_by_endpoint(self, db, push, subscribed, client_user):
        push.subscribe(client_user.id, subscribed.endpoint, "new-p256dh", "new-auth")

        rows = db.query(PushSubscription).all()
        assert len(rows) == 1
        assert rows[0].p256dh == "new-p256dh"

    def test_send_to_role_scoped_to_shop(self, push, sender, admin_user):
        push.subscribe(admin_user.id, "https://push.example.com/admin", "k", "a")

        assert push.send_to_role("admin", {"title": "x"}, admin_user.barbearia_id).sent_count == 1
        assert push.send_to_role("admin", {"title": "x"}, "other-shop").success is False

    def test_generate_vapid_keys(self):
        keys = PushNotificationService.generate_vapid_keys()
        assert len(keys["publicKey"]) == 87
        assert len(keys["privateKey"]) == 43


class TestScheduledNotifications:
    def test_due_notifications_are_sent_once(self, db, push, sender, subscribed, client_user):
        push.schedule_notification(client_user.id, {"title": "Agora"}, datetime.utcnow() - timedelta(minutes=1))
        push.schedule_notification(client_user.id, {"title": "Depois"}, datetime.utcnow() + timedelta(hours=1))

        assert push.process_scheduled_notifications() == 1
        assert push.process_scheduled_notifications() == 0
        assert sender.call_count == 1

        pending = push.get_scheduled_notifications(client_user.id)
        assert [n.title for n in pending] == ["Depois"]

    def test_unreachable_push_service_does_not_block_queue(self, db, push, sender, subscribed, client_user):
        sender.side_effect = requests.exceptions.ConnectionError("DNS failure")
        push.schedule_notification(client_user.id, {"title": "Primeira"}, datetime.utcnow() - timedelta(minutes=2))
        push.schedule_notification(client_user.id, {"title": "Segunda"}, datetime.utcnow() - timedelta(minutes=1))

        assert push.process_scheduled_notifications() == 2
        assert push.get_scheduled_notifications(client_user.id) == []

    def test_cancel_only_unsent(self, db, push, client_user):
        notification = push.schedule_notification(
            client_user.id, {"title": "x"}, datetime.utcnow() - timedelta(minutes=1)
        )
        push.process_scheduled_notifications()

        assert push.cancel_scheduled_notification(notification.id) is False
        assert push.cancel_scheduled_notification("missing") is False

    def test_reminder_scheduled_two_hours_before(self, db, push, make_appointment, future_day):
        appointment = make_appointment(datetime.combine(future_day, datetime.min.time()).replace(hour=14))

        reminder = push.schedule_appointment_reminder(appointment)

        assert reminder is not None
        # 14:00 in Sao Paulo is 17:00 UTC
        assert reminder.scheduled_for == datetime.combine(future_day, datetime.min.time()).replace(hour=15)
        assert reminder.payload["data"]["appointmentId"] == appointment.id

    def test_cancellation_drops_only_that_reminder(self, db, push, make_appointment, future_day):
        day = datetime.combine(future_day, datetime.min.time())
        first = make_appointment(day.replace(hour=10))
        second = make_appointment(day.replace(hour=15))
        push.schedule_appointment_reminder(first)
        push.schedule_appointment_reminder(second)

        first.status = "cancelado"
        db.commit()
        push.send_appointment_cancellation(first)

        remaining = db.query(ScheduledNotification).all()
        assert [n.payload["data"]["appointmentId"] for n in remaining] == [second.id]


class TestPushRoutes:
    def test_vapid_key_not_configured(self, api):
        assert api.get("/api/push-notifications/vapid-key").status_code == 500

    def test_subscribe_and_unsubscribe(self, api, db, client_user, headers_for):
        body = {
            "subscription": {
                "endpoint": "https://push.example.com/sub/9",
                "keys": {"p256dh": "k", "auth": "a"},
            }
        }
        response = api.post("/api/push-notifications/subscribe", json=body, headers=headers_for(client_user))
        assert response.status_code == 200
        assert response.json()["success"] is True

        response = api.post("/api/push-notifications/unsubscribe", json={}, headers=headers_for(client_user))
        assert response.json()["removed"] == 1

    def test_unknown_template_returns_404(self, api, admin_user, headers_for):
        response = api.post(
            "/api/push-notifications/template",
            json={"userId": admin_user.id, "templateId": "nope"},
            headers=headers_for(admin_user),
        )
        assert response.status_code == 404

    def test_client_cannot_read_others_schedule(self, api, client_user, admin_user, headers_for):
        response = api.get(f"/api/push-notifications/scheduled/{admin_user.id}", headers=headers_for(client_user))
        assert response.status_code == 403

    def test_schedule_and_cancel(self, api, client_user, admin_user, headers_for):
        response = api.post(
            "/api/push-notifications/schedule",
            json={
                "userId": client_user.id,
                "notification": {"title": "Promo", "body": "Amanhã"},
                "scheduledFor": "2030-01-01T12:00:00-03:00",
            },
            headers=headers_for(admin_user),
        )
        assert response.status_code == 200
        assert response.json()["scheduledFor"] == "2030-01-01T15:00:00"

        notification_id = response.json()["id"]
        listed = api.get(f"/api/push-notifications/scheduled/{client_user.id}", headers=headers_for(client_user))
        assert [n["id"] for n in listed.json()] == [notification_id]

        cancel = api.delete(f"/api/push-notifications/cancel/{notification_id}", headers=headers_for(admin_user))
        assert cancel.status_code == 200
        again = api.delete(f"/api/push-notifications/cancel/{notification_id}", headers=headers_for(admin_user))
        assert again.status_code == 404
