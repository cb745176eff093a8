"""
Web Push Notification Service
Stores browser push subscriptions and delivers VAPID-signed notifications
"""

import base64
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from pywebpush import WebPushException, webpush
from requests import RequestException
from sqlalchemy.orm import Session

from ..config import VAPID_EMAIL, VAPID_PRIVATE_KEY, VAPID_PUBLIC_KEY
from ..models import Agendamento, Usuario
from ..models_push import PushSubscription, ScheduledNotification
from ..shared.dates import business_to_utc
from .push_templates import create_notification_from_template

logger = logging.getLogger(__name__)

# Push services answer these for subscriptions that no longer exist
GONE_STATUS_CODES = (404, 410)


@dataclass
class PushSettings:
    public_key: Optional[str] = None
    private_key: Optional[str] = None
    subject: str = "mailto:admin@barbearia.com"

    @classmethod
    def from_env(cls) -> "PushSettings":
        return cls(public_key=VAPID_PUBLIC_KEY, private_key=VAPID_PRIVATE_KEY, subject=VAPID_EMAIL)

    @property
    def configured(self) -> bool:
        return bool(self.public_key and self.private_key)


@dataclass
class PushResult:
    success: bool
    sent_count: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"success": self.success, "sentCount": self.sent_count}
        if self.error:
            data["error"] = self.error
        return data


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


class PushNotificationService:
    def __init__(
        self,
        db: Session,
        settings: Optional[PushSettings] = None,
        sender: Callable = webpush,
    ):
        self.db = db
        self.settings = settings or PushSettings.from_env()
        self.sender = sender

    def subscribe(self, user_id: str, endpoint: str, p256dh: str, auth: str) -> PushSubscription:
        """Upsert by (user_id, endpoint)"""
        subscription = (
            self.db.query(PushSubscription)
            .filter(PushSubscription.user_id == user_id, PushSubscription.endpoint == endpoint)
            .first()
        )
        if subscription:
            subscription.p256dh = p256dh
            subscription.auth = auth
        else:
            subscription = PushSubscription(user_id=user_id, endpoint=endpoint, p256dh=p256dh, auth=auth)
            self.db.add(subscription)
        self.db.commit()
        self.db.refresh(subscription)
        logger.info(f"✅ Push subscription saved for user {user_id}")
        return subscription

    def unsubscribe(self, user_id: str, endpoint: Optional[str] = None) -> int:
        """Remove one endpoint, or every subscription of the user when endpoint is None"""
        query = self.db.query(PushSubscription).filter(PushSubscription.user_id == user_id)
        if endpoint:
            query = query.filter(PushSubscription.endpoint == endpoint)
        removed = query.delete(synchronize_session=False)
        self.db.commit()
        return removed

    def send_to_user(self, user_id: str, payload: dict) -> PushResult:
        if not self.settings.configured:
            return PushResult(False, error="VAPID keys not configured")

        subscriptions = self.db.query(PushSubscription).filter(PushSubscription.user_id == user_id).all()
        if not subscriptions:
            return PushResult(False, error="No subscriptions found for user")

        data = json.dumps(payload)
        sent_count = 0
        for subscription in subscriptions:
            try:
                self.sender(
                    subscription_info={
                        "endpoint": subscription.endpoint,
                        "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
                    },
                    data=data,
                    vapid_private_key=self.settings.private_key,
                    vapid_claims={"sub": self.settings.subject},
                )
                sent_count += 1
            except WebPushException as e:
                status_code = e.response.status_code if e.response is not None else None
                if status_code in GONE_STATUS_CODES:
                    logger.info(f"🧹 Removing expired push subscription {subscription.id}")
                    self.db.delete(subscription)
                else:
                    logger.error(f"❌ Push delivery failed for subscription {subscription.id}: {e}")
            except (RequestException, ValueError) as e:
                # Unreachable push service or malformed subscription keys
                logger.error(f"❌ Push delivery failed for subscription {subscription.id}: {e}")

        self.db.commit()
        if sent_count == 0:
            return PushResult(False, error="Failed to deliver to any subscription")
        return PushResult(True, sent_count)

    def send_to_users(self, user_ids: list[str], payload: dict) -> PushResult:
        total = 0
        for user_id in user_ids:
            total += self.send_to_user(user_id, payload).sent_count
        return PushResult(total > 0, total, None if total else "No notifications delivered")

    def send_to_role(self, role: str, payload: dict, barbearia_id: Optional[str] = None) -> PushResult:
        query = self.db.query(Usuario.id).filter(Usuario.tipo == role)
        if barbearia_id:
            query = query.filter(Usuario.barbearia_id == barbearia_id)
        user_ids = [user_id for (user_id,) in query.all()]
        if not user_ids:
            return PushResult(False, error=f"No users with role '{role}'")
        return self.send_to_users(user_ids, payload)

    def schedule_notification(self, user_id: str, payload: dict, scheduled_for: datetime) -> ScheduledNotification:
        """scheduled_for is naive UTC"""
        notification = ScheduledNotification(
            user_id=user_id,
            title=payload.get("title", ""),
            body=payload.get("body", ""),
            payload=payload,
            scheduled_for=scheduled_for,
        )
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)
        return notification

    def cancel_scheduled_notification(self, notification_id: str) -> bool:
        """Only notifications not yet sent can be cancelled"""
        removed = (
            self.db.query(ScheduledNotification)
            .filter(ScheduledNotification.id == notification_id, ScheduledNotification.sent.is_(False))
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return removed > 0

    def get_scheduled_notifications(self, user_id: str) -> list[ScheduledNotification]:
        return (
            self.db.query(ScheduledNotification)
            .filter(ScheduledNotification.user_id == user_id, ScheduledNotification.sent.is_(False))
            .order_by(ScheduledNotification.scheduled_for)
            .all()
        )

    def process_scheduled_notifications(self) -> int:
        """Send every due notification and mark it sent. Returns how many were processed."""
        now = datetime.utcnow()
        due = (
            self.db.query(ScheduledNotification)
            .filter(ScheduledNotification.scheduled_for <= now, ScheduledNotification.sent.is_(False))
            .order_by(ScheduledNotification.scheduled_for)
            .all()
        )
        for notification in due:
            result = self.send_to_user(notification.user_id, notification.payload)
            if not result.success:
                logger.warning(f"⚠️ Scheduled notification {notification.id} not delivered: {result.error}")
            notification.sent = True
            notification.sent_at = now
            self.db.commit()

        if due:
            logger.info(f"📬 Processed {len(due)} scheduled notifications")
        return len(due)

    def get_statistics(self) -> dict:
        since = datetime.utcnow() - timedelta(days=30)
        return {
            "totalSubscriptions": self.db.query(PushSubscription).count(),
            "scheduledNotifications": self.db.query(ScheduledNotification)
            .filter(ScheduledNotification.sent.is_(False))
            .count(),
            "sentLast30Days": self.db.query(ScheduledNotification)
            .filter(ScheduledNotification.sent.is_(True), ScheduledNotification.sent_at >= since)
            .count(),
            "lastUpdated": datetime.utcnow().isoformat(),
        }

    @staticmethod
    def generate_vapid_keys() -> dict:
        """New P-256 key pair encoded the way browsers and pywebpush expect"""
        private_key = ec.generate_private_key(ec.SECP256R1())
        public_bytes = private_key.public_key().public_bytes(
            serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
        )
        private_bytes = private_key.private_numbers().private_value.to_bytes(32, "big")
        return {"publicKey": _b64url(public_bytes), "privateKey": _b64url(private_bytes)}

    # ------------------------------------------------------------------
    # Template helpers
    # ------------------------------------------------------------------

    def send_template_notification(
        self, user_id: str, template_id: str, variables: Optional[dict] = None
    ) -> PushResult:
        payload = create_notification_from_template(template_id, variables)
        if payload is None:
            return PushResult(False, error=f"Template not found: {template_id}")
        return self.send_to_user(user_id, payload)

    @staticmethod
    def _appointment_variables(appointment: Agendamento) -> dict:
        return {
            "date": appointment.data_hora.strftime("%d/%m/%Y"),
            "time": appointment.data_hora.strftime("%H:%M"),
            "barber": appointment.barbeiro.nome if appointment.barbeiro else "",
        }

    def send_appointment_confirmation(self, appointment: Agendamento) -> PushResult:
        return self.send_template_notification(
            appointment.cliente_id, "appointment-confirmation", self._appointment_variables(appointment)
        )

    def schedule_appointment_reminder(
        self, appointment: Agendamento, hours_before: int = 2
    ) -> Optional[ScheduledNotification]:
        payload = create_notification_from_template(
            "appointment-reminder", self._appointment_variables(appointment)
        )
        payload["data"]["appointmentId"] = appointment.id
        remind_at = business_to_utc(appointment.data_hora) - timedelta(hours=hours_before)
        if remind_at <= datetime.utcnow():
            return None
        return self.schedule_notification(appointment.cliente_id, payload, remind_at)

    def send_appointment_cancellation(self, appointment: Agendamento) -> PushResult:
        # Drop pending reminders for this client before notifying
        for pending in self.get_scheduled_notifications(appointment.cliente_id):
            if (pending.payload.get("data") or {}).get("appointmentId") == appointment.id:
                self.db.delete(pending)
        self.db.commit()
        return self.send_template_notification(
            appointment.cliente_id, "appointment-cancelled", self._appointment_variables(appointment)
        )

    def send_promotional_offer(
        self, user_ids: list[str], discount: int, service: str, expiry: str
    ) -> PushResult:
        payload = create_notification_from_template(
            "promotion-discount", {"discount": discount, "service": service, "expiry": expiry}
        )
        return self.send_to_users(user_ids, payload)

    def send_birthday_offer(self, user_id: str) -> PushResult:
        return self.send_template_notification(user_id, "birthday-special")

    def request_feedback(self, user_id: str) -> PushResult:
        return self.send_template_notification(user_id, "feedback-request")
