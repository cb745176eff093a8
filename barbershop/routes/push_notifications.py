"""
Push Notification Routes
Browser subscriptions, direct/bulk/role sends, templates and scheduled notifications
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import ADMIN_ROLES, get_current_user, require_admin, require_tenant_admin
from ..database import get_db
from ..models import Usuario
from ..services.push_notification_service import PushNotificationService
from ..services.push_templates import NOTIFICATION_TEMPLATES, get_templates
from ..shared.dates import to_naive_utc

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/push-notifications", tags=["Push Notifications"])


class SubscriptionKeys(BaseModel):
    p256dh: str
    auth: str


class SubscriptionInfo(BaseModel):
    endpoint: str
    keys: SubscriptionKeys


class SubscribeRequest(BaseModel):
    subscription: SubscriptionInfo


class UnsubscribeRequest(BaseModel):
    endpoint: Optional[str] = None


class NotificationPayload(BaseModel):
    title: str
    body: str
    icon: Optional[str] = None
    badge: Optional[str] = None
    tag: Optional[str] = None
    data: Optional[dict] = None
    actions: Optional[list[dict]] = None
    requireInteraction: Optional[bool] = None

    def to_payload(self) -> dict:
        return self.model_dump(exclude_none=True)


class SendRequest(BaseModel):
    userId: str
    notification: NotificationPayload


class BulkSendRequest(BaseModel):
    userIds: list[str] = Field(min_length=1)
    notification: NotificationPayload


class RoleSendRequest(BaseModel):
    role: str
    notification: NotificationPayload


class TemplateSendRequest(BaseModel):
    userId: str
    templateId: str
    variables: dict = Field(default_factory=dict)


class ScheduleRequest(BaseModel):
    userId: str
    notification: NotificationPayload
    scheduledFor: datetime


def get_push_service(db: Session = Depends(get_db)) -> PushNotificationService:
    return PushNotificationService(db)


@router.get("/vapid-key")
def get_vapid_public_key(service: PushNotificationService = Depends(get_push_service)):
    """Public key the browser needs for PushManager.subscribe"""
    if not service.settings.configured:
        raise HTTPException(status_code=500, detail="VAPID keys not configured")
    return {"publicKey": service.settings.public_key}


@router.post("/subscribe")
def subscribe(
    data: SubscribeRequest,
    current_user: Usuario = Depends(get_current_user),
    service: PushNotificationService = Depends(get_push_service),
):
    subscription = service.subscribe(
        current_user.id,
        data.subscription.endpoint,
        data.subscription.keys.p256dh,
        data.subscription.keys.auth,
    )
    return {"success": True, "id": subscription.id}


@router.post("/unsubscribe")
def unsubscribe(
    data: UnsubscribeRequest,
    current_user: Usuario = Depends(get_current_user),
    service: PushNotificationService = Depends(get_push_service),
):
    removed = service.unsubscribe(current_user.id, data.endpoint)
    return {"success": True, "removed": removed}


@router.post("/send")
def send_notification(
    data: SendRequest,
    _: Usuario = Depends(require_admin),
    service: PushNotificationService = Depends(get_push_service),
):
    return service.send_to_user(data.userId, data.notification.to_payload()).to_dict()


@router.post("/bulk")
def send_bulk_notification(
    data: BulkSendRequest,
    _: Usuario = Depends(require_admin),
    service: PushNotificationService = Depends(get_push_service),
):
    return service.send_to_users(data.userIds, data.notification.to_payload()).to_dict()


@router.post("/send-to-role")
def send_to_role(
    data: RoleSendRequest,
    current_user: Usuario = Depends(require_tenant_admin),
    service: PushNotificationService = Depends(get_push_service),
):
    """Users of a role within the admin's own shop"""
    return service.send_to_role(data.role, data.notification.to_payload(), current_user.barbearia_id).to_dict()


@router.get("/templates")
def list_templates(category: Optional[str] = None):
    return get_templates(category)


@router.post("/template")
def send_template_notification(
    data: TemplateSendRequest,
    _: Usuario = Depends(require_admin),
    service: PushNotificationService = Depends(get_push_service),
):
    if data.templateId not in NOTIFICATION_TEMPLATES:
        raise HTTPException(status_code=404, detail=f"Template not found: {data.templateId}")
    return service.send_template_notification(data.userId, data.templateId, data.variables).to_dict()


@router.post("/schedule")
def schedule_notification(
    data: ScheduleRequest,
    _: Usuario = Depends(require_admin),
    service: PushNotificationService = Depends(get_push_service),
):
    notification = service.schedule_notification(
        data.userId, data.notification.to_payload(), to_naive_utc(data.scheduledFor)
    )
    return {"success": True, "id": notification.id, "scheduledFor": notification.scheduled_for.isoformat()}


@router.delete("/cancel/{notification_id}")
def cancel_scheduled_notification(
    notification_id: str,
    _: Usuario = Depends(require_admin),
    service: PushNotificationService = Depends(get_push_service),
):
    if not service.cancel_scheduled_notification(notification_id):
        raise HTTPException(status_code=404, detail="Scheduled notification not found or already sent")
    return {"success": True}


@router.get("/scheduled/{user_id}")
def get_scheduled_notifications(
    user_id: str,
    current_user: Usuario = Depends(get_current_user),
    service: PushNotificationService = Depends(get_push_service),
):
    if user_id != current_user.id and current_user.tipo not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="Access denied")
    return [
        {
            "id": n.id,
            "title": n.title,
            "body": n.body,
            "payload": n.payload,
            "scheduledFor": n.scheduled_for.isoformat(),
        }
        for n in service.get_scheduled_notifications(user_id)
    ]


@router.get("/stats")
def get_statistics(
    _: Usuario = Depends(require_admin),
    service: PushNotificationService = Depends(get_push_service),
):
    return service.get_statistics()


@router.post("/process-scheduled")
def process_scheduled_notifications(
    _: Usuario = Depends(require_admin),
    service: PushNotificationService = Depends(get_push_service),
):
    return {"processed": service.process_scheduled_notifications()}
