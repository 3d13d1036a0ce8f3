from fastapi import APIRouter, Depends, HTTPException, Query

from groomquote.auth import require_actor
from groomquote.models import Actor, DeviceTokenRegisterRequest, NotificationRecord
from groomquote.services.notification_store import notification_store

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationRecord])
def list_notifications(
    unread_only: bool = Query(default=False),
    actor: Actor = Depends(require_actor),
):
    return notification_store.list_for_user(user_id=actor.user_id, unread_only=unread_only)


@router.get("/unread-count", response_model=dict)
def unread_count(actor: Actor = Depends(require_actor)):
    return {"unread": notification_store.unread_count(actor.user_id)}


@router.post("/register-device", response_model=dict)
def register_device(payload: DeviceTokenRegisterRequest, actor: Actor = Depends(require_actor)):
    if payload.user_id != actor.user_id:
        raise HTTPException(status_code=403, detail="Token user does not match device owner")
    if not notification_store.register_device_token(user_id=actor.user_id, device_token=payload.device_token):
        raise HTTPException(status_code=400, detail="Device token is required")
    return {"status": "ok"}


@router.post("/read-all", response_model=dict)
def mark_all_read(actor: Actor = Depends(require_actor)):
    return {"marked": notification_store.mark_all_read(actor.user_id)}


@router.post("/{notification_id}/read", response_model=NotificationRecord)
def mark_notification_read(notification_id: str, actor: Actor = Depends(require_actor)):
    updated = notification_store.mark_read(user_id=actor.user_id, notification_id=notification_id)
    if not updated:
        raise HTTPException(status_code=404, detail="Notification not found")
    return updated
