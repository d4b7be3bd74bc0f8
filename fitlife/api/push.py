"""Push subscription lifecycle: VAPID key, subscribe (upsert), unsubscribe (deactivate)."""
from fastapi import APIRouter, Depends, HTTPException, Request

from fitlife.api.deps import get_current_member, get_notification_service
from fitlife.core.config import settings
from fitlife.models import Member
from fitlife.schemas import (
    PushSubscribeRequest,
    PushSubscriptionResponse,
    PushUnsubscribeRequest,
    VapidKeyResponse,
)
from fitlife.services.notifications import NotificationService

router = APIRouter(tags=["push"])


@router.get("/vapid-public-key", response_model=VapidKeyResponse)
def vapid_public_key():
    if not settings.vapid_public_key:
        raise HTTPException(status_code=503, detail="Push notifications are not configured.")
    return VapidKeyResponse(publicKey=settings.vapid_public_key)


@router.post("/push/subscribe")
def subscribe(
    request: Request,
    body: PushSubscribeRequest,
    member: Member = Depends(get_current_member),
    service: NotificationService = Depends(get_notification_service),
):
    device_info = body.device_info or {}
    if "userAgent" not in device_info and request.headers.get("user-agent"):
        device_info = {**device_info, "userAgent": request.headers["user-agent"]}
    sub = service.save_subscription(
        member.id,
        body.endpoint,
        body.keys.model_dump(),
        device_info or None,
    )
    return {
        "success": True,
        "subscription": PushSubscriptionResponse(id=sub.id, endpoint=sub.endpoint, is_active=sub.is_active),
    }


@router.post("/push/unsubscribe")
def unsubscribe(
    body: PushUnsubscribeRequest,
    member: Member = Depends(get_current_member),
    service: NotificationService = Depends(get_notification_service),
):
    found = service.remove_subscription(member.id, body.endpoint)
    # Unknown endpoint is not an error: the goal (no active record) already holds
    return {"success": True, "deactivated": found}
