"""Member inbox: list, read-state, unread count, test push."""
import math

from fastapi import APIRouter, Depends, Query, Request

from fitlife.api.deps import get_current_member, get_notification_service
from fitlife.core.config import settings
from fitlife.core.rate_limit import limiter
from fitlife.models import Member, Notification
from fitlife.schemas import MarkReadRequest, NotificationPage, NotificationResponse, PushTestRequest
from fitlife.services.notifications import NotificationService

router = APIRouter(prefix="/notifications", tags=["notifications"])
_TEST_PUSH_LIMIT = f"{settings.rate_limit_test_push_per_minute}/minute"


def to_response(n: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=n.id or 0,
        title=n.title,
        message=n.message,
        type=n.type,
        data=n.data,
        status=n.status,
        scheduled_at=n.scheduled_at,
        sent_at=n.sent_at,
        read_at=n.read_at,
        created_at=n.created_at,
    )


@router.get("", response_model=NotificationPage)
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1),
    member: Member = Depends(get_current_member),
    service: NotificationService = Depends(get_notification_service),
):
    limit = min(limit, settings.notifications_page_size_max)
    rows, total = service.list_notifications(member.id, page=page, limit=limit)
    return NotificationPage(
        notifications=[to_response(n) for n in rows],
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit) if total else 0,
    )


@router.post("/mark-read")
def mark_read(
    body: MarkReadRequest,
    member: Member = Depends(get_current_member),
    service: NotificationService = Depends(get_notification_service),
):
    updated = service.mark_as_read(member.id, body.ids)
    return {"success": True, "updated": updated}


@router.post("/mark-all-read")
def mark_all_read(
    member: Member = Depends(get_current_member),
    service: NotificationService = Depends(get_notification_service),
):
    updated = service.mark_all_as_read(member.id)
    return {"success": True, "updated": updated}


@router.get("/unread-count")
def unread_count(
    member: Member = Depends(get_current_member),
    service: NotificationService = Depends(get_notification_service),
):
    return {"count": service.unread_count(member.id)}


@router.post("/test")
@limiter.limit(_TEST_PUSH_LIMIT)
async def send_test(
    request: Request,
    body: PushTestRequest | None = None,
    member: Member = Depends(get_current_member),
    service: NotificationService = Depends(get_notification_service),
):
    """Sends a generic notification to every active device of the caller."""
    body = body or PushTestRequest()
    notification = await service.send_to_user(member.id, body.title, body.message, "generic", {"test": True})
    return {
        "success": notification.status == "sent",
        "notification": to_response(notification),
        "success_count": notification.success_count,
        "failed_count": notification.failed_count,
    }
