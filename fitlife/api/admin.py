"""Operator endpoints (X-Admin-Secret): targeted send, bulk send, due-delivery pass for the external scheduler."""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException

from fitlife.api.deps import get_notification_service, require_admin_secret
from fitlife.api.notifications import to_response
from fitlife.models import Member
from fitlife.schemas import BulkNotificationRequest, DeliveryReportResponse, SendNotificationRequest
from fitlife.services.notifications import NotificationService

router = APIRouter(
    prefix="/admin/notifications",
    tags=["admin"],
    dependencies=[Depends(require_admin_secret)],
)


@router.post("/send")
async def send_notification(
    body: SendNotificationRequest,
    service: NotificationService = Depends(get_notification_service),
):
    if service.db.get(Member, body.member_id) is None:
        raise HTTPException(status_code=404, detail="Member not found.")
    try:
        notification = await service.send_to_user(
            body.member_id,
            body.title,
            body.message,
            body.type,
            body.data,
            scheduled_at=body.scheduled_at,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"notification": to_response(notification)}


@router.post("/bulk")
async def send_bulk(
    body: BulkNotificationRequest,
    service: NotificationService = Depends(get_notification_service),
):
    report = await service.send_bulk(body.member_ids, body.title, body.message, body.type, body.data)
    return {"successful": report.successful, "failed": report.failed, "total": report.total}


@router.post("/deliver-due", response_model=list[DeliveryReportResponse])
async def deliver_due(
    now: datetime | None = None,
    service: NotificationService = Depends(get_notification_service),
):
    reports = await service.deliver_due(now)
    return [
        DeliveryReportResponse(
            notification_id=r.notification_id,
            status=r.status,
            success_count=r.success_count,
            failed_count=r.failed_count,
        )
        for r in reports
    ]
