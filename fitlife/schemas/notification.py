from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class NotificationResponse(BaseModel):
    id: int
    title: str
    message: str
    type: str
    data: dict | None = None
    status: str
    scheduled_at: datetime | None = None
    sent_at: datetime | None = None
    read_at: datetime | None = None
    created_at: datetime


class NotificationPage(BaseModel):
    notifications: list[NotificationResponse]
    page: int
    limit: int
    total: int
    total_pages: int


class MarkReadRequest(BaseModel):
    ids: list[int] = Field(default_factory=list)


class PushTestRequest(BaseModel):
    title: str = "FitLife"
    message: str = "Thông báo thử nghiệm"


class SendNotificationRequest(BaseModel):
    member_id: int
    title: str = Field(min_length=1, max_length=200)
    message: str = ""
    type: str = "generic"
    data: dict | None = None
    scheduled_at: datetime | None = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title must not be empty.")
        return v


class BulkNotificationRequest(BaseModel):
    member_ids: list[int] = Field(min_length=1)
    title: str = Field(min_length=1, max_length=200)
    message: str = ""
    type: str = "generic"
    data: dict | None = None


class DeliveryReportResponse(BaseModel):
    notification_id: int
    status: str
    success_count: int
    failed_count: int
