"""Notifications: created -> sending -> sent | failed. Scheduled rows stay created until a delivery pass claims them."""
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

STATUS_CREATED = "created"
STATUS_SENDING = "sending"  # claimed by one delivery pass
STATUS_SENT = "sent"
STATUS_FAILED = "failed"


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"
    id: int | None = Field(default=None, primary_key=True)
    member_id: int = Field(foreign_key="member.id", index=True)
    title: str
    message: str = ""
    type: str = "generic"  # membership | appointment | promotion | workout | generic
    data: dict | None = Field(default=None, sa_column=Column(JSON))
    status: str = Field(default=STATUS_CREATED, index=True)
    scheduled_at: datetime | None = Field(default=None, index=True, sa_type=DateTime(timezone=True))
    sent_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    read_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))  # set once, never cleared
    success_count: int = 0
    failed_count: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), sa_type=DateTime(timezone=True))
