"""PWA push subscriptions (Web Push API), one row per (member, endpoint)."""
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class PushSubscription(SQLModel, table=True):
    __tablename__ = "push_subscriptions"
    __table_args__ = (UniqueConstraint("member_id", "endpoint", name="uq_push_member_endpoint"),)
    id: int | None = Field(default=None, primary_key=True)
    member_id: int = Field(foreign_key="member.id", index=True)
    endpoint: str = Field(index=True)
    p256dh: str = ""  # client public key (base64url)
    auth: str = ""    # auth secret (base64url)
    device_info: dict | None = Field(default=None, sa_column=Column(JSON))
    is_active: bool = Field(default=True, index=True)  # 410 Gone flips this off, the row stays
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), sa_type=DateTime(timezone=True))
    last_used_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))

    def to_subscription_info(self) -> dict:
        """Shape pywebpush expects."""
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}
