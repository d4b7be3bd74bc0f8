"""Gym member: only the fields the push/notification core needs. Membership CRUD lives elsewhere."""
from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class Member(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    full_name: str = ""
    is_active: bool = True
    created_at: datetime | None = Field(default_factory=lambda: datetime.now(timezone.utc), sa_type=DateTime(timezone=True))
