from sqlmodel import SQLModel, Field
from sqlalchemy import Index, text
from datetime import datetime
from typing import Optional
from uuid import uuid4
from enum import Enum


class SessionStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    ENDED = "ended"


OPEN_STATUSES = (SessionStatus.WAITING, SessionStatus.ACTIVE)


class SessionPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class ChatSession(SQLModel, table=True):
    __tablename__ = "chat_sessions"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(max_length=255, index=True)
    assigned_admin_id: Optional[str] = Field(default=None, max_length=255, index=True)
    department_id: Optional[int] = Field(default=None, foreign_key="chat_departments.id")

    status: str = Field(default=SessionStatus.WAITING.value, max_length=20, index=True)
    priority: str = Field(default=SessionPriority.NORMAL.value, max_length=20)
    subject: Optional[str] = Field(default=None, max_length=255)
    department: str = Field(default="general", max_length=100)
    end_reason: Optional[str] = Field(default=None, max_length=50)

    started_at: datetime = Field(default_factory=datetime.utcnow)
    ended_at: Optional[datetime] = Field(default=None)
    last_activity_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def is_participant(self, user_id: str) -> bool:
        return user_id == self.user_id or (
            self.assigned_admin_id is not None and user_id == self.assigned_admin_id
        )

    # At most one waiting/active session per user
    __table_args__ = (
        Index(
            "uq_chat_sessions_open_user",
            "user_id",
            unique=True,
            postgresql_where=text("status IN ('waiting', 'active')"),
            sqlite_where=text("status IN ('waiting', 'active')"),
        ),
    )
