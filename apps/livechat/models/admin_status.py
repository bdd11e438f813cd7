from sqlmodel import SQLModel, Field
from datetime import datetime
from typing import Optional
from enum import Enum


class AdminAvailability(str, Enum):
    ONLINE = "online"
    AWAY = "away"
    BUSY = "busy"
    OFFLINE = "offline"


class AdminChatStatus(SQLModel, table=True):
    __tablename__ = "admin_chat_status"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(max_length=255, unique=True, index=True)
    status: str = Field(default=AdminAvailability.OFFLINE.value, max_length=20)
    status_message: Optional[str] = Field(default=None, max_length=255)
    max_concurrent_chats: int = Field(default=5)
    auto_assign: bool = Field(default=True)
    last_activity_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_available(self) -> bool:
        return self.status == AdminAvailability.ONLINE
