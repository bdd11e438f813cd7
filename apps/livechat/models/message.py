from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from datetime import datetime
from uuid import uuid4
from enum import Enum


class MessageType(str, Enum):
    TEXT = "text"


class ChatMessage(SQLModel, table=True):
    __tablename__ = "chat_messages"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    session_id: str = Field(foreign_key="chat_sessions.id", index=True)
    # Position within the session; fixes creation order independent of clock resolution
    seq: int = Field(default=0)
    sender_id: str = Field(max_length=255)
    is_from_admin: bool = Field(default=False)
    message: str = Field(max_length=10000)
    message_type: str = Field(default=MessageType.TEXT.value, max_length=20)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("session_id", "seq", name="uq_chat_messages_session_seq"),
    )
