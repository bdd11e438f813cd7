from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Optional, List


class CamelModel(BaseModel):
    """Wire models: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ChatSessionResponse(CamelModel):
    id: str
    user_id: str
    assigned_admin_id: Optional[str] = None
    department_id: Optional[int] = None
    status: str
    priority: str
    subject: Optional[str] = None
    department: str
    end_reason: Optional[str] = None
    started_at: datetime
    ended_at: Optional[datetime] = None
    last_activity_at: datetime


class ChatMessageResponse(CamelModel):
    id: str
    session_id: str
    sender_id: str
    is_from_admin: bool
    message: str
    message_type: str
    created_at: datetime


class ChatDepartmentResponse(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    is_default: bool
    display_order: int


class AdminStatusResponse(CamelModel):
    user_id: str
    status: str
    status_message: Optional[str] = None
    max_concurrent_chats: int
    auto_assign: bool
    last_activity_at: datetime


# Request schemas
class StartSessionRequest(CamelModel):
    subject: Optional[str] = Field(default=None, max_length=255)
    department: Optional[str] = Field(default=None, max_length=100)
    department_id: Optional[int] = None


class SessionRef(CamelModel):
    session_id: str = Field(..., min_length=1)


class SendMessageRequest(CamelModel):
    session_id: str = Field(..., min_length=1)
    message: str


class TypingRequest(CamelModel):
    session_id: str = Field(..., min_length=1)
    is_typing: bool


class AdminStatusUpdate(CamelModel):
    status: str = Field(..., pattern="^(online|away|busy|offline)$")
    status_message: Optional[str] = Field(default=None, max_length=255)
    max_concurrent_chats: Optional[int] = Field(default=None, ge=1, le=50)
    auto_assign: Optional[bool] = None


# Composite responses
class SessionWithMessagesResponse(CamelModel):
    session: Optional[ChatSessionResponse] = None
    messages: List[ChatMessageResponse] = []


class AvailabilityResponse(CamelModel):
    available: bool
    admin_count: int
    status_message: str = ""
    last_updated: datetime


class AdminStatsResponse(CamelModel):
    active_sessions: int
    waiting_sessions: int
    assigned_to_me: int
    ended_today: int
    live_connections: int
