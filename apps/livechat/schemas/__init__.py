from .chat import (
    ChatSessionResponse,
    ChatMessageResponse,
    ChatDepartmentResponse,
    AdminStatusResponse,
    StartSessionRequest,
    SessionRef,
    SendMessageRequest,
    TypingRequest,
    AdminStatusUpdate,
    SessionWithMessagesResponse,
    AvailabilityResponse,
    AdminStatsResponse,
)
from .envelope import Envelope, EventType, CLIENT_EVENTS, envelope
