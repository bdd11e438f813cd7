# Import all models so SQLAlchemy can discover them
from .department import ChatDepartment
from .chat_session import ChatSession, SessionStatus, SessionPriority, OPEN_STATUSES
from .message import ChatMessage, MessageType
from .admin_status import AdminChatStatus, AdminAvailability

__all__ = [
    "ChatDepartment",
    "ChatSession",
    "SessionStatus",
    "SessionPriority",
    "OPEN_STATUSES",
    "ChatMessage",
    "MessageType",
    "AdminChatStatus",
    "AdminAvailability",
]
