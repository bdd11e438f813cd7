from .session_store import SessionStore
from .connection_registry import Connection, ConnectionRegistry, Identity
from .typing_tracker import TypingTracker
from .assignment import AssignmentPolicy, ManualClaimPolicy, AutoAssignPolicy
from .session_manager import SessionLifecycleManager
from .message_router import MessageRouter
from .sweeper import ChatSweeper
from .chat_service import LiveChatService, get_livechat_service

__all__ = [
    "SessionStore",
    "Connection",
    "ConnectionRegistry",
    "Identity",
    "TypingTracker",
    "AssignmentPolicy",
    "ManualClaimPolicy",
    "AutoAssignPolicy",
    "SessionLifecycleManager",
    "MessageRouter",
    "ChatSweeper",
    "LiveChatService",
    "get_livechat_service",
]
