"""WebSocket message envelope: ``{"type": <string>, "data": <object>}``."""
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel


class EventType(str, Enum):
    # client -> server
    START_SESSION = "start_session"
    RESUME_SESSION = "resume_session"
    END_SESSION = "end_session"
    CLAIM_SESSION = "claim_session"
    ADMIN_STATUS = "admin_status"
    # bidirectional
    MESSAGE = "message"
    TYPING = "typing"
    DEPARTMENT_LIST = "department_list"
    # server -> client
    CONNECTION_ESTABLISHED = "connection_established"
    SESSION_STARTED = "session_started"
    SESSION_RESUMED = "session_resumed"
    SESSION_ENDED = "session_ended"
    SESSION_UPDATE = "session_update"
    ADMIN_JOINED = "admin_joined"
    ADMIN_STATUS_UPDATE = "admin_status_update"
    NEW_SESSION = "new_session"
    ERROR = "error"


CLIENT_EVENTS = frozenset(event.value for event in (
    EventType.START_SESSION,
    EventType.RESUME_SESSION,
    EventType.END_SESSION,
    EventType.CLAIM_SESSION,
    EventType.ADMIN_STATUS,
    EventType.MESSAGE,
    EventType.TYPING,
    EventType.DEPARTMENT_LIST,
))


class Envelope(BaseModel):
    type: str
    data: Dict[str, Any] = {}


def envelope(event: EventType, data: Dict[str, Any] = None) -> dict:
    return {"type": event.value, "data": data or {}}
