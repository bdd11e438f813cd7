"""
Chat session state machine.

    none --start--> waiting --assign--> active
    waiting|active --end--> ended (terminal)

`transition` is the single authority on legal moves; callers never compare
statuses themselves.
"""
from enum import Enum
from typing import Optional

from apps.livechat.exceptions import AlreadyAssigned, SessionNotFound, SessionConflict
from apps.livechat.models import SessionStatus


class SessionEvent(str, Enum):
    START = "start"
    ASSIGN = "assign"
    END = "end"
    POST = "post"       # message or typing signal
    RESUME = "resume"


_TRANSITIONS = {
    (None, SessionEvent.START): SessionStatus.WAITING,
    (SessionStatus.WAITING, SessionEvent.ASSIGN): SessionStatus.ACTIVE,
    (SessionStatus.WAITING, SessionEvent.END): SessionStatus.ENDED,
    (SessionStatus.ACTIVE, SessionEvent.END): SessionStatus.ENDED,
    # Self-loops: allowed without changing state
    (SessionStatus.WAITING, SessionEvent.POST): SessionStatus.WAITING,
    (SessionStatus.ACTIVE, SessionEvent.POST): SessionStatus.ACTIVE,
    (SessionStatus.WAITING, SessionEvent.RESUME): SessionStatus.WAITING,
    (SessionStatus.ACTIVE, SessionEvent.RESUME): SessionStatus.ACTIVE,
}


def transition(current: Optional[str], event: SessionEvent, session_id: Optional[str] = None) -> SessionStatus:
    """Return the status after `event`, or raise the error a client should see."""
    state = SessionStatus(current) if current is not None else None
    target = _TRANSITIONS.get((state, event))
    if target is not None:
        return target

    if state is None:
        raise SessionNotFound(session_id=session_id)
    if event == SessionEvent.START:
        raise SessionConflict(session_id=session_id)
    if state == SessionStatus.ACTIVE and event == SessionEvent.ASSIGN:
        raise AlreadyAssigned(session_id=session_id)
    # Everything on an ended session
    raise SessionNotFound(session_id=session_id)

