"""
Live chat error taxonomy.

Every error except DuplicateConnection is recoverable and is reported only to
the connection (or HTTP caller) that triggered it.
"""
from typing import Optional


class LiveChatError(Exception):
    """Base class for errors reported back to a chat client."""

    code = "LiveChatError"
    status_code = 400
    default_message = "Live chat request failed"

    def __init__(self, message: Optional[str] = None, session_id: Optional[str] = None):
        self.message = message or self.default_message
        self.session_id = session_id
        super().__init__(self.message)

    def to_dict(self) -> dict:
        data = {"code": self.code, "message": self.message}
        if self.session_id:
            data["sessionId"] = self.session_id
        return data


class SessionConflict(LiveChatError):
    """The user already has an open session; the client should resume it."""

    code = "SessionConflict"
    status_code = 409
    default_message = "You already have an active chat session"


class NotAParticipant(LiveChatError):
    code = "NotAParticipant"
    status_code = 403
    default_message = "Connection is not a participant of this chat session"


class AlreadyAssigned(LiveChatError):
    """Lost an admin claim race."""

    code = "AlreadyAssigned"
    status_code = 409
    default_message = "Chat session is already assigned to another admin"


class SessionNotFound(LiveChatError):
    code = "SessionNotFound"
    status_code = 404
    default_message = "Chat session not found or already ended"


class DeliveryFailed(LiveChatError):
    """The message was not persisted and must be retried by the client."""

    code = "DeliveryFailed"
    status_code = 503
    default_message = "Message could not be delivered, please retry"


class InvalidEnvelope(LiveChatError):
    code = "InvalidEnvelope"
    status_code = 400
    default_message = "Invalid message format"


class DuplicateConnection(RuntimeError):
    """A connection id was registered twice. Programming error."""
