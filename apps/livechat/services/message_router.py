import json
import logging
from typing import Any, Awaitable, Callable, Dict, Union

from pydantic import ValidationError

from apps.livechat.config import LivechatSettings
from apps.livechat.exceptions import LiveChatError, InvalidEnvelope, NotAParticipant, SessionNotFound
from apps.livechat.models import ChatMessage, ChatSession
from apps.livechat.schemas import (
    CLIENT_EVENTS,
    AdminStatusUpdate,
    ChatDepartmentResponse,
    ChatMessageResponse,
    Envelope,
    EventType,
    SendMessageRequest,
    SessionRef,
    StartSessionRequest,
    TypingRequest,
    envelope,
)
from apps.livechat.services.connection_registry import Connection, ConnectionRegistry
from apps.livechat.services.session_manager import SessionLifecycleManager
from apps.livechat.services.session_store import SessionStore
from apps.livechat.services.typing_tracker import TypingTracker
from apps.livechat.state import SessionEvent, transition

logger = logging.getLogger(__name__)

Handler = Callable[[Connection, Dict[str, Any]], Awaitable[None]]


class MessageRouter:
    """Validates inbound envelopes, persists chat messages and fans events out.

    Messages and typing signals for one session are handled inside that
    session's critical section, so they are persisted and queued to every
    participant in a single order. Errors go back to the sender only.
    """

    def __init__(
        self,
        manager: SessionLifecycleManager,
        registry: ConnectionRegistry,
        store: SessionStore,
        typing: TypingTracker,
        settings: LivechatSettings,
    ):
        self.manager = manager
        self.registry = registry
        self.store = store
        self.typing = typing
        self.settings = settings
        self._handlers: Dict[str, Handler] = {
            EventType.START_SESSION.value: self._on_start_session,
            EventType.RESUME_SESSION.value: self._on_resume_session,
            EventType.END_SESSION.value: self._on_end_session,
            EventType.CLAIM_SESSION.value: self._on_claim_session,
            EventType.MESSAGE.value: self._on_message,
            EventType.TYPING.value: self._on_typing,
            EventType.DEPARTMENT_LIST.value: self._on_department_list,
            EventType.ADMIN_STATUS.value: self._on_admin_status,
        }

    async def dispatch(self, connection: Connection, raw: Union[str, bytes, dict]):
        """Handle one inbound frame to completion."""
        request_type = None
        try:
            if isinstance(raw, (str, bytes)):
                try:
                    raw = json.loads(raw)
                except ValueError:
                    raise InvalidEnvelope()
            try:
                inbound = Envelope.model_validate(raw)
            except ValidationError:
                raise InvalidEnvelope()
            request_type = inbound.type
            await self.send(connection, inbound)
        except LiveChatError as e:
            logger.warning(f"Rejected {request_type or 'frame'} from {connection.user_id}: {e.code} {e.message}")
            self._reply_error(connection, e.to_dict(), request_type)
        except Exception as e:
            logger.exception(f"Error handling {request_type} from connection {connection.connection_id}: {e}")
            self._reply_error(connection, {"code": "InternalError", "message": "Internal server error"}, request_type)

    async def send(self, connection: Connection, inbound: Envelope):
        if inbound.type not in CLIENT_EVENTS:
            if inbound.type in {event.value for event in EventType}:
                raise InvalidEnvelope(f"Message type {inbound.type} is sent by the server only")
            raise InvalidEnvelope(f"Unknown message type: {inbound.type}")
        await self._handlers[inbound.type](connection, inbound.data)

    def _reply_error(self, connection: Connection, error: dict, request_type):
        error["requestType"] = request_type
        self.registry.send([connection], envelope(EventType.ERROR, error))

    @staticmethod
    def _parse(model, data: Dict[str, Any]):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first["loc"])
            raise InvalidEnvelope(f"Invalid field '{field}': {first['msg']}")

    # Session lifecycle requests

    async def _on_start_session(self, connection: Connection, data: Dict[str, Any]):
        request = self._parse(StartSessionRequest, data)
        await self.manager.start_session(
            connection.identity,
            subject=request.subject,
            department=request.department,
            department_id=request.department_id,
        )

    async def _on_resume_session(self, connection: Connection, data: Dict[str, Any]):
        await self.manager.resume_session(connection, data.get("sessionId"))

    async def _on_end_session(self, connection: Connection, data: Dict[str, Any]):
        request = self._parse(SessionRef, data)
        await self.manager.end_session(connection.identity, request.session_id)

    async def _on_claim_session(self, connection: Connection, data: Dict[str, Any]):
        request = self._parse(SessionRef, data)
        await self.manager.claim_session(connection.identity, request.session_id)

    # Chat traffic

    async def _on_message(self, connection: Connection, data: Dict[str, Any]):
        request = self._parse(SendMessageRequest, data)
        await self.post_message(connection, request.session_id, request.message)

    async def post_message(self, connection: Connection, session_id: str, text: str) -> ChatMessage:
        if not text or not text.strip():
            raise InvalidEnvelope("Message must not be empty", session_id=session_id)
        if len(text) > self.settings.MAX_MESSAGE_LENGTH:
            raise InvalidEnvelope(
                f"Message exceeds {self.settings.MAX_MESSAGE_LENGTH} characters", session_id=session_id
            )

        async with self.manager.session_guard(session_id):
            session = await self._participant_session(connection, session_id)
            message = await self.store.insert_message(
                session_id=session_id,
                sender_id=connection.user_id,
                message=text,
                is_from_admin=connection.user_id != session.user_id,
            )

            members = self.registry.lookup_by_session(session_id)
            if self.typing.clear(session_id, connection.user_id):
                self.registry.send(members, self._typing_event(session_id, connection.user_id, False),
                                   exclude_user=connection.user_id)
            self.registry.send(
                members, envelope(EventType.MESSAGE, ChatMessageResponse.model_validate(message).to_wire())
            )
        return message

    async def _on_typing(self, connection: Connection, data: Dict[str, Any]):
        request = self._parse(TypingRequest, data)
        await self.set_typing(connection, request.session_id, request.is_typing)

    async def set_typing(self, connection: Connection, session_id: str, is_typing: bool):
        async with self.manager.session_guard(session_id):
            await self._participant_session(connection, session_id)
            if self.typing.set_typing(session_id, connection.user_id, is_typing):
                self.registry.send(
                    self.registry.lookup_by_session(session_id),
                    self._typing_event(session_id, connection.user_id, is_typing),
                    exclude_user=connection.user_id,
                )

    async def expire_typing(self) -> int:
        """Emit a synthetic typing:false for every signal past the ceiling."""
        expired = self.typing.pop_expired()
        for session_id, user_id in expired:
            async with self.manager.session_guard(session_id):
                self.registry.send(
                    self.registry.lookup_by_session(session_id),
                    self._typing_event(session_id, user_id, False),
                    exclude_user=user_id,
                )
        return len(expired)

    async def _participant_session(self, connection: Connection, session_id: str) -> ChatSession:
        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id=session_id)
        transition(session.status, SessionEvent.POST, session_id)
        if not session.is_participant(connection.user_id):
            raise NotAParticipant(session_id=session_id)
        if not self.registry.is_attached(connection.connection_id, session_id):
            raise NotAParticipant(
                "Connection is not attached to this session; resume it first", session_id=session_id
            )
        return session

    @staticmethod
    def _typing_event(session_id: str, user_id: str, is_typing: bool) -> dict:
        return envelope(EventType.TYPING, {"sessionId": session_id, "isTyping": is_typing, "userId": user_id})

    # Directory and admin presence

    async def _on_department_list(self, connection: Connection, data: Dict[str, Any]):
        departments = await self.store.list_departments()
        self.registry.send([connection], envelope(EventType.DEPARTMENT_LIST, {
            "departments": [ChatDepartmentResponse.model_validate(d).to_wire() for d in departments]
        }))

    async def _on_admin_status(self, connection: Connection, data: Dict[str, Any]):
        if not connection.identity.is_admin:
            raise NotAParticipant("Only admins can update chat status")
        request = self._parse(AdminStatusUpdate, data)
        status = await self.store.upsert_admin_status(
            connection.user_id,
            status=request.status,
            status_message=request.status_message,
            max_concurrent_chats=request.max_concurrent_chats,
            auto_assign=request.auto_assign,
        )
        self.manager.broadcast_admin_status(status)
