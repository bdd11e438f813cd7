import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import List, Optional

from apps.livechat.config import LivechatSettings
from apps.livechat.exceptions import InvalidEnvelope, NotAParticipant, SessionNotFound
from apps.livechat.models import ChatSession, SessionStatus, AdminAvailability
from apps.livechat.schemas import ChatSessionResponse, AdminStatusResponse, EventType, envelope
from apps.livechat.services.assignment import AssignmentPolicy
from apps.livechat.services.connection_registry import Connection, ConnectionRegistry, Identity
from apps.livechat.services.session_store import SessionStore
from apps.livechat.services.typing_tracker import TypingTracker
from apps.livechat.state import SessionEvent, transition
from common.utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)


class EndReason:
    USER = "ended_by_user"
    ADMIN = "ended_by_admin"
    IDLE = "idle_timeout"
    ABANDONED = "abandoned"


def session_payload(session: ChatSession) -> dict:
    return ChatSessionResponse.model_validate(session).to_wire()


class SessionLifecycleManager:
    """Creates, assigns, resumes and ends chat sessions.

    Creation is serialized per user and every later transition per session,
    so decisions about one key never interleave while other keys proceed.
    """

    def __init__(
        self,
        store: SessionStore,
        registry: ConnectionRegistry,
        typing: TypingTracker,
        policy: AssignmentPolicy,
        settings: LivechatSettings,
        clock=time.monotonic,
    ):
        self.store = store
        self.registry = registry
        self.typing = typing
        self.policy = policy
        self.settings = settings
        self._clock = clock
        self._user_locks = KeyedLock()
        self._session_locks = KeyedLock()

    @asynccontextmanager
    async def session_guard(self, session_id: str):
        """Critical section for everything that reads then writes one session."""
        async with self._session_locks.hold(session_id):
            yield

    def followers(self, session_id: str) -> List[Connection]:
        """Connections attached to the session plus every admin console."""
        return self.registry.lookup_by_session(session_id) + self.registry.lookup_admins()

    # none -> waiting

    async def start_session(
        self,
        identity: Identity,
        subject: Optional[str] = None,
        department: Optional[str] = None,
        department_id: Optional[int] = None,
    ) -> ChatSession:
        async with self._user_locks.hold(identity.user_id):
            existing = await self.store.get_open_session_for_user(identity.user_id)
            transition(existing.status if existing else None, SessionEvent.START,
                       existing.id if existing else None)

            department_name, department_id = await self._resolve_department(department, department_id)
            session = await self.store.create_session(
                user_id=identity.user_id,
                subject=subject or self.settings.DEFAULT_SUBJECT,
                department=department_name,
                department_id=department_id,
            )
            logger.info(f"Chat session {session.id} started by {identity.user_id} ({department_name})")

            payload = session_payload(session)
            user_connections = self.registry.lookup_by_user(identity.user_id)
            for connection in user_connections:
                self.registry.attach(connection.connection_id, session.id)
            self.registry.send(user_connections, envelope(EventType.SESSION_STARTED, payload))
            self.registry.send(self.registry.lookup_admins(), envelope(EventType.NEW_SESSION, payload))

        async with self.session_guard(session.id):
            if await self.policy.try_assign(session) is not None:
                session = await self.store.get_session(session.id)
                self._announce_assignment(session)
        return session

    async def _resolve_department(self, department: Optional[str], department_id: Optional[int]):
        if department_id is not None:
            dept = await self.store.get_department(department_id)
            if dept is not None and dept.is_active:
                return department or dept.name, dept.id

        for dept in await self.store.list_departments():
            if dept.is_default:
                return department or dept.name, dept.id
        return department or self.settings.DEFAULT_DEPARTMENT, None

    # reconnect path

    async def resume_session(self, connection: Connection, session_id: Optional[str] = None) -> ChatSession:
        """Re-attach a connection to its open session without changing state."""
        identity = connection.identity
        if identity.is_admin:
            if not session_id:
                raise InvalidEnvelope("sessionId is required to resume as admin")
            session = await self.store.get_session(session_id)
            if session is None:
                raise SessionNotFound(session_id=session_id)
            if session.assigned_admin_id != identity.user_id:
                raise NotAParticipant(session_id=session_id)
        else:
            session = await self.store.get_open_session_for_user(identity.user_id)
            if session is None:
                raise SessionNotFound("No open chat session to resume")

        async with self.session_guard(session.id):
            session = await self.store.get_session(session.id)
            transition(session.status, SessionEvent.RESUME, session.id)
            self.registry.attach(connection.connection_id, session.id)
            self.registry.send([connection], envelope(EventType.SESSION_RESUMED, session_payload(session)))
        logger.info(f"Connection {connection.connection_id} resumed chat session {session.id}")
        return session

    # waiting -> active

    async def claim_session(self, admin: Identity, session_id: str) -> ChatSession:
        if not admin.is_admin:
            raise NotAParticipant("Only admins can claim chat sessions", session_id=session_id)

        async with self.session_guard(session_id):
            before = await self.store.get_session(session_id)
            session = await self.policy.claim(session_id, admin.user_id)
            if before is not None and before.assigned_admin_id == admin.user_id:
                # Repeat claim by the owner: just re-attach this admin's consoles
                for connection in self.registry.lookup_by_user(admin.user_id):
                    self.registry.attach(connection.connection_id, session_id)
                return session
            self._announce_assignment(session)
        return session

    def _announce_assignment(self, session: ChatSession):
        members = self.registry.lookup_by_session(session.id)
        owner_connections = [c for c in members if c.user_id == session.user_id]
        self.registry.send(
            owner_connections,
            envelope(EventType.ADMIN_JOINED, {"sessionId": session.id, "adminId": session.assigned_admin_id}),
        )

        for connection in self.registry.lookup_by_user(session.assigned_admin_id):
            self.registry.attach(connection.connection_id, session.id)
        self.registry.send(
            self.followers(session.id),
            envelope(EventType.SESSION_UPDATE, {
                "sessionId": session.id,
                "status": session.status,
                "assignedAdminId": session.assigned_admin_id,
            }),
        )

    # waiting|active -> ended

    async def end_session(
        self, identity: Optional[Identity], session_id: str, reason: Optional[str] = None
    ) -> ChatSession:
        """End a session. `identity` None means the server itself (idle sweeper)."""
        async with self.session_guard(session_id):
            session = await self.store.get_session(session_id)
            if session is None:
                raise SessionNotFound(session_id=session_id)
            transition(session.status, SessionEvent.END, session_id)

            if identity is not None:
                if not session.is_participant(identity.user_id):
                    raise NotAParticipant(session_id=session_id)
                if reason is None:
                    reason = EndReason.USER if identity.user_id == session.user_id else EndReason.ADMIN

            session = await self.store.end_session(session_id, reason or EndReason.USER)
            self.typing.clear_session(session_id)

            members = self.registry.detach_session(session_id)
            self.registry.send(members, envelope(EventType.SESSION_ENDED, {"sessionId": session_id, "reason": session.end_reason}))
            member_ids = {c.connection_id for c in members}
            self.registry.send(
                [c for c in self.registry.lookup_admins() if c.connection_id not in member_ids],
                envelope(EventType.SESSION_UPDATE, {
                    "sessionId": session_id,
                    "status": SessionStatus.ENDED.value,
                    "assignedAdminId": session.assigned_admin_id,
                }),
            )
        logger.info(f"Chat session {session_id} ended ({session.end_reason})")
        return session

    async def expire_idle_sessions(self) -> List[str]:
        """End sessions that went idle, or whose owner left and never came back."""
        idle_timeout = self.settings.IDLE_TIMEOUT_SECONDS
        grace = self.settings.RECONNECT_GRACE_SECONDS
        now = datetime.utcnow()
        mono_now = self._clock()

        ended = []
        for session in await self.store.find_idle_sessions(now - timedelta(seconds=min(idle_timeout, grace))):
            last_typing = self.typing.last_signal_at(session.id)

            def typed_within(window: float) -> bool:
                return last_typing is not None and mono_now - last_typing < window

            reason = None
            if session.last_activity_at <= now - timedelta(seconds=idle_timeout) and not typed_within(idle_timeout):
                reason = EndReason.IDLE
            elif session.last_activity_at <= now - timedelta(seconds=grace) and not typed_within(grace):
                gone_since = self.registry.owner_gone_since(session.id)
                if gone_since is not None and mono_now - gone_since >= grace:
                    reason = EndReason.ABANDONED
            if reason is None:
                continue

            try:
                await self.end_session(None, session.id, reason)
                ended.append(session.id)
            except SessionNotFound:
                # Ended by a participant while we were looking
                continue
        return ended

    # Connections

    async def connection_closed(self, connection_id: str):
        """Registry cleanup on transport disconnect. Sessions are left open."""
        connection = await self.registry.unregister(connection_id)
        if connection is None or not connection.identity.is_admin:
            return
        if self.registry.lookup_by_user(connection.user_id):
            return
        status = await self.store.upsert_admin_status(
            connection.user_id, status=AdminAvailability.OFFLINE.value
        )
        self.broadcast_admin_status(status)

    def broadcast_admin_status(self, status):
        data = AdminStatusResponse.model_validate(status).to_wire()
        self.registry.send(
            self.registry.all(),
            envelope(EventType.ADMIN_STATUS_UPDATE, {
                "userId": data["userId"],
                "status": data["status"],
                "statusMessage": data["statusMessage"],
            }),
        )
