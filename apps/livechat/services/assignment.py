import logging
from abc import ABC, abstractmethod
from typing import Optional

from apps.livechat.exceptions import AlreadyAssigned, SessionNotFound
from apps.livechat.models import ChatSession
from apps.livechat.services.session_store import SessionStore
from apps.livechat.state import SessionEvent, transition

logger = logging.getLogger(__name__)


class AssignmentPolicy(ABC):
    """Decides which admin, if any, attaches to a waiting session."""

    def __init__(self, store: SessionStore):
        self.store = store

    @abstractmethod
    async def try_assign(self, session: ChatSession) -> Optional[str]:
        """Called when a session starts. Returns the attached admin id or None."""

    async def claim(self, session_id: str, admin_id: str) -> ChatSession:
        """Atomically attach `admin_id` to a waiting session.

        The first claim wins; later claims by other admins raise
        AlreadyAssigned. A repeated claim by the winner returns the session.
        """
        if await self.store.claim_session(session_id, admin_id):
            logger.info(f"Admin {admin_id} claimed chat session {session_id}")
            return await self.store.get_session(session_id)

        session = await self.store.get_session(session_id)
        if session is None:
            raise SessionNotFound(session_id=session_id)
        if session.assigned_admin_id == admin_id and session.is_open:
            return session
        # Raises SessionNotFound for ended sessions, AlreadyAssigned for active ones
        transition(session.status, SessionEvent.ASSIGN, session_id)
        raise AlreadyAssigned(session_id=session_id)


class ManualClaimPolicy(AssignmentPolicy):
    """Admins pick sessions themselves; nothing is assigned on start."""

    async def try_assign(self, session: ChatSession) -> Optional[str]:
        return None


class AutoAssignPolicy(AssignmentPolicy):
    """Give new sessions to the least loaded online admin with auto-assign on."""

    async def try_assign(self, session: ChatSession) -> Optional[str]:
        candidates = []
        for status in await self.store.list_available_admins():
            if not status.auto_assign:
                continue
            load = await self.store.count_active_for_admin(status.user_id)
            if load < status.max_concurrent_chats:
                candidates.append((load, status.last_activity_at, status.user_id))
        if not candidates:
            return None

        # Fewest active chats first, then the longest idle admin
        candidates.sort(key=lambda c: (c[0], c[1]))
        admin_id = candidates[0][2]
        try:
            await self.claim(session.id, admin_id)
        except (AlreadyAssigned, SessionNotFound):
            return None
        return admin_id


def build_policy(name: str, store: SessionStore) -> AssignmentPolicy:
    policies = {
        "manual": ManualClaimPolicy,
        "auto": AutoAssignPolicy,
    }
    if name not in policies:
        raise ValueError(f"Unknown assignment policy: {name}")
    return policies[name](store)
