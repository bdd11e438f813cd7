import logging
from functools import lru_cache

from sqlalchemy.ext.asyncio import async_sessionmaker

from apps.livechat.config import LivechatSettings, get_livechat_settings
from apps.livechat.schemas import EventType, envelope
from apps.livechat.services.assignment import build_policy
from apps.livechat.services.connection_registry import Connection, ConnectionRegistry, Identity, Transport
from apps.livechat.services.message_router import MessageRouter
from apps.livechat.services.session_manager import SessionLifecycleManager
from apps.livechat.services.session_store import SessionStore
from apps.livechat.services.sweeper import ChatSweeper
from apps.livechat.services.typing_tracker import TypingTracker

logger = logging.getLogger(__name__)


class LiveChatService:
    """Wires the live chat components together for one server process."""

    def __init__(self, session_factory: async_sessionmaker, settings: LivechatSettings):
        self.settings = settings
        self.store = SessionStore(session_factory)
        self.registry = ConnectionRegistry(max_outbox=settings.OUTBOX_MAX_SIZE)
        self.typing = TypingTracker(timeout_seconds=settings.TYPING_TIMEOUT_SECONDS)
        self.policy = build_policy(settings.ASSIGNMENT_POLICY, self.store)
        self.manager = SessionLifecycleManager(self.store, self.registry, self.typing, self.policy, settings)
        self.router = MessageRouter(self.manager, self.registry, self.store, self.typing, settings)
        self.sweeper = ChatSweeper(self.manager, self.router, settings)

    def connect(self, transport: Transport, identity: Identity) -> Connection:
        connection = self.registry.register(transport, identity)
        self.registry.send([connection], envelope(EventType.CONNECTION_ESTABLISHED, {
            "connectionId": connection.connection_id,
            "userId": identity.user_id,
            "role": identity.role,
        }))
        return connection

    async def disconnect(self, connection: Connection):
        await self.manager.connection_closed(connection.connection_id)

    async def start(self):
        self.sweeper.start()

    async def shutdown(self):
        await self.sweeper.stop()
        await self.registry.close_all()


@lru_cache()
def get_livechat_service() -> LiveChatService:
    from apps.livechat.db import AsyncSessionLocal

    return LiveChatService(AsyncSessionLocal, get_livechat_settings())
