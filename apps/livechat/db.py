from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from apps.livechat.config import get_livechat_settings

# Import models so SQLAlchemy can discover them
from apps.livechat.models import ChatDepartment, ChatSession, ChatMessage, AdminChatStatus
# Import auth models
from core.auth.models import User, UserSession

settings = get_livechat_settings()


def build_engine(database_url: str):
    """Create the async engine; asyncpg connections get pooling and server settings."""
    if database_url.startswith("postgresql+asyncpg"):
        return create_async_engine(
            database_url,
            echo=False,
            future=True,
            pool_pre_ping=True,
            pool_recycle=300,
            connect_args={
                "server_settings": {
                    "application_name": "portal_livechat"
                },
                "ssl": False
            }
        )
    return create_async_engine(database_url, echo=False, future=True)


engine = build_engine(settings.DATABASE_URL)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def init_livechat_db(bind=None):
    async with (bind or engine).begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

