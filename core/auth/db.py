import logging
from sqlalchemy.ext.asyncio import AsyncSession
from apps.livechat.db import AsyncSessionLocal

logger = logging.getLogger(__name__)


async def get_auth_session() -> AsyncSession:
    """Get auth database session - shares the live chat database connection."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def create_super_admin(session_factory=AsyncSessionLocal):
    """Create the configured super admin user if it doesn't exist."""
    from core.auth.services import AuthService
    from core.auth.config import get_auth_settings

    auth_settings = get_auth_settings()
    async with session_factory() as session:
        return await AuthService(session).ensure_admin(
            username=auth_settings.DEFAULT_ADMIN_USERNAME,
            email=auth_settings.DEFAULT_ADMIN_EMAIL,
            password=auth_settings.DEFAULT_ADMIN_PASSWORD,
        )


async def setup_initial_data(session_factory=AsyncSessionLocal):
    """Setup initial auth data. Failures are logged, never fatal to startup."""
    from core.auth.config import get_auth_settings

    if not get_auth_settings().BOOTSTRAP_ADMIN:
        return None
    try:
        return await create_super_admin(session_factory)
    except Exception as e:
        logger.exception(f"Error setting up initial auth data: {e}")
        return None
