"""
Chat identities.

An Identity is resolved once, when a live connection opens, and is never
re-checked for the lifetime of that connection.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from core.auth.models import User, UserRole
from core.auth.services import AuthService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: str
    role: str
    username: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return UserRole.is_admin_role(self.role)

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(user_id=str(user.id), role=user.role, username=user.username)


class JWTIdentityProvider:
    """Resolves a bearer token to an Identity for the chat transport."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def resolve(self, token: Optional[str]) -> Optional[Identity]:
        """Return the token's identity, or None if it is missing, invalid, revoked or inactive."""
        if not token:
            return None
        async with self.session_factory() as db:
            user = await AuthService(db).verify_token(token)
        if user is None or not user.is_active:
            logger.warning("Rejected chat connection with an invalid token")
            return None
        return Identity.from_user(user)
