import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_, or_
from fastapi import HTTPException, status

from core.auth.models import User, UserSession, UserRole
from core.auth.schemas import UserRegisterSchema
from core.auth.utils import PasswordUtils, JWTUtils

logger = logging.getLogger(__name__)


class AuthService:
    """Service class for authentication operations."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def register_user(self, user_data: UserRegisterSchema) -> User:
        """Register a new user."""
        existing_user = await self.get_user_by_username(user_data.username)
        if existing_user:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Username already exists"
            )

        existing_email = await self.get_user_by_email(user_data.email)
        if existing_email:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Email already registered"
            )

        user = User(
            username=user_data.username,
            email=user_data.email.lower(),
            password_hash=PasswordUtils.hash_password(user_data.password),
            role=user_data.role
        )

        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def authenticate_user(self, username: str, password: str) -> Optional[User]:
        """Authenticate a user by username/email and password."""
        stmt = select(User).where(
            and_(
                or_(
                    User.username == username.lower(),
                    User.email == username.lower()
                ),
                User.is_active == True  # noqa: E712
            )
        )
        result = await self.db.execute(stmt)
        user = result.scalar_one_or_none()

        if not user or not PasswordUtils.verify_password(password, user.password_hash):
            return None

        user.last_login = datetime.utcnow()
        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def create_access_token(self, user: User) -> Tuple[str, str, int]:
        """Create an access token for a user and record it for revocation."""
        token, jti, expires_in = JWTUtils.create_access_token(user)

        session = UserSession(
            user_id=user.id,
            token_jti=jti,
            expires_at=datetime.utcnow() + timedelta(seconds=expires_in)
        )

        self.db.add(session)
        await self.db.commit()

        return token, jti, expires_in

    async def verify_token(self, token: str) -> Optional[User]:
        """Verify a JWT token and return the user."""
        token_data = JWTUtils.verify_token(token)
        if not token_data or JWTUtils.is_token_expired(token_data):
            return None

        # Check if session exists and is not revoked
        stmt = select(UserSession).where(
            and_(
                UserSession.token_jti == token_data.jti,
                UserSession.is_revoked == False,  # noqa: E712
                UserSession.expires_at > datetime.utcnow()
            )
        )
        result = await self.db.execute(stmt)
        if result.scalar_one_or_none() is None:
            return None

        return await self.get_user_by_id(uuid.UUID(token_data.sub))

    async def revoke_token(self, jti: str) -> bool:
        """Revoke a token by marking its session as revoked."""
        result = await self.db.execute(
            update(UserSession).where(UserSession.token_jti == jti).values(is_revoked=True)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def get_user_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email.lower()))
        return result.scalar_one_or_none()

    async def get_user_by_username(self, username: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.username == username.lower()))
        return result.scalar_one_or_none()

    async def ensure_admin(self, username: str, email: str, password: str) -> User:
        """Create the bootstrap super admin unless an account with that email exists."""
        existing = await self.get_user_by_email(email)
        if existing:
            return existing

        admin = await self.register_user(UserRegisterSchema(
            username=username,
            email=email,
            password=password,
            role=UserRole.SUPER_ADMIN
        ))
        logger.info(f"Created super admin user: {admin.username} ({admin.email})")
        return admin
