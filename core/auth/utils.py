import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from jose import JWTError, jwt
from passlib.context import CryptContext
from core.auth.schemas import TokenDataSchema
from core.auth.models import User
from core.auth.config import get_auth_settings


pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=12,
    bcrypt__ident="2b"
)


class PasswordUtils:
    """Utilities for password hashing and verification."""

    @staticmethod
    def _truncate(password: str) -> str:
        # Bcrypt has a 72-byte limit
        if len(password.encode('utf-8')) > 72:
            password = password.encode('utf-8')[:72].decode('utf-8', errors='ignore')
        return password

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password using bcrypt."""
        return pwd_context.hash(PasswordUtils._truncate(password))

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        """Verify a password against its hash."""
        return pwd_context.verify(PasswordUtils._truncate(plain_password), hashed_password)


class JWTUtils:
    """Utilities for JWT token creation and validation."""

    @staticmethod
    def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> Tuple[str, str, int]:
        """
        Create a JWT access token for a user.

        Returns:
            tuple: (token, jti, expires_in_seconds)
        """
        settings = get_auth_settings()
        issued_at = datetime.utcnow()
        expire = issued_at + (expires_delta or timedelta(minutes=settings.JWT_EXPIRE_MINUTES))
        jti = str(uuid.uuid4())  # Unique token identifier

        to_encode = {
            "sub": str(user.id),
            "username": user.username,
            "role": user.role,
            "exp": expire,
            "iat": issued_at,
            "jti": jti
        }

        encoded_jwt = jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
        expires_in = int((expire - issued_at).total_seconds())

        return encoded_jwt, jti, expires_in

    @staticmethod
    def verify_token(token: str) -> Optional[TokenDataSchema]:
        """
        Verify and decode a JWT token.

        Returns:
            TokenDataSchema if valid, None if invalid or expired
        """
        settings = get_auth_settings()
        try:
            payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        except JWTError:
            return None

        required = ("sub", "username", "role", "exp", "iat", "jti")
        if not all(payload.get(key) for key in required):
            return None
        return TokenDataSchema(**{key: payload[key] for key in required})

    @staticmethod
    def is_token_expired(token_data: TokenDataSchema) -> bool:
        """Check if a token is expired."""
        return datetime.now(timezone.utc).timestamp() > token_data.exp
