import uuid
from datetime import datetime
from typing import Optional, List
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, ForeignKey, Index, String, Boolean, DateTime, Uuid


class User(SQLModel, table=True):
    """Portal account. Chat identities are derived from it at connect time."""
    __tablename__ = "users"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False)
    )
    username: str = Field(sa_column=Column(String(100), unique=True, nullable=False))
    email: str = Field(sa_column=Column(String(255), unique=True, nullable=False))
    password_hash: str = Field(sa_column=Column(String(255), nullable=False))
    role: str = Field(default="user", sa_column=Column(String(50), nullable=False, default="user"))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    last_login: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))

    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    )
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    )

    # Relationships
    sessions: List["UserSession"] = Relationship(back_populates="user", cascade_delete=True)

    def __repr__(self):
        return f"<User {self.username} ({self.role})>"

    @property
    def is_admin(self) -> bool:
        return UserRole.is_admin_role(self.role)

    __table_args__ = (
        Index('idx_users_role', 'role'),
    )


class UserSession(SQLModel, table=True):
    """Issued JWT, kept so tokens can be revoked on logout."""
    __tablename__ = "user_sessions"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True, nullable=False)
    )
    user_id: uuid.UUID = Field(
        sa_column=Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    )
    token_jti: str = Field(sa_column=Column(String(255), unique=True, nullable=False))  # JWT ID
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    is_revoked: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))

    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    )

    # Relationships
    user: User = Relationship(back_populates="sessions")

    def __repr__(self):
        return f"<UserSession {self.token_jti} (user: {self.user_id})>"

    __table_args__ = (
        Index('idx_user_sessions_user_id', 'user_id'),
        Index('idx_user_sessions_expires_at', 'expires_at'),
    )


class UserRole:
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    USER = "user"

    @classmethod
    def all_roles(cls) -> List[str]:
        return [cls.SUPER_ADMIN, cls.ADMIN, cls.USER]

    @classmethod
    def admin_roles(cls) -> List[str]:
        return [cls.SUPER_ADMIN, cls.ADMIN]

    @classmethod
    def is_valid_role(cls, role: str) -> bool:
        return role in cls.all_roles()

    @classmethod
    def is_admin_role(cls, role: str) -> bool:
        return role in cls.admin_roles()
