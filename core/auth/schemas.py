import uuid
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from core.auth.models import UserRole


# Request Schemas
class UserRegisterSchema(BaseModel):
    """Schema for creating a portal account."""
    username: str = Field(..., min_length=3, max_length=100, description="Username")
    email: EmailStr = Field(..., description="Email address")
    password: str = Field(..., min_length=8, max_length=128, description="Password")
    role: Optional[str] = Field(default=UserRole.USER, description="User role")

    @field_validator('username')
    @classmethod
    def validate_username(cls, v):
        if not v.replace('_', '').replace('-', '').replace('.', '').isalnum():
            raise ValueError('Username must contain only alphanumeric characters, underscores, hyphens, and dots')
        return v.lower()

    @field_validator('role')
    @classmethod
    def validate_role(cls, v):
        if v and not UserRole.is_valid_role(v):
            raise ValueError(f'Invalid role. Must be one of: {", ".join(UserRole.all_roles())}')
        return v or UserRole.USER

    @field_validator('password')
    @classmethod
    def validate_password(cls, v):
        if not any(c.isupper() for c in v):
            raise ValueError('Password must contain at least one uppercase letter')
        if not any(c.islower() for c in v):
            raise ValueError('Password must contain at least one lowercase letter')
        if not any(c.isdigit() for c in v):
            raise ValueError('Password must contain at least one digit')
        return v


class UserLoginSchema(BaseModel):
    """Schema for user login."""
    username: str = Field(..., description="Username or email")
    password: str = Field(..., description="Password")


# Response Schemas
class UserResponseSchema(BaseModel):
    """Schema for user response (without sensitive data)."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    username: str
    email: str
    role: str
    is_active: bool
    last_login: Optional[datetime] = None
    created_at: datetime


class UserLoginResponseSchema(BaseModel):
    """Minimal user info for login response."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    username: str
    role: str


class TokenResponseSchema(BaseModel):
    """Schema for authentication token response."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    user: UserLoginResponseSchema


class TokenDataSchema(BaseModel):
    """Schema for JWT token data."""
    sub: str  # user_id
    username: str
    role: str
    exp: int
    iat: int
    jti: str
