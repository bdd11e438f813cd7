from pydantic_settings import BaseSettings
from functools import lru_cache


class AuthSettings(BaseSettings):
    """Authentication settings."""

    # JWT Configuration
    JWT_SECRET_KEY: str = "your-super-secret-jwt-key-change-this-in-production-minimum-32-characters"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 30

    # Password Requirements
    PASSWORD_MIN_LENGTH: int = 8

    # Default admin account, created on first startup when no user has its email
    BOOTSTRAP_ADMIN: bool = True
    DEFAULT_ADMIN_USERNAME: str = "admin"
    DEFAULT_ADMIN_EMAIL: str = "admin@example.com"
    DEFAULT_ADMIN_PASSWORD: str = "Admin123!"

    class Config:
        env_prefix = "AUTH_"
        env_file = ".env"
        extra = "ignore"


@lru_cache()
def get_auth_settings():
    """Get cached auth settings instance."""
    return AuthSettings()
