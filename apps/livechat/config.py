from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List


class LivechatSettings(BaseSettings):
    DATABASE_URL: str

    # Session lifecycle
    IDLE_TIMEOUT_SECONDS: int = 1800
    IDLE_SWEEP_INTERVAL_SECONDS: float = 60.0
    RECONNECT_GRACE_SECONDS: int = 300

    # Typing indicators
    TYPING_TIMEOUT_SECONDS: float = 5.0
    TYPING_SWEEP_INTERVAL_SECONDS: float = 1.0

    # Messages and transport
    MAX_MESSAGE_LENGTH: int = 10000
    OUTBOX_MAX_SIZE: int = 256

    # "manual" (admins claim sessions) or "auto" (least loaded available admin)
    ASSIGNMENT_POLICY: str = "manual"

    DEFAULT_SUBJECT: str = "General Support"
    DEFAULT_DEPARTMENT: str = "general"

    LOG_LEVEL: str = "INFO"

    # CORS settings
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: List[str] = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    CORS_ALLOW_HEADERS: List[str] = [
        "*",
        "X-Forwarded-For",
        "X-Forwarded-Proto",
        "X-Forwarded-Host",
        "X-Real-IP",
        "Content-Type",
        "Authorization",
        "Accept",
        "Origin",
    ]

    class Config:
        env_prefix = "LIVECHAT_"
        env_file = ".env"
        extra = "ignore"  # Ignore extra fields from .env


@lru_cache()
def get_livechat_settings():
    return LivechatSettings()
