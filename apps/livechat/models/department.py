from sqlmodel import SQLModel, Field
from datetime import datetime
from typing import Optional


class ChatDepartment(SQLModel, table=True):
    __tablename__ = "chat_departments"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    is_default: bool = Field(default=False)
    is_active: bool = Field(default=True)
    display_order: int = Field(default=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
