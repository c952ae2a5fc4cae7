from typing import Optional
import uuid
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


class Account(SQLModel, table=True):
    """Identity issued by the sign-in provider. The app-owned data lives on Profile."""

    __tablename__ = "accounts"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    email: str = Field(index=True, unique=True)
    google_id: Optional[str] = Field(default=None, index=True, unique=True)
