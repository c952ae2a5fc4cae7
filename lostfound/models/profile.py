from typing import Optional
import uuid
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone

from lostfound.models.enums import AppRole, enum_column


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"

    # one profile per account, sharing its id
    id: uuid.UUID = Field(foreign_key="accounts.id", primary_key=True, ondelete="CASCADE")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column_kwargs={"onupdate": lambda: datetime.now(timezone.utc)},
    )

    username: str = Field(index=True, unique=True)
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None

    role: AppRole = Field(
        default=AppRole.USER,
        sa_column=enum_column(AppRole, "app_role", default=AppRole.USER),
    )
