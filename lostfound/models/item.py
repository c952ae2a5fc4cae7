from typing import List, Optional
import uuid
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone

from lostfound.models.enums import ItemStatus, ItemType, enum_column


class Item(SQLModel, table=True):
    __tablename__ = "items"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column_kwargs={"onupdate": lambda: datetime.now(timezone.utc)},
    )

    # Reporter info
    user_id: uuid.UUID = Field(foreign_key="accounts.id", index=True, ondelete="CASCADE")

    # Item fields
    title: str
    description: str
    image_url: Optional[str] = None
    category: str
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    location: str

    status: ItemStatus = Field(
        default=ItemStatus.ACTIVE,
        sa_column=enum_column(ItemStatus, "item_status", default=ItemStatus.ACTIVE, index=True),
    )
    # fixed at creation
    type: ItemType = Field(sa_column=enum_column(ItemType, "item_type", index=True))
