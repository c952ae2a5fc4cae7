import uuid
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone


class Message(SQLModel, table=True):
    __tablename__ = "messages"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column_kwargs={"onupdate": lambda: datetime.now(timezone.utc)},
    )

    sender_id: uuid.UUID = Field(foreign_key="accounts.id", index=True, ondelete="CASCADE")
    recipient_id: uuid.UUID = Field(foreign_key="accounts.id", index=True, ondelete="CASCADE")
    item_id: uuid.UUID = Field(foreign_key="items.id", index=True, ondelete="CASCADE")

    message: str
    read: bool = Field(default=False)
