import uuid
from sqlmodel import Field, SQLModel
from datetime import datetime, timezone

class Notification(SQLModel, table=True):
    __tablename__ = "notifications"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Ownership
    user_id: uuid.UUID = Field(foreign_key="accounts.id", index=True, ondelete="CASCADE")

    # Notification fields
    type: str = Field(index=True) # e.g. NOTIFICATION_MESSAGE, NOTIFICATION_CLAIM

    title: str
    message: str

    read: bool = Field(default=False)


NOTIFICATION_MESSAGE = "message"
NOTIFICATION_CLAIM = "claim"
