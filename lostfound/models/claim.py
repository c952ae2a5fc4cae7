import uuid
from sqlmodel import Field, SQLModel, UniqueConstraint
from datetime import datetime, timezone

from lostfound.models.enums import ClaimStatus, enum_column


class Claim(SQLModel, table=True):
    __tablename__ = "claims"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column_kwargs={"onupdate": lambda: datetime.now(timezone.utc)},
    )

    item_id: uuid.UUID = Field(foreign_key="items.id", index=True, ondelete="CASCADE")
    claimant_id: uuid.UUID = Field(foreign_key="accounts.id", index=True, ondelete="CASCADE")

    # Content
    message: str

    status: ClaimStatus = Field(
        default=ClaimStatus.PENDING,
        sa_column=enum_column(ClaimStatus, "claim_status", default=ClaimStatus.PENDING, index=True),
    )

    __table_args__ = (
        # A user can claim the same item only once
        UniqueConstraint(
            "item_id",
            "claimant_id",
            name="uq_claim_item_claimant"
        ),
    )
