from enum import Enum

from sqlalchemy import Column
from sqlalchemy import Enum as SAEnum


class AppRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class ItemType(str, Enum):
    LOST = "lost"
    FOUND = "found"


class ItemStatus(str, Enum):
    ACTIVE = "active"
    CLAIMED = "claimed"
    ARCHIVED = "archived"


class ClaimStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


def enum_column(enum_cls, name: str, default=None, index: bool = False) -> Column:
    """Closed value set stored by value, backed by a CHECK constraint."""
    return Column(
        SAEnum(
            enum_cls,
            name=name,
            create_constraint=True,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        default=default,
        index=index,
    )
