"""Row-level access policies.

Every read and write against the schema goes through one predicate per
(table, operation). A predicate takes the caller and the candidate row and
answers allow/deny; claim predicates also receive the claimed item, since
ownership of a claim's item decides who may review it.

Denied reads are reported the same way as missing rows (404), so callers
cannot tell "no such row" apart from "not visible to you".
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from fastapi import HTTPException
from sqlalchemy import true
from sqlmodel import Session, col, or_, select

from lostfound.models.claim import Claim
from lostfound.models.enums import AppRole, ItemStatus
from lostfound.models.item import Item
from lostfound.models.profile import Profile

logger = logging.getLogger(__name__)

SELECT = "select"
INSERT = "insert"
UPDATE = "update"
DELETE = "delete"

ITEM_IMAGES_BUCKET = "item-images"
AVATARS_BUCKET = "profile-avatars"
BUCKETS = (ITEM_IMAGES_BUCKET, AVATARS_BUCKET)

MESSAGE_UPDATABLE_FIELDS = {"read"}


@dataclass(frozen=True)
class Caller:
    id: Optional[uuid.UUID] = None
    role: AppRole = AppRole.USER

    @property
    def is_authenticated(self) -> bool:
        return self.id is not None

    @property
    def is_admin(self) -> bool:
        return self.is_authenticated and self.role == AppRole.ADMIN


ANONYMOUS = Caller()


def get_user_role(session: Session, user_id: Optional[uuid.UUID]) -> Optional[AppRole]:
    """Read one profile's role without going through the select policies.

    Only used to resolve who the caller is. Policies depend on the role, so
    looking it up through them would recurse.
    """
    if user_id is None:
        return None

    role = session.exec(select(Profile.role).where(Profile.id == user_id)).first()
    return AppRole(role) if role is not None else None


def get_item_titles(session: Session, item_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, str]:
    """Titles of the given items, read without going through the items select policy.

    Only used for the conversations view: both participants keep seeing what a
    conversation is about after the item leaves the active listing. Reads the
    title column only.
    """
    item_ids = set(item_ids)
    if not item_ids:
        return {}

    return dict(session.exec(select(Item.id, Item.title).where(col(Item.id).in_(item_ids))).all())


def _is(caller: Caller, user_id) -> bool:
    return caller.is_authenticated and caller.id == user_id


# Profiles

def profile_select(caller, row, parent=None):
    return True

def profile_insert(caller, row, parent=None):
    return _is(caller, row.id)

def profile_update(caller, row, parent=None):
    return _is(caller, row.id)

def profile_delete(caller, row, parent=None):
    return caller.is_admin


# Items

def item_select(caller, row, parent=None):
    return row.status == ItemStatus.ACTIVE or _is(caller, row.user_id) or caller.is_admin

def item_insert(caller, row, parent=None):
    return _is(caller, row.user_id)

def item_update(caller, row, parent=None):
    return _is(caller, row.user_id) or caller.is_admin

def item_delete(caller, row, parent=None):
    return caller.is_admin


# Claims; parent is the claimed item

def _owns_item(caller, item) -> bool:
    return item is not None and _is(caller, item.user_id)

def claim_select(caller, row, parent=None):
    return _owns_item(caller, parent) or _is(caller, row.claimant_id) or caller.is_admin

def claim_insert(caller, row, parent=None):
    return _is(caller, row.claimant_id)

def claim_update(caller, row, parent=None):
    return _owns_item(caller, parent) or caller.is_admin

def claim_delete(caller, row, parent=None):
    return caller.is_admin


# Messages

def message_select(caller, row, parent=None):
    return _is(caller, row.sender_id) or _is(caller, row.recipient_id)

def message_insert(caller, row, parent=None):
    return _is(caller, row.sender_id)

def message_update(caller, row, parent=None):
    return _is(caller, row.recipient_id)


# Notifications

def notification_select(caller, row, parent=None):
    return _is(caller, row.user_id)

def notification_insert(caller, row, parent=None):
    # written by the system on behalf of triggers
    return True

def notification_update(caller, row, parent=None):
    return _is(caller, row.user_id)


Predicate = Callable[..., bool]

POLICIES: Dict[Tuple[str, str], Predicate] = {
    ("profiles", SELECT): profile_select,
    ("profiles", INSERT): profile_insert,
    ("profiles", UPDATE): profile_update,
    ("profiles", DELETE): profile_delete,
    ("items", SELECT): item_select,
    ("items", INSERT): item_insert,
    ("items", UPDATE): item_update,
    ("items", DELETE): item_delete,
    ("claims", SELECT): claim_select,
    ("claims", INSERT): claim_insert,
    ("claims", UPDATE): claim_update,
    ("claims", DELETE): claim_delete,
    ("messages", SELECT): message_select,
    ("messages", INSERT): message_insert,
    ("messages", UPDATE): message_update,
    ("notifications", SELECT): notification_select,
    ("notifications", INSERT): notification_insert,
    ("notifications", UPDATE): notification_update,
}


def is_allowed(table: str, operation: str, caller: Caller, row, parent=None) -> bool:
    predicate = POLICIES.get((table, operation))
    if predicate is None:
        return False  # no policy means no access

    return bool(predicate(caller, row, parent))


def authorize(table: str, operation: str, caller: Caller, row, parent=None) -> None:
    if is_allowed(table, operation, caller, row, parent):
        return

    logger.warning("Denied %s on %s for caller %s", operation, table, caller.id)

    if operation == SELECT:
        raise HTTPException(status_code=404, detail="Not found")

    raise HTTPException(
        status_code=403,
        detail=f"Not authorized to {operation} this {table[:-1]}",
    )


def authorize_profile_update(caller: Caller, row: Profile, fields: Iterable[str]) -> None:
    fields = set(fields)

    # only an admin may change anybody's role, including their own
    if "role" in fields and not caller.is_admin:
        raise HTTPException(status_code=403, detail="Only an admin can change roles")

    if fields - {"role"}:
        authorize("profiles", UPDATE, caller, row)


def authorize_message_update(caller: Caller, row, fields: Iterable[str]) -> None:
    blocked = set(fields) - MESSAGE_UPDATABLE_FIELDS
    if blocked:
        raise HTTPException(status_code=400, detail=f"Field '{sorted(blocked)[0]}' cannot be updated")

    authorize("messages", UPDATE, caller, row)


# Select policies as SQL, for list queries

def visible_items_clause(caller: Caller):
    if caller.is_admin:
        return true()

    clause = col(Item.status) == ItemStatus.ACTIVE
    if caller.is_authenticated:
        clause = or_(clause, col(Item.user_id) == caller.id)

    return clause


def visible_claims_clause(caller: Caller):
    if caller.is_admin:
        return true()

    owned_items = select(Item.id).where(Item.user_id == caller.id)
    return or_(
        col(Claim.claimant_id) == caller.id,
        col(Claim.item_id).in_(owned_items),
    )


# Storage objects: ownership is the first folder of the object path

def object_owner(path: str) -> Optional[str]:
    folder, sep, _ = path.partition("/")
    return folder if sep else None


def can_access_object(bucket: str, operation: str, caller: Caller, path: str) -> bool:
    if bucket not in BUCKETS:
        return False

    if operation == SELECT:
        return True

    if not caller.is_authenticated:
        return False

    if operation == INSERT and bucket == AVATARS_BUCKET:
        return True

    return object_owner(path) == str(caller.id)


def authorize_object(bucket: str, operation: str, caller: Caller, path: str) -> None:
    if not can_access_object(bucket, operation, caller, path):
        logger.warning("Denied %s on %s/%s for caller %s", operation, bucket, path, caller.id)
        raise HTTPException(status_code=403, detail="Not authorized to modify this file")
