import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete
from sqlmodel import Session, col, func, select

from lostfound.db.db import atomic
from lostfound.models.claim import Claim
from lostfound.models.enums import ItemStatus, ItemType
from lostfound.models.item import Item
from lostfound.models.message import Message
from lostfound.models.profile import Profile
from lostfound.utils.policies import ITEM_IMAGES_BUCKET, Caller, visible_items_clause
from lostfound.utils.storage_service import path_from_public_url

logger = logging.getLogger(__name__)

RECENT_ITEMS_LIMIT = 12


def profile_summary(profile: Optional[Profile]) -> Optional[dict]:
    if profile is None:
        return None

    return {
        "id": str(profile.id),
        "username": profile.username,
        "full_name": profile.full_name,
        "avatar_url": profile.avatar_url,
        "role": profile.role,
    }


def list_items(
    session: Session,
    caller: Caller,
    status: Optional[ItemStatus] = ItemStatus.ACTIVE,
    user_id=None,
    limit: Optional[int] = None,
) -> List[Item]:
    query = (
        select(Item)
        .where(visible_items_clause(caller))
        .order_by(col(Item.created_at).desc())
    )

    if status is not None:
        query = query.where(Item.status == status)

    if user_id is not None:
        query = query.where(Item.user_id == user_id)

    if limit is not None:
        query = query.limit(limit)

    return list(session.exec(query).all())


def attach_profiles(session: Session, items: Iterable[Item]) -> List[dict]:
    """Join items with their posters' profiles: one query for all distinct owners."""
    items = list(items)
    owner_ids = {item.user_id for item in items}

    profiles_map: Dict = {}
    if owner_ids:
        profiles = session.exec(select(Profile).where(col(Profile.id).in_(owner_ids))).all()
        profiles_map = {profile.id: profile for profile in profiles}

    results = []
    for item in items:
        data = item.model_dump()
        data["profiles"] = profile_summary(profiles_map.get(item.user_id))
        results.append(data)

    return results


def fetch_items_with_profiles(session: Session, caller: Caller, **filters) -> List[dict]:
    return attach_profiles(session, list_items(session, caller, **filters))


def filter_items(
    items: Iterable[Item],
    search: Optional[str] = None,
    item_type: Optional[ItemType] = None,
    category: Optional[str] = None,
) -> List[Item]:
    """Case-insensitive substring search on title, description and location, plus exact filters."""
    term = (search or "").strip().lower()
    category = (category or "").strip().lower()

    def matches(item: Item) -> bool:
        if term and not any(
            term in (value or "").lower()
            for value in (item.title, item.description, item.location)
        ):
            return False

        if item_type is not None and item.type != item_type:
            return False

        if category and item.category.lower() != category:
            return False

        return True

    return [item for item in items if matches(item)]


def get_user_stats(session: Session, user_id) -> dict:
    items_submitted = session.exec(
        select(func.count(Item.id)).where(Item.user_id == user_id)
    ).one()

    claims_made = session.exec(
        select(func.count(Claim.id)).where(Claim.claimant_id == user_id)
    ).one()

    return {
        "items_submitted": items_submitted,
        "claims_made": claims_made,
    }


def delete_item(session: Session, item: Item) -> Optional[str]:
    """Delete an item with its claims and messages. Returns its image path, if stored by us."""
    image_path = path_from_public_url(ITEM_IMAGES_BUCKET, item.image_url)
    item_id = item.id

    with atomic(session):
        session.exec(delete(Claim).where(col(Claim.item_id) == item_id))
        session.exec(delete(Message).where(col(Message.item_id) == item_id))
        session.delete(item)

    logger.info("Deleted item %s", item_id)
    return image_path
