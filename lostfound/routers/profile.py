import logging
import re
import uuid
from fastapi import APIRouter, File, HTTPException, UploadFile
from fastapi.params import Depends
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from lostfound.db.db import get_session
from lostfound.models.enums import AppRole, ItemType
from lostfound.models.profile import Profile
from lostfound.services import items as item_service
from lostfound.utils import change_feed
from lostfound.utils.auth_helper import get_caller, get_caller_optional, get_db_profile
from lostfound.utils.handles import MAX_USERNAME_LENGTH
from lostfound.utils.policies import AVATARS_BUCKET, Caller, authorize_profile_update
from lostfound.utils.storage_service import (
    delete_object,
    path_from_public_url,
    read_image_upload,
    upload_image,
)


router = APIRouter()

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(rf"^[a-z0-9_]{{3,{MAX_USERNAME_LENGTH}}}$")

ALLOWED_FIELDS = {
    "username",
    "full_name",
    "avatar_url",
    "role",
}


def split_by_type(items):
    lost_items = [item for item in items if item["type"] == ItemType.LOST]
    found_items = [item for item in items if item["type"] == ItemType.FOUND]

    return lost_items, found_items


def _clean_profile_value(field: str, value):
    if field == "role":
        try:
            return AppRole(value)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid role")

    if value is not None and not isinstance(value, str):
        raise HTTPException(status_code=400, detail=f"Field '{field}' must be a string")

    value = (value or "").strip()

    if field == "username":
        value = value.lower()
        if not USERNAME_PATTERN.match(value):
            raise HTTPException(
                status_code=400,
                detail=f"Username must be 3-{MAX_USERNAME_LENGTH} characters of a-z, 0-9 or _",
            )
        return value

    return value or None


def apply_profile_updates(session: Session, caller: Caller, profile: Profile, updates: dict) -> Profile:
    for field in updates:
        if field not in ALLOWED_FIELDS:
            raise HTTPException(
                status_code=400,
                detail=f"Field '{field}' cannot be updated",
            )

    authorize_profile_update(caller, profile, updates.keys())

    for field, value in updates.items():
        setattr(profile, field, _clean_profile_value(field, value))

    try:
        session.add(profile)
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(status_code=409, detail="Username is already taken")

    session.refresh(profile)
    change_feed.get_change_feed().publish("profiles", change_feed.UPDATE, profile)

    return profile


@router.get("/me")
async def get_my_profile(
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    return get_db_profile(session, caller)


@router.patch("/me")
async def update_my_profile(
    updates: dict,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    profile = get_db_profile(session, caller)
    return apply_profile_updates(session, caller, profile, updates)


@router.post("/me/avatar")
async def upload_avatar(
    image: UploadFile = File(...),
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    profile = get_db_profile(session, caller)

    raw_bytes = await read_image_upload(image)
    avatar_url = upload_image(caller, AVATARS_BUCKET, raw_bytes)

    old_path = path_from_public_url(AVATARS_BUCKET, profile.avatar_url)
    profile = apply_profile_updates(session, caller, profile, {"avatar_url": avatar_url})

    if old_path:
        delete_object(caller, AVATARS_BUCKET, old_path)

    logger.info("Avatar updated for %s", caller.id)
    return {"avatar_url": profile.avatar_url}


@router.get("/me/stats")
async def get_my_stats(
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    return item_service.get_user_stats(session, caller.id)


@router.get("/me/items")
async def get_my_items(
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    items = item_service.fetch_items_with_profiles(session, caller, status=None, user_id=caller.id)

    # Separate by type
    lost_items, found_items = split_by_type(items)

    return {
        "lost_items": lost_items,
        "found_items": found_items,
    }


@router.get("/{user_id}")
async def get_profile(
    user_id: uuid.UUID,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller_optional),
):
    # Fetch profile user (the user being viewed)
    profile_user = session.exec(
        select(Profile).where(Profile.id == user_id)
    ).first()

    if not profile_user:
        raise HTTPException(status_code=404, detail="User not found")

    # items go through the select policy of the viewer
    items = item_service.fetch_items_with_profiles(session, caller, status=None, user_id=profile_user.id)
    lost_items, found_items = split_by_type(items)

    return {
        "user": item_service.profile_summary(profile_user) | {"created_at": profile_user.created_at},
        "lost_items": lost_items,
        "found_items": found_items,
    }
