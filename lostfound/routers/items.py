import logging
import uuid
from typing import List, Optional
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field, ValidationError
from sqlmodel import Session

from lostfound.db.db import get_session
from lostfound.models.enums import ItemStatus, ItemType
from lostfound.models.item import Item
from lostfound.models.profile import Profile
from lostfound.services import items as item_service
from lostfound.utils import change_feed
from lostfound.utils.auth_helper import get_caller, get_caller_optional
from lostfound.utils.form_validator import validate_create_item_form
from lostfound.utils.policies import (
    DELETE,
    INSERT,
    ITEM_IMAGES_BUCKET,
    SELECT,
    UPDATE,
    Caller,
    authorize,
)
from lostfound.utils.storage_service import purge_object, read_image_upload, upload_image


router = APIRouter()

logger = logging.getLogger(__name__)


class ItemUpdateRequest(BaseModel):
    model_config = {"extra": "forbid"}

    title: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, min_length=10, max_length=1000)
    category: Optional[str] = Field(default=None, min_length=2, max_length=50)
    location: Optional[str] = Field(default=None, min_length=2, max_length=100)
    tags: Optional[List[str]] = Field(default=None, max_length=10)
    status: Optional[ItemStatus] = None


class ItemStatusRequest(BaseModel):
    status: ItemStatus


def get_visible_item(session: Session, caller: Caller, item_id: uuid.UUID) -> Item:
    item = session.get(Item, item_id)

    if not item:
        raise HTTPException(status_code=404, detail="Item not found")

    authorize("items", SELECT, caller, item)
    return item


@router.post("/create")
async def add_item(
    item_type: str = Form(...),
    title: str = Form(...),
    description: str = Form(...),
    category: str = Form(...),
    location: str = Form(...),
    tags: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    form = validate_create_item_form(item_type, title, description, category, location, tags)

    db_item = Item(
        user_id=caller.id,
        title=form.title,
        description=form.description,
        category=form.category,
        location=form.location,
        tags=form.tags,
        type=form.item_type,
    )
    authorize("items", INSERT, caller, db_item)

    # image is optional; the item is stored only after the upload went through
    if image is not None and image.filename:
        raw_bytes = await read_image_upload(image)
        db_item.image_url = upload_image(caller, ITEM_IMAGES_BUCKET, raw_bytes)

    session.add(db_item)
    session.commit()
    session.refresh(db_item)

    change_feed.get_change_feed().publish("items", change_feed.INSERT, db_item)
    logger.info("Item %s reported by %s", db_item.id, caller.id)

    return {"id": str(db_item.id)}


@router.get("/all")
async def get_all_items(
    search: Optional[str] = None,
    item_type: Optional[ItemType] = None,
    category: Optional[str] = None,
    status: Optional[ItemStatus] = ItemStatus.ACTIVE,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller_optional),
):
    # the select policy still applies: non-active items only reach owners and admins
    items = item_service.list_items(session, caller, status=status)
    items = item_service.filter_items(items, search=search, item_type=item_type, category=category)

    return {
        "items": item_service.attach_profiles(session, items),
    }


@router.get("/recent")
async def get_recent_items(
    limit: int = Query(item_service.RECENT_ITEMS_LIMIT, ge=1, le=50),
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller_optional),
):
    return {
        "items": item_service.fetch_items_with_profiles(
            session, caller, status=ItemStatus.ACTIVE, limit=limit
        ),
    }


@router.get("/{item_id}")
async def get_item(
    item_id: uuid.UUID,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller_optional),
):
    item = get_visible_item(session, caller, item_id)
    owner = session.get(Profile, item.user_id)

    return {
        "item": item,
        "reporter": item_service.profile_summary(owner),
        "is_owner": caller.id == item.user_id,
    }


@router.patch("/{item_id}")
async def update_item(
    item_id: uuid.UUID,
    updates: dict,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    item = get_visible_item(session, caller, item_id)
    authorize("items", UPDATE, caller, item)

    if "type" in updates:
        raise HTTPException(
            status_code=400,
            detail="Field 'type' cannot be updated",
        )

    try:
        payload = ItemUpdateRequest.model_validate(updates)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.errors(include_url=False, include_context=False))

    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is None:
            raise HTTPException(status_code=400, detail=f"Field '{field}' cannot be empty")

        if isinstance(value, str):
            value = value.strip()
        elif field == "tags":
            value = [tag.strip() for tag in value if tag.strip()]

        setattr(item, field, value)

    session.add(item)
    session.commit()
    session.refresh(item)

    change_feed.get_change_feed().publish("items", change_feed.UPDATE, item)

    return {"id": str(item.id)}


@router.patch("/{item_id}/status")
async def update_item_status(
    item_id: uuid.UUID,
    payload: ItemStatusRequest,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    item = get_visible_item(session, caller, item_id)
    authorize("items", UPDATE, caller, item)

    item.status = payload.status
    session.add(item)
    session.commit()
    session.refresh(item)

    change_feed.get_change_feed().publish("items", change_feed.UPDATE, item)
    logger.info("Item %s status set to %s by %s", item.id, payload.status.value, caller.id)

    return {"id": str(item.id), "status": item.status}


@router.delete("/{item_id}")
async def delete_item(
    item_id: uuid.UUID,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    item = get_visible_item(session, caller, item_id)
    authorize("items", DELETE, caller, item)

    deleted = item.model_dump(mode="json")
    image_path = item_service.delete_item(session, item)

    if image_path:
        purge_object(ITEM_IMAGES_BUCKET, image_path)

    change_feed.get_change_feed().publish("items", change_feed.DELETE, deleted)

    return True
