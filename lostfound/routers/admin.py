import logging
import uuid
from typing import List, Literal, Optional
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session, col, select, func
from sqlalchemy.orm import aliased
from pydantic import BaseModel

from lostfound.db.db import get_session
from lostfound.models.claim import Claim
from lostfound.models.enums import AppRole, ClaimStatus, ItemStatus
from lostfound.models.item import Item
from lostfound.models.profile import Profile
from lostfound.routers.profile import apply_profile_updates
from lostfound.services import accounts as account_service
from lostfound.services import items as item_service
from lostfound.utils.auth_helper import require_admin
from lostfound.utils.policies import DELETE, Caller, authorize
from lostfound.utils.storage_service import purge_object

router = APIRouter()

logger = logging.getLogger(__name__)


# Response Models
class OverviewStats(BaseModel):
    total_items: int
    items_current_month: int
    items_by_status: dict
    total_users: int
    claims_pending: int
    claims_by_status: dict


class ClaimDetail(BaseModel):
    id: str
    item_id: str
    item_title: str
    item_status: str
    item_owner_username: str
    item_owner_id: str
    claimant_username: str
    claimant_id: str
    status: str
    message: str
    created_at: datetime
    updated_at: datetime


class UserDetail(BaseModel):
    id: str
    username: str
    full_name: Optional[str]
    avatar_url: Optional[str]
    role: str
    created_at: datetime
    items_posted: int
    claims_made: int


class RoleUpdateRequest(BaseModel):
    role: AppRole


def _counts_by(session: Session, column) -> dict:
    return {
        getattr(key, "value", key): count
        for key, count in session.exec(select(column, func.count()).group_by(column)).all()
    }


@router.get("/stats", response_model=OverviewStats)
def get_overview_stats(
    session: Session = Depends(get_session),
    admin: Caller = Depends(require_admin)
):
    """Get overview statistics for the admin dashboard"""
    now = datetime.now(timezone.utc)
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    total_items = session.exec(select(func.count(Item.id))).one()

    items_current = session.exec(
        select(func.count(Item.id)).where(Item.created_at >= month_start)
    ).one()

    total_users = session.exec(select(func.count(Profile.id))).one()

    claims_by_status = _counts_by(session, Claim.status)

    return OverviewStats(
        total_items=total_items,
        items_current_month=items_current,
        items_by_status=_counts_by(session, Item.status),
        total_users=total_users,
        claims_pending=claims_by_status.get(ClaimStatus.PENDING.value, 0),
        claims_by_status=claims_by_status,
    )


@router.get("/items")
def get_items_for_moderation(
    status: Optional[ItemStatus] = None,
    limit: int = Query(100, ge=1, le=500),
    session: Session = Depends(get_session),
    admin: Caller = Depends(require_admin),
):
    """All items, whatever their status, with their posters"""
    return {
        "items": item_service.fetch_items_with_profiles(session, admin, status=status, limit=limit),
    }


@router.get("/claims", response_model=List[ClaimDetail])
def get_claims_for_moderation(
    status: Literal["pending", "approved", "rejected", None] = None,
    limit: int = Query(50, ge=1, le=100),
    session: Session = Depends(get_session),
    admin: Caller = Depends(require_admin)
):
    """Get claims for moderation"""

    Owner = aliased(Profile)

    query = (
        select(Claim, Item, Profile, Owner)
        .join(Item, col(Claim.item_id) == col(Item.id))
        .join(Profile, col(Claim.claimant_id) == col(Profile.id))
        .join(Owner, col(Item.user_id) == Owner.id)
        .order_by(col(Claim.created_at).desc())
        .limit(limit)
    )

    if status:
        query = query.where(Claim.status == status)

    results = session.exec(query).all()

    claims = []

    for claim, item, claimant, owner in results:
        claims.append(ClaimDetail(
            id=str(claim.id),
            item_id=str(item.id),
            item_title=item.title,
            item_status=ItemStatus(item.status).value,
            item_owner_username=owner.username,
            item_owner_id=str(owner.id),
            claimant_username=claimant.username,
            claimant_id=str(claimant.id),
            status=ClaimStatus(claim.status).value,
            message=claim.message,
            created_at=claim.created_at,
            updated_at=claim.updated_at,
        ))

    return claims


@router.get("/users", response_model=List[UserDetail])
def get_users_for_management(
    session: Session = Depends(get_session),
    admin: Caller = Depends(require_admin)
):
    """Get all users with their activity counts"""
    users = session.exec(select(Profile).order_by(col(Profile.created_at).desc())).all()

    items_posted = dict(session.exec(
        select(Item.user_id, func.count(Item.id)).group_by(Item.user_id)
    ).all())
    claims_made = dict(session.exec(
        select(Claim.claimant_id, func.count(Claim.id)).group_by(Claim.claimant_id)
    ).all())

    return [
        UserDetail(
            id=str(user.id),
            username=user.username,
            full_name=user.full_name,
            avatar_url=user.avatar_url,
            role=AppRole(user.role).value,
            created_at=user.created_at,
            items_posted=items_posted.get(user.id, 0),
            claims_made=claims_made.get(user.id, 0),
        )
        for user in users
    ]


@router.patch("/users/{user_id}/role")
def update_user_role(
    user_id: uuid.UUID,
    payload: RoleUpdateRequest,
    session: Session = Depends(get_session),
    admin: Caller = Depends(require_admin),
):
    """Promote or demote a user"""
    profile = session.get(Profile, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="User not found")

    if profile.id == admin.id and payload.role != AppRole.ADMIN:
        raise HTTPException(status_code=400, detail="You cannot demote yourself")

    profile = apply_profile_updates(session, admin, profile, {"role": payload.role.value})
    logger.info("User %s role set to %s by %s", user_id, payload.role.value, admin.id)

    return {"ok": True, "role": profile.role}


@router.delete("/users/{user_id}")
def delete_user(
    user_id: uuid.UUID,
    session: Session = Depends(get_session),
    admin: Caller = Depends(require_admin),
):
    """Delete a user with all their items, claims, messages and notifications"""
    profile = session.get(Profile, user_id)
    if not profile:
        raise HTTPException(status_code=404, detail="User not found")

    if profile.id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")

    authorize("profiles", DELETE, admin, profile)

    username = profile.username
    objects = account_service.delete_account(session, user_id)

    for bucket, path in objects:
        purge_object(bucket, path)

    return {
        "ok": True,
        "message": f'User "{username}" and all associated data deleted successfully',
    }
