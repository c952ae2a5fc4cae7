import uuid
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlmodel import Session, col, select

from lostfound.db.db import get_session
from lostfound.models.claim import Claim
from lostfound.models.enums import ClaimStatus
from lostfound.models.item import Item
from lostfound.models.profile import Profile
from lostfound.services import claims as claim_service
from lostfound.services.items import profile_summary
from lostfound.utils.auth_helper import get_caller
from lostfound.utils.policies import Caller, visible_claims_clause


router = APIRouter()


class ClaimCreateRequest(BaseModel):
    item_id: uuid.UUID
    message: str = Field(min_length=1, max_length=1000)


class ClaimStatusRequest(BaseModel):
    status: ClaimStatus


def claims_with_details(session: Session, claims) -> list:
    """Attach item titles and claimant profiles with one query per table."""
    item_ids = {claim.item_id for claim in claims}
    claimant_ids = {claim.claimant_id for claim in claims}

    items = {}
    profiles = {}
    if claims:
        items = {i.id: i for i in session.exec(select(Item).where(col(Item.id).in_(item_ids))).all()}
        profiles = {
            p.id: p for p in session.exec(select(Profile).where(col(Profile.id).in_(claimant_ids))).all()
        }

    results = []
    for claim in claims:
        item = items.get(claim.item_id)
        data = claim.model_dump()
        data["item"] = {
            "id": str(item.id),
            "title": item.title,
            "status": item.status,
            "type": item.type,
            "user_id": str(item.user_id),
        } if item else None
        data["claimant"] = profile_summary(profiles.get(claim.claimant_id))
        results.append(data)

    return results


@router.post("/create")
def create_claim(
    payload: ClaimCreateRequest,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    claim = claim_service.create_claim(session, caller, payload.item_id, payload.message)

    return {
        "ok": True,
        "claim_id": str(claim.id),
        "status": claim.status,
    }


@router.get("/mine")
def get_my_claims(
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    """Claims the caller has submitted."""
    claims = session.exec(
        select(Claim)
        .where(Claim.claimant_id == caller.id)
        .order_by(col(Claim.created_at).desc())
    ).all()

    return {"claims": claims_with_details(session, claims)}


@router.get("/received")
def get_received_claims(
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    """Claims submitted on the caller's items."""
    claims = session.exec(
        select(Claim)
        .join(Item, col(Claim.item_id) == col(Item.id))
        .where(Item.user_id == caller.id)
        .where(visible_claims_clause(caller))
        .order_by(col(Claim.created_at).desc())
    ).all()

    return {"claims": claims_with_details(session, claims)}


@router.get("/{claim_id}")
def get_claim(
    claim_id: uuid.UUID,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    claim, _ = claim_service.get_visible_claim(session, caller, claim_id)

    return claims_with_details(session, [claim])[0]


@router.post("/{claim_id}/status")
def update_claim_status(
    claim_id: uuid.UUID,
    payload: ClaimStatusRequest,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    claim = claim_service.set_claim_status(session, caller, claim_id, payload.status)

    return {
        "ok": True,
        "claim_id": str(claim.id),
        "status": claim.status,
    }
