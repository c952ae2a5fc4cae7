import logging
import uuid

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from lostfound.db.db import atomic
from lostfound.models.claim import Claim
from lostfound.models.enums import ClaimStatus, ItemStatus
from lostfound.models.item import Item
from lostfound.models.notification import NOTIFICATION_CLAIM, Notification
from lostfound.utils import change_feed
from lostfound.utils.policies import INSERT, SELECT, UPDATE, Caller, authorize, is_allowed

logger = logging.getLogger(__name__)


def get_visible_claim(session: Session, caller: Caller, claim_id: uuid.UUID):
    claim = session.get(Claim, claim_id)
    item = session.get(Item, claim.item_id) if claim else None

    if not claim or not is_allowed("claims", SELECT, caller, claim, item):
        raise HTTPException(status_code=404, detail="Claim not found")

    return claim, item


def create_claim(session: Session, caller: Caller, item_id: uuid.UUID, message: str) -> Claim:
    item = session.get(Item, item_id)
    if not item or not is_allowed("items", SELECT, caller, item):
        raise HTTPException(status_code=404, detail="Item not found")

    # Prevent self-claim
    if item.user_id == caller.id:
        raise HTTPException(status_code=400, detail="You cannot claim your own item")

    claim = Claim(item_id=item.id, claimant_id=caller.id, message=message.strip())
    authorize("claims", INSERT, caller, claim, item)

    # The unique constraint is the real guarantee; this only gives a friendlier error
    existing = session.exec(
        select(Claim)
        .where(Claim.item_id == item.id)
        .where(Claim.claimant_id == caller.id)
    ).first()

    if existing:
        raise HTTPException(
            status_code=409,
            detail="You have already submitted a claim for this item",
        )

    # Notify item owner
    notification = Notification(
        user_id=item.user_id,
        type=NOTIFICATION_CLAIM,
        title="New Claim Received",
        message=f'Someone has claimed your item "{item.title}"',
    )

    try:
        with atomic(session):
            session.add(claim)
            session.add(notification)
    except IntegrityError:
        logger.warning("Duplicate claim on item %s by %s", item.id, caller.id)
        raise HTTPException(
            status_code=409,
            detail="You have already submitted a claim for this item",
        )

    session.refresh(claim)
    session.refresh(notification)

    feed = change_feed.get_change_feed()
    feed.publish("claims", change_feed.INSERT, claim)
    feed.publish("notifications", change_feed.INSERT, notification)

    logger.info("Claim %s created on item %s", claim.id, item.id)
    return claim


def mark_item_claimed(session: Session, item: Item) -> None:
    item.status = ItemStatus.CLAIMED
    session.add(item)


def decision_notification(claim: Claim, item: Item) -> Notification:
    verdict = "approved" if claim.status == ClaimStatus.APPROVED else "rejected"

    return Notification(
        user_id=claim.claimant_id,
        type=NOTIFICATION_CLAIM,
        title=f"Claim {verdict.capitalize()}",
        message=f'Your claim for "{item.title}" has been {verdict}.',
    )


def set_claim_status(
    session: Session,
    caller: Caller,
    claim_id: uuid.UUID,
    status: ClaimStatus,
) -> Claim:
    """Review a claim. Approval also marks the item claimed, all in one transaction."""
    claim, item = get_visible_claim(session, caller, claim_id)
    authorize("claims", UPDATE, caller, claim, item)

    if claim.status == status:
        return claim

    if status == ClaimStatus.APPROVED:
        already_approved = session.exec(
            select(Claim)
            .where(Claim.item_id == item.id)
            .where(Claim.status == ClaimStatus.APPROVED)
            .where(Claim.id != claim.id)
        ).first()

        if already_approved:
            raise HTTPException(
                status_code=409,
                detail="Another claim on this item has already been approved",
            )

    notification = None

    with atomic(session):
        claim.status = status
        session.add(claim)

        if status == ClaimStatus.APPROVED:
            mark_item_claimed(session, item)

        if status in (ClaimStatus.APPROVED, ClaimStatus.REJECTED):
            notification = decision_notification(claim, item)
            session.add(notification)

    session.refresh(claim)
    session.refresh(item)

    feed = change_feed.get_change_feed()
    feed.publish("claims", change_feed.UPDATE, claim)
    if status == ClaimStatus.APPROVED:
        feed.publish("items", change_feed.UPDATE, item)
    if notification is not None:
        session.refresh(notification)
        feed.publish("notifications", change_feed.INSERT, notification)

    logger.info("Claim %s set to %s by %s", claim.id, status.value, caller.id)
    return claim
