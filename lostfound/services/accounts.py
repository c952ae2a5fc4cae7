import logging
import uuid
from typing import List, Optional, Tuple

from fastapi import HTTPException
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, or_, select

from lostfound.db.db import atomic
from lostfound.models.account import Account
from lostfound.models.claim import Claim
from lostfound.models.item import Item
from lostfound.models.message import Message
from lostfound.models.notification import Notification
from lostfound.models.profile import Profile
from lostfound.services import hooks
from lostfound.utils.policies import AVATARS_BUCKET, ITEM_IMAGES_BUCKET
from lostfound.utils.storage_service import path_from_public_url

logger = logging.getLogger(__name__)

REGISTRATION_ATTEMPTS = 2


def _identity_taken(session: Session, email: str, google_id: Optional[str]) -> bool:
    clauses = [col(Account.email) == email]
    if google_id is not None:
        clauses.append(col(Account.google_id) == google_id)

    return session.exec(select(Account.id).where(or_(*clauses))).first() is not None


def register_account(
    session: Session,
    email: str,
    username: Optional[str] = None,
    full_name: Optional[str] = None,
    google_id: Optional[str] = None,
) -> Tuple[Account, Profile]:
    """Create an account and its profile. Registration is complete only when both exist.

    The username check and the profile insert are not atomic, so a concurrent
    registration can take the derived username in between. That conflict is
    retried with a fresh derivation; a taken email or Google id is not.
    """
    email = email.strip().lower()

    for attempt in range(1, REGISTRATION_ATTEMPTS + 1):
        account = Account(email=email, google_id=google_id)

        try:
            with atomic(session):
                session.add(account)
                session.flush()
                profile = hooks.on_account_created(session, account, username, full_name)
            break
        except IntegrityError:
            if _identity_taken(session, email, google_id):
                logger.warning("Registration conflict for %s", email)
                raise HTTPException(status_code=409, detail="An account with this email already exists")

            logger.warning("Username taken while registering %s (attempt %d)", email, attempt)
    else:
        raise HTTPException(status_code=409, detail="Could not reserve a username, please try again")

    session.refresh(account)
    session.refresh(profile)

    logger.info("Registered account %s as '%s'", account.id, profile.username)
    return account, profile


def get_or_register_google_account(
    session: Session,
    google_id: str,
    email: str,
    username: Optional[str] = None,
    full_name: Optional[str] = None,
) -> Tuple[Account, Profile]:
    account = session.exec(select(Account).where(Account.google_id == google_id)).first()

    if not account:
        # same address signed up before without Google: link instead of duplicating
        account = session.exec(select(Account).where(Account.email == email.strip().lower())).first()
        if account:
            account.google_id = google_id
            session.add(account)
            session.commit()
            session.refresh(account)

    if not account:
        return register_account(session, email, username, full_name, google_id=google_id)

    profile = session.get(Profile, account.id)
    if not profile:
        # account rows are never left without a profile; treat it as unusable
        raise HTTPException(status_code=409, detail="Account is missing its profile")

    return account, profile


def delete_account(session: Session, account_id: uuid.UUID) -> List[Tuple[str, str]]:
    """Delete an account and every row owned by or referencing it, in one transaction.

    Returns the (bucket, path) storage objects that belonged to the deleted rows,
    for the caller to purge once the rows are gone.
    """
    account = session.get(Account, account_id)
    if not account:
        raise HTTPException(status_code=404, detail="User not found")

    profile = session.get(Profile, account_id)
    image_urls = session.exec(
        select(Item.image_url).where(Item.user_id == account_id)
    ).all()

    objects = [
        (ITEM_IMAGES_BUCKET, path)
        for path in (path_from_public_url(ITEM_IMAGES_BUCKET, url) for url in image_urls)
        if path
    ]
    avatar_path = path_from_public_url(AVATARS_BUCKET, profile.avatar_url if profile else None)
    if avatar_path:
        objects.append((AVATARS_BUCKET, avatar_path))

    owned_items = select(Item.id).where(Item.user_id == account_id)

    with atomic(session):
        session.exec(delete(Message).where(or_(
            col(Message.sender_id) == account_id,
            col(Message.recipient_id) == account_id,
            col(Message.item_id).in_(owned_items),
        )))
        session.exec(delete(Notification).where(col(Notification.user_id) == account_id))
        session.exec(delete(Claim).where(or_(
            col(Claim.claimant_id) == account_id,
            col(Claim.item_id).in_(owned_items),
        )))
        session.exec(delete(Item).where(col(Item.user_id) == account_id))
        session.exec(delete(Profile).where(col(Profile.id) == account_id))
        session.exec(delete(Account).where(col(Account.id) == account_id))

    logger.info("Deleted account %s (%d storage objects to purge)", account_id, len(objects))
    return objects
