"""Side effects that must happen inside the transaction of the write that causes them.

Callers add the triggering row, then call the hook before committing, so the
triggering row and its side effect are stored together or not at all.
"""
from typing import Optional

from sqlmodel import Session

from lostfound.models.account import Account
from lostfound.models.item import Item
from lostfound.models.message import Message
from lostfound.models.notification import NOTIFICATION_MESSAGE, Notification
from lostfound.models.profile import Profile
from lostfound.utils.handles import unique_username, username_candidate

GENERIC_MESSAGE_BODY = "You have received a new message about an item"


def on_account_created(
    session: Session,
    account: Account,
    username: Optional[str] = None,
    full_name: Optional[str] = None,
) -> Profile:
    final_username = unique_username(session, username_candidate(account.email, username))

    profile = Profile(
        id=account.id,
        username=final_username,
        full_name=(full_name or "").strip() or final_username,
    )
    session.add(profile)
    session.flush()

    return profile


def on_message_created(session: Session, message: Message) -> Notification:
    item = session.get(Item, message.item_id)

    if item is not None and item.title:
        body = f'You have received a new message about "{item.title}"'
    else:
        body = GENERIC_MESSAGE_BODY

    notification = Notification(
        user_id=message.recipient_id,
        type=NOTIFICATION_MESSAGE,
        title="New Message",
        message=body,
    )
    session.add(notification)

    return notification
