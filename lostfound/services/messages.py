import logging
import uuid
from typing import Dict, Iterable, List

from fastapi import HTTPException
from sqlmodel import Session, col, or_, select

from lostfound.db.db import atomic
from lostfound.models.item import Item
from lostfound.models.message import Message
from lostfound.models.profile import Profile
from lostfound.services import hooks
from lostfound.utils import change_feed
from lostfound.utils.policies import (
    INSERT,
    SELECT,
    Caller,
    authorize,
    authorize_message_update,
    get_item_titles,
    is_allowed,
)

logger = logging.getLogger(__name__)

UNKNOWN_ITEM = "Unknown Item"
UNKNOWN_USER = "Unknown User"


def _in_conversation_about(session: Session, user_id: uuid.UUID, item_id: uuid.UUID) -> bool:
    return session.exec(
        select(Message.id)
        .where(Message.item_id == item_id)
        .where(or_(col(Message.sender_id) == user_id, col(Message.recipient_id) == user_id))
    ).first() is not None


def send_message(
    session: Session,
    caller: Caller,
    recipient_id: uuid.UUID,
    item_id: uuid.UUID,
    body: str,
) -> Message:
    body = body.strip()
    if not body:
        raise HTTPException(status_code=400, detail="Please enter a message")

    if recipient_id == caller.id:
        raise HTTPException(status_code=400, detail="You cannot message yourself")

    if not session.get(Profile, recipient_id):
        raise HTTPException(status_code=404, detail="Recipient not found")

    # replies stay possible after the item leaves the active listing
    item = session.get(Item, item_id)
    if not item or not (
        is_allowed("items", SELECT, caller, item)
        or _in_conversation_about(session, caller.id, item.id)
    ):
        raise HTTPException(status_code=404, detail="Item not found")

    message = Message(
        sender_id=caller.id,
        recipient_id=recipient_id,
        item_id=item.id,
        message=body,
    )
    authorize("messages", INSERT, caller, message)

    with atomic(session):
        session.add(message)
        notification = hooks.on_message_created(session, message)

    session.refresh(message)
    session.refresh(notification)

    feed = change_feed.get_change_feed()
    feed.publish("messages", change_feed.INSERT, message)
    feed.publish("notifications", change_feed.INSERT, notification)

    logger.info("Message %s sent about item %s", message.id, item.id)
    return message


def build_conversations(
    caller_id: uuid.UUID,
    messages: Iterable[Message],
    item_titles: Dict[uuid.UUID, str],
    profiles: Dict[uuid.UUID, Profile],
) -> List[dict]:
    """Group messages by (item, other party).

    Messages inside a conversation run oldest first; conversations are ordered
    by their latest message, newest first.
    """
    conversations: Dict[tuple, dict] = {}

    for message in messages:
        other_user_id = message.recipient_id if message.sender_id == caller_id else message.sender_id
        key = (message.item_id, other_user_id)

        conversation = conversations.get(key)
        if conversation is None:
            other = profiles.get(other_user_id)
            conversation = conversations[key] = {
                "item_id": message.item_id,
                "item_title": item_titles.get(message.item_id, UNKNOWN_ITEM),
                "other_user_id": other_user_id,
                "other_user_username": other.username if other else UNKNOWN_USER,
                "other_user_avatar": other.avatar_url if other else None,
                "messages": [],
                "last_message_date": message.created_at,
                "unread_count": 0,
            }

        conversation["messages"].append(message)
        conversation["last_message_date"] = max(conversation["last_message_date"], message.created_at)

        if message.recipient_id == caller_id and not message.read:
            conversation["unread_count"] += 1

    for conversation in conversations.values():
        conversation["messages"].sort(key=lambda m: m.created_at)

    return sorted(
        conversations.values(),
        key=lambda c: c["last_message_date"],
        reverse=True,
    )


def fetch_conversations(session: Session, caller: Caller) -> List[dict]:
    messages = session.exec(
        select(Message)
        .where(or_(col(Message.sender_id) == caller.id, col(Message.recipient_id) == caller.id))
        .order_by(col(Message.created_at).desc())
    ).all()

    if not messages:
        return []

    item_ids = {m.item_id for m in messages}
    user_ids = {m.sender_id for m in messages} | {m.recipient_id for m in messages}

    # one query per table
    item_titles = get_item_titles(session, item_ids)
    profiles = {
        p.id: p
        for p in session.exec(select(Profile).where(col(Profile.id).in_(user_ids))).all()
    }

    return build_conversations(caller.id, messages, item_titles, profiles)


def mark_read(session: Session, caller: Caller, message_id: uuid.UUID) -> Message:
    message = session.get(Message, message_id)
    if not message or not is_allowed("messages", SELECT, caller, message):
        raise HTTPException(status_code=404, detail="Message not found")

    authorize_message_update(caller, message, {"read"})

    if not message.read:
        message.read = True
        session.add(message)
        session.commit()
        session.refresh(message)
        change_feed.get_change_feed().publish("messages", change_feed.UPDATE, message)

    return message


def mark_conversation_read(
    session: Session,
    caller: Caller,
    item_id: uuid.UUID,
    other_user_id: uuid.UUID,
) -> int:
    unread = session.exec(
        select(Message)
        .where(Message.item_id == item_id)
        .where(Message.sender_id == other_user_id)
        .where(Message.recipient_id == caller.id)
        .where(Message.read == False)  # noqa: E712
    ).all()

    for message in unread:
        authorize_message_update(caller, message, {"read"})
        message.read = True
        session.add(message)

    session.commit()

    feed = change_feed.get_change_feed()
    for message in unread:
        session.refresh(message)
        feed.publish("messages", change_feed.UPDATE, message)

    return len(unread)
