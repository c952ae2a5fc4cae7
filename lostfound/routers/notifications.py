import uuid
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session, col, func, select

from lostfound.db.db import get_session
from lostfound.models.notification import Notification
from lostfound.utils import change_feed
from lostfound.utils.auth_helper import get_caller
from lostfound.utils.policies import SELECT, UPDATE, Caller, authorize, is_allowed


router = APIRouter()

@router.get("/")
async def get_my_notifications(
    limit: int = Query(50, ge=1, le=200),
    unread_only: bool = False,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    query = (
        select(Notification)
        .where(Notification.user_id == caller.id)
        .order_by(col(Notification.created_at).desc())
    )

    if unread_only:
        query = query.where(Notification.read == False)  # noqa: E712

    notifications = session.exec(query.limit(limit)).all()

    return {"notifications": notifications}

@router.get("/count")
async def get_unread_notifications_count(
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    count = session.exec(
        select(func.count(Notification.id))
        .where(Notification.user_id == caller.id)
        .where(Notification.read == False)  # noqa: E712
    ).one()

    return { "count": count }

@router.post("/{id}/mark-read")
async def mark_notification_read(
    id: uuid.UUID,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    notif = session.get(Notification, id)

    if not notif or not is_allowed("notifications", SELECT, caller, notif):
        raise HTTPException(
            status_code=404,
            detail="Notification not found"
        )

    authorize("notifications", UPDATE, caller, notif)

    notif.read = True
    session.add(notif)
    session.commit()
    session.refresh(notif)

    change_feed.get_change_feed().publish("notifications", change_feed.UPDATE, notif)

    return {"ok": True}

@router.post("/mark-all-read")
async def mark_all_notifications_read(
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    notifications = session.exec(
        select(Notification)
        .where(Notification.user_id == caller.id)
        .where(Notification.read == False)  # noqa: E712
    ).all()

    for notif in notifications:
        notif.read = True
        session.add(notif)

    session.commit()

    feed = change_feed.get_change_feed()
    for notif in notifications:
        session.refresh(notif)
        feed.publish("notifications", change_feed.UPDATE, notif)

    return {"ok": True, "updated": len(notifications)}
