import uuid
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlmodel import Session

from lostfound.db.db import get_session
from lostfound.services import messages as message_service
from lostfound.utils.auth_helper import get_caller
from lostfound.utils.policies import Caller


router = APIRouter()


class MessageSendRequest(BaseModel):
    recipient_id: uuid.UUID
    item_id: uuid.UUID
    message: str = Field(min_length=1, max_length=2000)


class ConversationReadRequest(BaseModel):
    item_id: uuid.UUID
    other_user_id: uuid.UUID


@router.post("/send")
def send_message(
    payload: MessageSendRequest,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    message = message_service.send_message(
        session, caller, payload.recipient_id, payload.item_id, payload.message
    )

    return {"ok": True, "message_id": str(message.id)}


@router.get("/conversations")
def get_conversations(
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    return {"conversations": message_service.fetch_conversations(session, caller)}


@router.post("/conversations/read")
def mark_conversation_read(
    payload: ConversationReadRequest,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    updated = message_service.mark_conversation_read(
        session, caller, payload.item_id, payload.other_user_id
    )

    return {"ok": True, "updated": updated}


@router.post("/{message_id}/read")
def mark_message_read(
    message_id: uuid.UUID,
    session: Session = Depends(get_session),
    caller: Caller = Depends(get_caller),
):
    message_service.mark_read(session, caller, message_id)

    return {"ok": True}
