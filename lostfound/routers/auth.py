import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlmodel import Session
from google.oauth2 import id_token
from google.auth.transport import requests as grequests

from lostfound.config import GOOGLE_CLIENT_ID
from lostfound.db.db import get_session
from lostfound.models.enums import AppRole
from lostfound.services.accounts import get_or_register_google_account
from lostfound.utils.auth_helper import create_access_token

router = APIRouter()

logger = logging.getLogger(__name__)


class GoogleIDToken(BaseModel):
    id_token: str
    # sign-up metadata, only used the first time this Google account signs in
    username: Optional[str] = Field(default=None, max_length=50)
    full_name: Optional[str] = Field(default=None, max_length=100)


class TokenResponse(BaseModel):
    access_token: str
    user_id: str
    username: str


@router.post("/google", response_model=TokenResponse)
def google_auth(payload: GoogleIDToken, session: Session = Depends(get_session)):
    if not GOOGLE_CLIENT_ID:
        raise HTTPException(status_code=503, detail="Google sign-in is not configured")

    try:
        idinfo = id_token.verify_oauth2_token(payload.id_token, grequests.Request(), GOOGLE_CLIENT_ID)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid Google ID token")

    # idinfo now trusted and parsed by Google libs
    email = idinfo.get("email")
    if not email:
        raise HTTPException(status_code=400, detail="Google account has no email address")

    account, profile = get_or_register_google_account(
        session,
        google_id=idinfo["sub"],
        email=email,
        username=payload.username,
        full_name=payload.full_name or idinfo.get("name"),
    )

    token = create_access_token(account.id, AppRole(profile.role).value)

    logger.info("Issued session for %s", account.id)

    return TokenResponse(
        access_token=token,
        user_id=str(account.id),
        username=profile.username,
    )
