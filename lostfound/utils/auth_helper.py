import uuid
from datetime import datetime, timedelta, timezone
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError
from sqlmodel import Session

from lostfound.config import ACCESS_TOKEN_EXPIRE_MINUTES, JWT_ALGORITHM, JWT_SECRET
from lostfound.db.db import get_session
from lostfound.models.profile import Profile
from lostfound.utils.policies import ANONYMOUS, Caller, get_user_role

bearer_scheme_optional = HTTPBearer(auto_error=False)


def create_access_token(account_id: uuid.UUID, role: str) -> str:
    now = datetime.now(timezone.utc)

    jwt_payload = {
        "sub": str(account_id),
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    }

    return jwt.encode(jwt_payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def get_current_user_optional(token: HTTPAuthorizationCredentials = Depends(bearer_scheme_optional)):
    if not token:
        return None

    try:
        payload = jwt.decode(token.credentials, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        return payload
    except JWTError:
        return None
    
bearer_scheme_required = HTTPBearer(auto_error=True)

def get_current_user_required(token: HTTPAuthorizationCredentials = Depends(bearer_scheme_required)):
    try:
        payload = jwt.decode(
            token.credentials,
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
        )
        return payload
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def _caller_from_payload(session: Session, payload) -> Caller:
    try:
        user_id = uuid.UUID(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    # the role claim in the token is not trusted; it may be stale after a promotion
    role = get_user_role(session, user_id)
    if role is None:
        raise HTTPException(status_code=401, detail="Account no longer exists")

    return Caller(id=user_id, role=role)


def get_caller(
    session: Session = Depends(get_session),
    current_user=Depends(get_current_user_required),
) -> Caller:
    return _caller_from_payload(session, current_user)


def get_caller_optional(
    session: Session = Depends(get_session),
    current_user=Depends(get_current_user_optional),
) -> Caller:
    if not current_user:
        return ANONYMOUS

    try:
        return _caller_from_payload(session, current_user)
    except HTTPException:
        return ANONYMOUS


def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return caller


def get_db_profile(session: Session, caller: Caller) -> Profile:
    profile = session.get(Profile, caller.id)

    if not profile:
        raise HTTPException(status_code=404, detail="User not found")

    return profile
