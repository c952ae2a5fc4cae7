import re
from typing import Optional

from sqlmodel import Session, select

from lostfound.models.profile import Profile

MAX_USERNAME_LENGTH = 20

_INVALID_CHARS = re.compile(r"[^a-z0-9_]")


def sanitize_username(raw: str) -> str:
    return _INVALID_CHARS.sub("", raw.lower())[:MAX_USERNAME_LENGTH]


def username_candidate(email: str, requested: Optional[str] = None) -> str:
    """Base username from sign-up metadata, else the local part of the email."""
    if requested and requested.strip():
        base = requested.strip()
    else:
        base = email.split("@", 1)[0]

    return sanitize_username(base) or "user"


def unique_username(session: Session, base: str) -> str:
    # counter suffix is appended to the truncated base, so the result may exceed 20 chars
    candidate = base
    counter = 1

    while session.exec(select(Profile.id).where(Profile.username == candidate)).first():
        candidate = f"{base}{counter}"
        counter += 1

    return candidate
