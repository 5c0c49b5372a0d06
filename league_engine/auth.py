"""
Minimal auth: bearer JWTs carrying the caller identity.
Tokens are issued by the account service; the engine only decodes them.
Claims: sub (user id), premium (bool), name (optional display name).
"""
from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from league_engine.models import ActorContext

SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "league-dev-secret-change-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7  # 7 days


def create_access_token(subject: str, is_premium: bool = False, name: str | None = None) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode = {"sub": subject, "premium": is_premium, "exp": expire}
    if name:
        to_encode["name"] = name
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict | None:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if not payload.get("sub"):
        return None
    return payload


def actor_from_token(token: str) -> ActorContext | None:
    payload = decode_token(token)
    if payload is None:
        return None
    return ActorContext(user_id=payload["sub"], is_premium=bool(payload.get("premium", False)))
