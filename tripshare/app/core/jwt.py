"""
Session tokens for the employee and admin API.

A session token identifies a user row; roles are always re-read from the
database, so the ``role`` claim is informational only. Approval links are
signed with their own secret in ``approval_tokens`` and never pass here.
"""

import calendar
from datetime import timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from tripshare.app.core.clock import utcnow
from tripshare.app.core.config import settings

SESSION_TOKEN_TYPE = "session"


def _timestamp(moment) -> int:
    return calendar.timegm(moment.utctimetuple())


def create_access_token(user, expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign a session token for ``user``.

    Claims are ``sub`` (user id as a string), ``email``, ``role``,
    ``typ``, ``iat`` and ``exp``.
    """
    issued = utcnow()
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role.value,
        "typ": SESSION_TOKEN_TYPE,
        "iat": _timestamp(issued),
        "exp": _timestamp(issued + lifetime),
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[int]:
    """
    Return the user id a session token was issued for, or None when the
    token is malformed, expired, or of another type.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    if payload.get("typ") != SESSION_TOKEN_TYPE:
        return None
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        return None
