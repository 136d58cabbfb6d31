"""Identity service: password hashing and signed bearer tokens.

Tokens are HS256 JSON Web Tokens carrying the user identifier in ``sub`` and
a hard ``exp``. This module is the only place tokens are signed or verified;
both the HTTP middleware and the realtime gateway go through
:func:`validate_token`.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
import jwt

from .config import settings
from .errors import Unauthenticated

if TYPE_CHECKING:  # pragma: no cover
    from ..models import User


class InvalidCredentials(Unauthenticated):
    default_detail = "Invalid email or password"


@dataclass(frozen=True)
class UserIdentity:
    """Identity recovered from a validated bearer token."""

    user_id: uuid.UUID
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at


def hash_password(password: str) -> str:
    """Return a salted bcrypt hash for ``password``."""

    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False


def create_access_token(user_id: uuid.UUID, *, expires_in: timedelta | None = None) -> str:
    """Sign a time-bounded token for ``user_id``."""

    now = datetime.now(timezone.utc)
    lifetime = expires_in if expires_in is not None else timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + lifetime,
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def issue_token(user: "User | None", password: str) -> str:
    """Verify ``password`` against the user's stored hash and sign a token.

    ``user`` is ``None`` when the submitted email does not resolve; that case
    fails exactly like a wrong password.
    """

    if user is None or not verify_password(password, user.password_hash):
        raise InvalidCredentials()
    return create_access_token(user.id)


def validate_token(token: str | None) -> UserIdentity:
    """Verify signature and expiry, failing closed on anything unexpected."""

    if not token:
        raise Unauthenticated("Not authenticated")
    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise Unauthenticated("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise Unauthenticated("Invalid token") from exc

    try:
        user_id = uuid.UUID(str(claims["sub"]))
        expires_at = datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)
    except (TypeError, ValueError) as exc:
        raise Unauthenticated("Invalid token") from exc
    return UserIdentity(user_id=user_id, expires_at=expires_at)


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token part of an ``Authorization: Bearer`` header value."""

    if not authorization:
        return None
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        return None
    return credentials.strip()
