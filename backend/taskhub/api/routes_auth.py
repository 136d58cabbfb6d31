"""Registration and login endpoints issuing bearer tokens."""
import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import Field, field_validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.db import get_session
from ..core.errors import Conflict, Unauthenticated
from ..core.rate_limiter import limiter
from ..core.security import create_access_token, hash_password, issue_token
from ..models import User
from .common import CamelModel, require_user_id

router = APIRouter()

logger = logging.getLogger(__name__)


BCRYPT_MAX_PASSWORD_BYTES = 72


def _normalize_email(value: str) -> str:
    email = value.strip().lower()
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise ValueError("invalid email address")
    return email


class RegisterRequest(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=1)
    role: Optional[str] = Field(default=None, max_length=50)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _normalize_email(value)

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        # bcrypt only hashes the first 72 bytes and newer releases reject longer input.
        if len(value.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
            raise ValueError(f"password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes")
        return value


class LoginRequest(CamelModel):
    email: str
    password: str


class UserResponse(CamelModel):
    id: uuid.UUID
    name: str
    email: str
    role: Optional[str]
    avatar: Optional[str]
    created_at: Optional[datetime]


class AuthResponse(CamelModel):
    token: str
    user: UserResponse


@router.post("/register", response_model=AuthResponse, summary="Create an account")
@limiter.limit(settings.RATE_LIMIT_REGISTER)
async def register(
    payload: RegisterRequest,
    request: Request,
    session: Session = Depends(get_session),
) -> AuthResponse:
    """Register a user and return a token bound to the new identity."""

    existing = session.execute(select(User.id).where(User.email == payload.email)).scalar_one_or_none()
    if existing is not None:
        raise Conflict("Email already registered")

    user = User(
        name=payload.name.strip(),
        email=payload.email,
        password_hash=await run_in_threadpool(hash_password, payload.password),
        role=payload.role,
    )
    session.add(user)
    try:
        session.flush()
    except IntegrityError as exc:
        session.rollback()
        raise Conflict("Email already registered") from exc
    session.commit()
    session.refresh(user)

    logger.info("Registered user %s", user.id)
    return AuthResponse(token=create_access_token(user.id), user=UserResponse.model_validate(user))


@router.post("/login", response_model=AuthResponse, summary="Exchange credentials for a token")
@limiter.limit(settings.RATE_LIMIT_LOGIN)
async def login(
    payload: LoginRequest,
    request: Request,
    session: Session = Depends(get_session),
) -> AuthResponse:
    """Verify email and password; unknown emails fail like wrong passwords."""

    email = payload.email.strip().lower()
    user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    try:
        token = await run_in_threadpool(issue_token, user, payload.password)
    except Unauthenticated:
        logger.info("Failed login for email=%s", email)
        raise
    return AuthResponse(token=token, user=UserResponse.model_validate(user))


@router.get("/me", response_model=UserResponse, summary="Current user profile")
async def read_current_user(
    request: Request, session: Session = Depends(get_session)
) -> UserResponse:
    user_id = require_user_id(request)
    user = session.get(User, user_id)
    if user is None:
        raise Unauthenticated("Unknown user")
    return UserResponse.model_validate(user)
