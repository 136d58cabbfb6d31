from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import jwt
import pytest

from backend.taskhub.core.config import settings
from backend.taskhub.core.errors import Unauthenticated
from backend.taskhub.core.security import (
    InvalidCredentials,
    create_access_token,
    extract_bearer_token,
    hash_password,
    issue_token,
    validate_token,
    verify_password,
)


def test_password_hash_is_salted_and_verifiable() -> None:
    first = hash_password("pw1")
    second = hash_password("pw1")

    assert first != second
    assert first != "pw1"
    assert verify_password("pw1", first)
    assert verify_password("pw1", second)
    assert not verify_password("pw2", first)


def test_verify_password_rejects_non_bcrypt_values() -> None:
    assert not verify_password("pw1", "pw1")
    assert not verify_password("pw1", None)


def test_issue_token_round_trips_identity() -> None:
    user = SimpleNamespace(id=uuid.uuid4(), password_hash=hash_password("secret"))

    token = issue_token(user, "secret")
    identity = validate_token(token)

    assert identity.user_id == user.id
    assert identity.expires_at > datetime.now(timezone.utc)
    assert not identity.is_expired()


def test_issue_token_rejects_wrong_password_and_unknown_user() -> None:
    user = SimpleNamespace(id=uuid.uuid4(), password_hash=hash_password("secret"))

    with pytest.raises(InvalidCredentials):
        issue_token(user, "wrong")
    with pytest.raises(InvalidCredentials):
        issue_token(None, "secret")


def test_expired_token_is_rejected() -> None:
    token = create_access_token(uuid.uuid4(), expires_in=timedelta(seconds=-5))

    with pytest.raises(Unauthenticated) as excinfo:
        validate_token(token)
    assert excinfo.value.detail == "Token expired"


def test_token_signed_with_other_secret_is_rejected() -> None:
    now = datetime.now(timezone.utc)
    forged = jwt.encode(
        {"sub": str(uuid.uuid4()), "iat": now, "exp": now + timedelta(hours=1)},
        settings.JWT_SECRET + "-forged",
        algorithm=settings.JWT_ALGORITHM,
    )

    with pytest.raises(Unauthenticated):
        validate_token(forged)


def test_token_with_swapped_payload_is_rejected() -> None:
    victim = create_access_token(uuid.uuid4())
    attacker = create_access_token(uuid.uuid4())
    header, _, signature = attacker.split(".")
    _, victim_payload, _ = victim.split(".")

    with pytest.raises(Unauthenticated):
        validate_token(f"{header}.{victim_payload}.{signature}")


def test_unsigned_token_is_rejected() -> None:
    now = datetime.now(timezone.utc)
    unsigned = jwt.encode(
        {"sub": str(uuid.uuid4()), "exp": now + timedelta(hours=1)},
        None,
        algorithm="none",
    )

    with pytest.raises(Unauthenticated):
        validate_token(unsigned)


@pytest.mark.parametrize("token", [None, "", "not-a-token", "a.b.c"])
def test_malformed_tokens_are_rejected(token: str | None) -> None:
    with pytest.raises(Unauthenticated):
        validate_token(token)


def test_token_without_subject_or_with_bad_subject_is_rejected() -> None:
    now = datetime.now(timezone.utc)
    no_sub = jwt.encode({"exp": now + timedelta(hours=1)}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    bad_sub = jwt.encode(
        {"sub": "not-a-uuid", "exp": now + timedelta(hours=1)},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )

    with pytest.raises(Unauthenticated):
        validate_token(no_sub)
    with pytest.raises(Unauthenticated):
        validate_token(bad_sub)


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        ("Bearer abc", "abc"),
        ("bearer   abc ", "abc"),
        ("Basic abc", None),
        ("Bearer", None),
        (None, None),
    ],
)
def test_extract_bearer_token(header: str | None, expected: str | None) -> None:
    assert extract_bearer_token(header) == expected
