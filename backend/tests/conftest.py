from __future__ import annotations

import sys
import uuid
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.taskhub.api import routes_upload
from backend.taskhub.core import db as db_module
from backend.taskhub.core import s3 as s3_module
from backend.taskhub.core.config import settings
from backend.taskhub.core.rate_limiter import limiter
from backend.taskhub.main import create_app
from backend.taskhub.models import Base, Project, Task, User


class FakeObject:
    def __init__(self, data: bytes, content_type: str) -> None:
        self.data = data
        self.content_type = content_type
        self.size = len(data)


class FakeMinio:
    def __init__(self) -> None:
        self._buckets: set[str] = set()
        self.objects: dict[tuple[str, str], FakeObject] = {}

    def bucket_exists(self, name: str) -> bool:
        return name in self._buckets

    def make_bucket(self, name: str) -> None:
        self._buckets.add(name)

    def put_object(self, bucket: str, object_name: str, data, length: int, *, content_type: str = "application/octet-stream") -> None:
        payload = data.read() if hasattr(data, "read") else data
        assert len(payload) == length
        self.objects[(bucket, object_name)] = FakeObject(bytes(payload), content_type)

    def presigned_get_object(self, bucket: str, object_name: str, *, expires: object | None = None) -> str:
        return f"https://minio.local/{bucket}/{object_name}?X-Amz-Signature=test"


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "BCRYPT_ROUNDS", 4)


@pytest.fixture()
def fake_minio(monkeypatch: pytest.MonkeyPatch) -> FakeMinio:
    client = FakeMinio()

    monkeypatch.setattr(s3_module, "get_minio_client", lambda: client)
    monkeypatch.setattr(routes_upload, "get_minio_client", lambda: client)
    return client


@pytest.fixture()
def engine() -> Iterator:
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, class_=Session)


def _session_ctx(factory: sessionmaker):
    def _get_session() -> Iterator[Session]:
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return _get_session


@pytest.fixture()
def app(monkeypatch: pytest.MonkeyPatch, session_factory: sessionmaker, fake_minio: FakeMinio) -> Iterator[TestClient]:
    monkeypatch.setattr(db_module, "SessionLocal", session_factory)
    limiter.reset()

    application = create_app(session_factory=session_factory)
    application.dependency_overrides[db_module.get_session] = _session_ctx(session_factory)
    # Entering the client shares one event loop between HTTP calls and websockets.
    with TestClient(application) as client:
        yield client


@pytest.fixture()
def register(app: TestClient) -> Callable[..., dict[str, Any]]:
    """Register a user over HTTP and return ``{id, token, headers, user}``."""

    def _register(name: str = "Ana", email: str | None = None, password: str = "pw1", role: str = "member") -> dict[str, Any]:
        email = email or f"{uuid.uuid4().hex[:8]}@example.com"
        response = app.post(
            "/api/register",
            json={"name": name, "email": email, "password": password, "role": role},
        )
        assert response.status_code == 200, response.text
        body = response.json()
        return {
            "id": body["user"]["id"],
            "token": body["token"],
            "headers": {"Authorization": f"Bearer {body['token']}"},
            "user": body["user"],
        }

    return _register


@pytest.fixture()
def make_task(session_factory: sessionmaker) -> Callable[..., uuid.UUID]:
    """Insert a user-less task directly and return its id."""

    def _make_task(name: str = "T1") -> uuid.UUID:
        with session_factory() as session:
            project = Project(name=f"{name} project")
            session.add(project)
            session.flush()
            task = Task(name=name, project_id=project.id)
            session.add(task)
            session.commit()
            return task.id

    return _make_task


@pytest.fixture()
def make_user(session_factory: sessionmaker) -> Callable[..., uuid.UUID]:
    def _make_user(email: str | None = None) -> uuid.UUID:
        with session_factory() as session:
            user = User(
                name="Store user",
                email=email or f"{uuid.uuid4().hex[:8]}@example.com",
                password_hash="not-a-bcrypt-hash",
            )
            session.add(user)
            session.commit()
            return user.id

    return _make_user

