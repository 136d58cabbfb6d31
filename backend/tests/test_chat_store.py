from __future__ import annotations

import threading
import uuid

import pytest
from sqlalchemy.exc import OperationalError

from backend.taskhub.chat import ChatStore
from backend.taskhub.core.errors import NotFound, StorageFailure
from backend.taskhub.models import ChatMessage


@pytest.fixture()
def store(session_factory) -> ChatStore:
    return ChatStore(session_factory)


def test_history_matches_appends_in_order(store: ChatStore, make_task, make_user) -> None:
    task_id = make_task()
    alice, bob = make_user(), make_user()

    first = store.append(task_id, user_id=alice, message="hi")
    second = store.append(task_id, user_id=bob, message="yo", emoji="👋")
    third = store.append(task_id, user_id=alice, message="bye")

    history = store.history(task_id)

    assert history == [first, second, third]
    assert [entry.position for entry in history] == [0, 1, 2]
    assert [entry.user_id for entry in history] == [alice, bob, alice]
    assert history[1].emoji == "👋"
    assert history[0].timestamp <= history[1].timestamp <= history[2].timestamp


def test_logs_are_independent_per_task(store: ChatStore, make_task, make_user) -> None:
    first_task, second_task = make_task("A"), make_task("B")
    user = make_user()

    store.append(first_task, user_id=user, message="one")
    store.append(second_task, user_id=user, message="two")
    store.append(first_task, user_id=user, message="three")

    assert [entry.message for entry in store.history(first_task)] == ["one", "three"]
    assert [entry.message for entry in store.history(second_task)] == ["two"]
    assert [entry.position for entry in store.history(second_task)] == [0]


def test_append_to_unknown_task_fails_and_persists_nothing(store: ChatStore, session_factory, make_user) -> None:
    with pytest.raises(NotFound):
        store.append(uuid.uuid4(), user_id=make_user(), message="lost")

    with session_factory() as session:
        assert session.query(ChatMessage).count() == 0


def test_history_of_unknown_task_is_not_found(store: ChatStore) -> None:
    with pytest.raises(NotFound):
        store.history(uuid.uuid4())


def test_empty_history(store: ChatStore, make_task) -> None:
    assert store.history(make_task()) == []


def test_payload_shape(store: ChatStore, make_task, make_user) -> None:
    task_id = make_task()
    user = make_user()

    plain = store.append(task_id, user_id=user, message="hi").to_payload()
    with_emoji = store.append(task_id, user_id=user, message="yo", emoji="👋").to_payload()

    assert set(plain) == {"userId", "message", "timestamp"}
    assert plain["userId"] == str(user)
    assert plain["timestamp"].endswith("+00:00")
    assert with_emoji["emoji"] == "👋"
    assert store.history(task_id)[0].to_payload() == plain


def test_concurrent_appends_form_a_total_order(store: ChatStore, make_task, make_user) -> None:
    task_id = make_task()
    writers = [make_user() for _ in range(6)]
    per_writer = 8
    errors: list[BaseException] = []
    start = threading.Barrier(len(writers))

    def write(user_id: uuid.UUID) -> None:
        try:
            start.wait()
            for index in range(per_writer):
                store.append(task_id, user_id=user_id, message=f"{user_id}:{index}")
        except BaseException as exc:  # pragma: no cover - surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=write, args=(user_id,)) for user_id in writers]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert not errors
    history = store.history(task_id)
    assert [entry.position for entry in history] == list(range(len(writers) * per_writer))
    assert len({entry.message for entry in history}) == len(writers) * per_writer
    for user_id in writers:
        own = [entry.message for entry in history if entry.user_id == user_id]
        assert own == [f"{user_id}:{index}" for index in range(per_writer)]
    timestamps = [entry.timestamp for entry in history]
    assert timestamps == sorted(timestamps)


def test_storage_errors_surface_as_storage_failure(make_task) -> None:
    def broken_factory():
        raise OperationalError("SELECT 1", {}, Exception("database is down"))

    store = ChatStore(broken_factory)

    with pytest.raises(StorageFailure):
        store.append(uuid.uuid4(), user_id=uuid.uuid4(), message="hi")
    with pytest.raises(StorageFailure):
        store.history(uuid.uuid4())
