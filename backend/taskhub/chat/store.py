"""Append-only chat log storage keyed by task."""
from __future__ import annotations

import logging
import threading
import uuid
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.errors import NotFound, StorageFailure
from ..models import ChatMessage, Task

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class PersistedMessage:
    """A chat entry as stored, including its server-assigned order."""

    task_id: uuid.UUID
    position: int
    user_id: uuid.UUID | None
    message: str
    timestamp: datetime
    emoji: str | None = None

    @classmethod
    def from_row(cls, row: ChatMessage) -> "PersistedMessage":
        return cls(
            task_id=row.task_id,
            position=row.position,
            user_id=row.user_id,
            message=row.message,
            timestamp=_as_utc(row.timestamp),
            emoji=row.emoji,
        )

    def to_payload(self) -> dict[str, Any]:
        """Return the wire shape ``{userId, message, emoji?, timestamp}``."""

        payload: dict[str, Any] = {
            "userId": str(self.user_id) if self.user_id else None,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.emoji:
            payload["emoji"] = self.emoji
        return payload


class ChatStore:
    """Serialize appends per task and read back full histories.

    Appends to one task are serialized by an in-process lock and by a row
    lock on the task; the unique ``(task_id, position)`` constraint rejects
    any write that slips past both.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory
        self._guard = threading.Lock()
        self._task_locks: weakref.WeakValueDictionary[uuid.UUID, threading.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, task_id: uuid.UUID) -> threading.Lock:
        with self._guard:
            lock = self._task_locks.get(task_id)
            if lock is None:
                lock = threading.Lock()
                self._task_locks[task_id] = lock
            return lock

    def append(
        self,
        task_id: uuid.UUID,
        *,
        user_id: uuid.UUID,
        message: str,
        emoji: str | None = None,
    ) -> PersistedMessage:
        """Persist a message at the end of the task's log.

        Raises ``NotFound`` when the task does not exist and
        ``StorageFailure`` when the write cannot be committed.
        """

        lock = self._lock_for(task_id)
        with lock:
            try:
                with self._session_factory() as session:
                    task_row = session.execute(
                        select(Task.id).where(Task.id == task_id).with_for_update()
                    ).scalar_one_or_none()
                    if task_row is None:
                        raise NotFound("Task not found")

                    last = session.execute(
                        select(ChatMessage.position, ChatMessage.timestamp)
                        .where(ChatMessage.task_id == task_id)
                        .order_by(ChatMessage.position.desc())
                        .limit(1)
                    ).first()

                    timestamp = datetime.now(timezone.utc)
                    position = 0
                    if last is not None:
                        position = last.position + 1
                        # Keep timestamps monotonic within a log even if the clock steps back.
                        timestamp = max(timestamp, _as_utc(last.timestamp))

                    row = ChatMessage(
                        task_id=task_id,
                        position=position,
                        user_id=user_id,
                        message=message,
                        emoji=emoji or None,
                        timestamp=timestamp,
                    )
                    session.add(row)
                    session.commit()
            except SQLAlchemyError as exc:
                logger.exception("Failed to append chat message task=%s user=%s", task_id, user_id)
                raise StorageFailure("Could not persist chat message") from exc

        logger.debug("Appended chat message task=%s position=%s", task_id, position)
        return PersistedMessage(
            task_id=task_id,
            position=position,
            user_id=user_id,
            message=message,
            timestamp=timestamp,
            emoji=emoji or None,
        )

    def history(self, task_id: uuid.UUID) -> list[PersistedMessage]:
        """Return the full log of ``task_id`` in append order."""

        try:
            with self._session_factory() as session:
                if session.get(Task, task_id) is None:
                    raise NotFound("Task not found")
                rows = session.execute(
                    select(ChatMessage)
                    .where(ChatMessage.task_id == task_id)
                    .order_by(ChatMessage.position)
                ).scalars().all()
                return [PersistedMessage.from_row(row) for row in rows]
        except SQLAlchemyError as exc:
            logger.exception("Failed to read chat history task=%s", task_id)
            raise StorageFailure("Could not read chat history") from exc

    def task_exists(self, task_id: uuid.UUID) -> bool:
        try:
            with self._session_factory() as session:
                return session.get(Task, task_id) is not None
        except SQLAlchemyError as exc:
            logger.exception("Failed to look up task=%s", task_id)
            raise StorageFailure("Could not look up task") from exc
