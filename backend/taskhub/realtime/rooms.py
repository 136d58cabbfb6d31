"""In-memory room membership for live task chats."""
from __future__ import annotations

import logging
import threading
import weakref
from typing import Any, Protocol

from ..core.metrics import record_delivery_drop

logger = logging.getLogger(__name__)


class RoomMember(Protocol):
    """Anything the registry can hand a payload to."""

    session_id: str

    def deliver(self, payload: dict[str, Any]) -> bool:
        """Queue ``payload`` without blocking; return ``False`` when full."""

    def abort(self, reason: str) -> None:
        """Tear the member down after it failed to keep up."""


class RoomRegistry:
    """Map task ids to the sessions currently joined to them.

    The registry holds sessions weakly: membership never keeps a closed
    connection alive. Every public method takes the same lock, so broadcast
    always iterates a consistent snapshot of a room.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._rooms: dict[str, set[str]] = {}
        self._sessions: weakref.WeakValueDictionary[str, RoomMember] = weakref.WeakValueDictionary()

    def join(self, task_id: str, session: RoomMember) -> bool:
        """Add ``session`` to the room; return ``False`` if it was already there."""

        with self._lock:
            self._sessions[session.session_id] = session
            members = self._rooms.setdefault(task_id, set())
            if session.session_id in members:
                return False
            members.add(session.session_id)
            return True

    def leave_room(self, task_id: str, session_id: str) -> None:
        with self._lock:
            members = self._rooms.get(task_id)
            if members is None:
                return
            members.discard(session_id)
            if not members:
                del self._rooms[task_id]

    def leave(self, session_id: str) -> list[str]:
        """Remove ``session_id`` from every room and return the rooms it left."""

        with self._lock:
            left: list[str] = []
            for task_id in list(self._rooms):
                members = self._rooms[task_id]
                if session_id in members:
                    members.discard(session_id)
                    left.append(task_id)
                    if not members:
                        del self._rooms[task_id]
            self._sessions.pop(session_id, None)
            return left

    def members(self, task_id: str) -> frozenset[str]:
        with self._lock:
            return frozenset(self._rooms.get(task_id, ()))

    def rooms_of(self, session_id: str) -> frozenset[str]:
        with self._lock:
            return frozenset(task_id for task_id, members in self._rooms.items() if session_id in members)

    def is_member(self, task_id: str, session_id: str) -> bool:
        with self._lock:
            return session_id in self._rooms.get(task_id, ())

    def broadcast(self, task_id: str, payload: dict[str, Any]) -> int:
        """Hand ``payload`` to every member of the room, best-effort.

        Returns the number of sessions that accepted the payload. Members that
        are gone, full, or raise are dropped from all rooms and never block the
        others.
        """

        with self._lock:
            targets = []
            for session_id in self._rooms.get(task_id, ()):
                session = self._sessions.get(session_id)
                if session is not None:
                    targets.append(session)

            delivered = 0
            failed: list[tuple[RoomMember, str]] = []
            for session in targets:
                try:
                    accepted = session.deliver(payload)
                except Exception:
                    logger.exception("Delivery to session=%s room=%s raised", session.session_id, task_id)
                    failed.append((session, "error"))
                    continue
                if accepted:
                    delivered += 1
                else:
                    failed.append((session, "overflow"))

            stale = self._rooms.get(task_id, set()) - {session.session_id for session in targets}
            for session_id in stale:
                self.leave(session_id)

        for session, cause in failed:
            record_delivery_drop(cause)
            logger.warning("Dropping session=%s from rooms after %s in room=%s", session.session_id, cause, task_id)
            self.leave(session.session_id)
            try:
                session.abort(cause)
            except Exception:
                logger.exception("Aborting session=%s failed", session.session_id)
        return delivered

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)
