"""Live-connection gateway for task chat rooms.

Each WebSocket runs two tasks: a reader that dispatches client events and a
writer that drains the session's bounded outbox. Whichever finishes first
ends the connection, and the session is then removed from every room.

Frames are JSON objects ``{"event": name, "data": payload}``. Clients send
``joinTask``, ``leaveTask`` and ``sendMessage``; the server emits ``joined``,
``left``, ``newMessage`` and ``error``.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from typing import Any, Awaitable, Callable, Mapping

from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from ..chat.payloads import SendMessagePayload
from ..chat.store import ChatStore, PersistedMessage
from ..core.config import settings
from ..core.errors import Forbidden, NotFound, TaskHubError, Unauthenticated, ValidationFailure
from ..core.metrics import REALTIME_SESSIONS, record_chat_message, record_rejected_handshake
from ..core.security import UserIdentity, extract_bearer_token, validate_token
from .rooms import RoomRegistry

logger = logging.getLogger("taskhub.realtime")

POLICY_VIOLATION = 1008
INTERNAL_ERROR = 1011


class NotJoined(Forbidden):
    reason = "not_joined"
    default_detail = "Join the task before sending to it"


def event_frame(event: str, data: Any, *, room: str | None = None) -> dict[str, Any]:
    frame: dict[str, Any] = {"event": event, "data": data}
    if room is not None:
        frame["room"] = room
    return frame


def new_message_frame(message: PersistedMessage) -> dict[str, Any]:
    return event_frame("newMessage", message.to_payload(), room=str(message.task_id))


def error_frame(exc: TaskHubError, event: str | None = None) -> dict[str, Any]:
    data = exc.to_dict()
    data["event"] = event
    return event_frame("error", data)


def _parse_task_id(data: Any) -> uuid.UUID:
    if isinstance(data, dict):
        data = data.get("taskId")
    if not isinstance(data, str):
        raise ValidationFailure("Expected a task id string")
    try:
        return uuid.UUID(data)
    except ValueError as exc:
        raise ValidationFailure("Malformed task id") from exc


class Connection:
    """Server-side session of one authenticated live connection."""

    def __init__(
        self,
        websocket: WebSocket,
        identity: UserIdentity,
        *,
        queue_size: int,
        send_timeout: float,
    ) -> None:
        self.session_id = uuid.uuid4().hex
        self.websocket = websocket
        self.identity = identity
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self._outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self._send_timeout = send_timeout
        self._writer: asyncio.Task[None] | None = None

    @property
    def user_id(self) -> uuid.UUID:
        return self.identity.user_id

    def deliver(self, payload: dict[str, Any]) -> bool:
        if self.close_reason is not None:
            return False
        try:
            self._outbox.put_nowait(payload)
        except asyncio.QueueFull:
            return False
        return True

    def abort(self, reason: str, code: int = INTERNAL_ERROR) -> None:
        if self.close_reason is None:
            self.close_reason = reason
            self.close_code = code
        if self._writer is not None:
            self._writer.cancel()

    def start_writer(self) -> asyncio.Task[None]:
        self._writer = asyncio.create_task(self._drain(), name=f"ws-writer-{self.session_id}")
        return self._writer

    async def _drain(self) -> None:
        while True:
            payload = await self._outbox.get()
            try:
                await asyncio.wait_for(self.websocket.send_json(payload), timeout=self._send_timeout)
            finally:
                self._outbox.task_done()

    async def flush(self, timeout: float) -> None:
        """Wait until queued frames have been written, up to ``timeout``."""

        try:
            await asyncio.wait_for(self._outbox.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.debug("Flush timed out session=%s", self.session_id)


EventHandler = Callable[[Connection, Any], Awaitable[None]]


class Gateway:
    """Own the connection table and coordinate the room registry with the chat store."""

    def __init__(
        self,
        store: ChatStore,
        registry: RoomRegistry | None = None,
        *,
        queue_size: int | None = None,
        send_timeout: float | None = None,
        revalidate_token: bool | None = None,
    ) -> None:
        self.store = store
        self.registry = registry or RoomRegistry()
        self.queue_size = queue_size or settings.REALTIME_SEND_QUEUE_SIZE
        self.send_timeout = send_timeout or settings.REALTIME_SEND_TIMEOUT
        self.revalidate_token = (
            settings.REALTIME_REVALIDATE_TOKEN if revalidate_token is None else revalidate_token
        )
        self._connections: dict[str, Connection] = {}
        self._room_locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = weakref.WeakValueDictionary()
        self._handlers: dict[str, EventHandler] = {
            "joinTask": self._on_join_task,
            "leaveTask": self._on_leave_task,
            "sendMessage": self._on_send_message,
        }

    @property
    def connections(self) -> Mapping[str, Connection]:
        return dict(self._connections)

    def _room_lock(self, task_id: uuid.UUID) -> asyncio.Lock:
        lock = self._room_locks.get(task_id)
        if lock is None:
            lock = asyncio.Lock()
            self._room_locks[task_id] = lock
        return lock

    async def publish(
        self,
        task_id: uuid.UUID,
        user_id: uuid.UUID,
        message: str,
        emoji: str | None = None,
        *,
        surface: str = "realtime",
    ) -> PersistedMessage:
        """Append to the task's log, then broadcast the stored entry to its room.

        Holding the room lock across both steps keeps broadcast order equal to
        log order. Nothing is broadcast when the append fails.
        """

        async with self._room_lock(task_id):
            persisted = await run_in_threadpool(
                self.store.append, task_id, user_id=user_id, message=message, emoji=emoji
            )
            record_chat_message(surface)
            delivered = self.registry.broadcast(str(task_id), new_message_frame(persisted))
        logger.info(
            "Message task=%s position=%s user=%s surface=%s delivered=%s",
            task_id,
            persisted.position,
            user_id,
            surface,
            delivered,
        )
        return persisted

    def _authenticate(self, websocket: WebSocket) -> UserIdentity:
        token = websocket.query_params.get("token") or extract_bearer_token(
            websocket.headers.get("authorization")
        )
        identity = validate_token(token)

        claimed = websocket.query_params.get("userId")
        if claimed and claimed != str(identity.user_id):
            logger.warning(
                "Ignoring handshake userId=%s for token user=%s", claimed, identity.user_id
            )
        return identity

    async def serve(self, websocket: WebSocket) -> None:
        """Run one connection from handshake to close."""

        try:
            identity = self._authenticate(websocket)
        except Unauthenticated as exc:
            record_rejected_handshake(exc.detail)
            logger.info("Rejected live connection: %s", exc.detail)
            await websocket.close(code=POLICY_VIOLATION)
            return

        await websocket.accept()
        conn = Connection(
            websocket,
            identity,
            queue_size=self.queue_size,
            send_timeout=self.send_timeout,
        )
        self._connections[conn.session_id] = conn
        REALTIME_SESSIONS.inc()
        logger.info("Session opened session=%s user=%s", conn.session_id, conn.user_id)

        writer = conn.start_writer()
        reader = asyncio.create_task(self._read_loop(conn), name=f"ws-reader-{conn.session_id}")
        try:
            done, _ = await asyncio.wait({reader, writer}, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task.cancelled():
                    continue
                exc = task.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    logger.warning("Session %s ended with %r", conn.session_id, exc)
                    if conn.close_reason is None:
                        conn.close_reason = type(exc).__name__
                        conn.close_code = INTERNAL_ERROR
        finally:
            # Released before any await so a cancelled handler still leaves every room.
            self._release(conn)
            for task in (reader, writer):
                task.cancel()
            await asyncio.gather(reader, writer, return_exceptions=True)

        if conn.close_reason is not None and _is_open(websocket):
            try:
                await websocket.close(code=conn.close_code or INTERNAL_ERROR)
            except (RuntimeError, WebSocketDisconnect):
                logger.debug("Socket already closed session=%s", conn.session_id)

    def _release(self, conn: Connection) -> None:
        left = self.registry.leave(conn.session_id)
        if self._connections.pop(conn.session_id, None) is not None:
            REALTIME_SESSIONS.dec()
        logger.info(
            "Session closed session=%s user=%s rooms=%s reason=%s",
            conn.session_id,
            conn.user_id,
            left,
            conn.close_reason or "client",
        )

    async def _read_loop(self, conn: Connection) -> None:
        while True:
            try:
                frame = await conn.websocket.receive_json()
            except WebSocketDisconnect:
                return
            except (ValueError, KeyError):
                conn.deliver(error_frame(ValidationFailure("Frames must be JSON text")))
                continue

            if self.revalidate_token and conn.identity.is_expired():
                conn.deliver(error_frame(Unauthenticated("Token expired")))
                await conn.flush(self.send_timeout)
                conn.close_reason = "token_expired"
                conn.close_code = POLICY_VIOLATION
                return

            await self.dispatch(conn, frame)

    async def dispatch(self, conn: Connection, frame: Any) -> None:
        """Route one client frame to its handler; failures become ``error`` events."""

        event = frame.get("event") if isinstance(frame, dict) else None
        try:
            if not isinstance(event, str):
                raise ValidationFailure("Frame is missing an event name")
            handler = self._handlers.get(event)
            if handler is None:
                raise ValidationFailure(f"Unknown event {event!r}")
            await handler(conn, frame.get("data"))
        except TaskHubError as exc:
            logger.info(
                "Event %s from session=%s rejected: %s", event, conn.session_id, exc.reason
            )
            conn.deliver(error_frame(exc, event if isinstance(event, str) else None))

    async def _on_join_task(self, conn: Connection, data: Any) -> None:
        task_id = _parse_task_id(data)
        if not await run_in_threadpool(self.store.task_exists, task_id):
            raise NotFound("Task not found")
        room = str(task_id)
        if self.registry.join(room, conn):
            logger.info("Session %s joined room=%s", conn.session_id, room)
        conn.deliver(event_frame("joined", {"taskId": room}))

    async def _on_leave_task(self, conn: Connection, data: Any) -> None:
        room = str(_parse_task_id(data))
        self.registry.leave_room(room, conn.session_id)
        conn.deliver(event_frame("left", {"taskId": room}))

    async def _on_send_message(self, conn: Connection, data: Any) -> None:
        try:
            payload = SendMessagePayload.model_validate(data)
        except ValidationError as exc:
            raise ValidationFailure(_first_error(exc)) from exc

        if not self.registry.is_member(str(payload.task_id), conn.session_id):
            raise NotJoined()

        await self.publish(
            payload.task_id,
            conn.user_id,
            payload.message,
            payload.emoji,
            surface="realtime",
        )

    async def shutdown(self) -> None:
        """Close every open session, e.g. on application shutdown."""

        for conn in list(self._connections.values()):
            conn.abort("server_shutdown", code=1001)


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid payload"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg', 'invalid')}" if location else first.get("msg", "invalid")


def _is_open(websocket: WebSocket) -> bool:
    return (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    )
