"""HTTP access to a task's chat log."""
import logging
import uuid
from typing import Any

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool

from ..chat.payloads import MessageBody
from ..core.config import settings
from ..core.rate_limiter import limiter
from .common import get_gateway, require_user_id

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{task_id}/chat", summary="Full chat history of a task")
async def chat_history(task_id: uuid.UUID, request: Request) -> list[dict[str, Any]]:
    """Return every message of the task in the order it was stored."""

    gateway = get_gateway(request)
    history = await run_in_threadpool(gateway.store.history, task_id)
    return [message.to_payload() for message in history]


@router.post("/{task_id}/chat", summary="Post a chat message without a live connection")
@limiter.limit(settings.RATE_LIMIT_CHAT_POST)
async def post_chat_message(task_id: uuid.UUID, payload: MessageBody, request: Request) -> dict[str, Any]:
    """Persist the message, then push it to everyone joined to the task's room."""

    user_id = require_user_id(request)
    persisted = await get_gateway(request).publish(
        task_id,
        user_id,
        payload.message,
        payload.emoji,
        surface="http",
    )
    return persisted.to_payload()
