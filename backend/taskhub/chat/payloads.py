"""Validated chat message bodies shared by HTTP and live sends."""
from __future__ import annotations

import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.config import settings


class MessageBody(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    message: str = Field(min_length=1)
    emoji: str | None = None

    @field_validator("message")
    @classmethod
    def _check_message(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        if len(value) > settings.CHAT_MESSAGE_MAX_LENGTH:
            raise ValueError("message is too long")
        return value

    @field_validator("emoji")
    @classmethod
    def _check_emoji(cls, value: str | None) -> str | None:
        if value is not None and len(value) > settings.CHAT_EMOJI_MAX_LENGTH:
            raise ValueError("emoji is too long")
        return value or None


class SendMessagePayload(MessageBody):
    """``sendMessage`` event data: ``{taskId, message, emoji?}``."""

    task_id: uuid.UUID = Field(alias="taskId")
