"""Append-only chat log entries belonging to a task."""
from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from . import Base


class ChatMessage(Base):
    """One entry of a task's chat log.

    ``position`` is dense and zero-based per task; together with the unique
    constraint it is the authoritative order of the log. ``timestamp`` is set
    by the server when the row is written.
    """

    __tablename__ = "chat_messages"
    __table_args__ = (UniqueConstraint("task_id", "position", name="uq_chat_messages_task_position"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    task_id = Column(
        UUID(as_uuid=True),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False)
    user_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    message = Column(Text, nullable=False)
    emoji = Column(String(64), nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)

    task = relationship("Task", back_populates="chat")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"ChatMessage(task_id={self.task_id!s}, position={self.position}, user_id={self.user_id!s})"
