"""SQLAlchemy declarative base for the application models."""
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Model modules import ``Base`` from here, so they are imported last.
from .chat_messages import ChatMessage  # noqa: F401,E402
from .projects import Project  # noqa: F401,E402
from .tasks import Task, TaskFile, TaskPriority, TaskStatus, task_participants  # noqa: F401,E402
from .teams import Team, TeamMember  # noqa: F401,E402
from .users import User  # noqa: F401,E402


__all__ = [
    "Base",
    "ChatMessage",
    "Project",
    "Task",
    "TaskFile",
    "TaskPriority",
    "TaskStatus",
    "Team",
    "TeamMember",
    "User",
    "task_participants",
]
