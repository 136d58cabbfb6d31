"""Live task-chat rooms over WebSockets."""

from .gateway import Connection, Gateway
from .rooms import RoomRegistry

__all__ = ["Connection", "Gateway", "RoomRegistry"]
