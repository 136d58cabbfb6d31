"""Persistent per-task chat log."""

from .payloads import MessageBody, SendMessagePayload
from .store import ChatStore, PersistedMessage

__all__ = ["ChatStore", "MessageBody", "PersistedMessage", "SendMessagePayload"]
