"""Capability contract for the messaging automation backend."""
from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Dict, List, Optional, Protocol

from ..state import LifecycleEvent

RawRecord = Dict[str, Any]
EventSink = Callable[[LifecycleEvent], Awaitable[None]]


class MessagingBackend(Protocol):
    """Calls the bridge makes into the linked messaging session.

    Every method may be slow and may fail on its own; callers wrap failures.
    """

    async def send_message(self, to: str, body: str) -> str:
        """Send a text message and return the backend-assigned message id."""
        ...

    async def fetch_contacts(self) -> List[RawRecord]:
        ...

    async def fetch_chats(self) -> List[RawRecord]:
        ...

    async def fetch_last_seen(self, contact_id: str) -> Optional[int]:
        ...

    async def logout(self) -> None:
        ...

    async def current_profile(self) -> Optional[Dict[str, Any]]:
        ...

    async def aclose(self) -> None:
        ...


def serialized_id(value: Any) -> str:
    """Backend ids arrive either as plain strings or as ``{"_serialized": ...}``."""
    if isinstance(value, dict):
        return str(value.get("_serialized") or value.get("id") or "")
    return "" if value is None else str(value)


__all__ = ["MessagingBackend", "RawRecord", "EventSink", "serialized_id"]
