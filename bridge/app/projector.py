"""Contact and chat read models built on demand from backend data."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .backend.base import MessagingBackend, RawRecord, serialized_id
from .errors import PartialProjectionError

logger = logging.getLogger(__name__)

TEXT_MESSAGE_TYPES = frozenset({"chat", "text"})


class _Projection(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class Contact(_Projection):
    id: str
    display_name: str
    number: str
    is_business: bool = False
    last_seen: Optional[int] = None


class Chat(_Projection):
    id: str
    display_name: str
    is_group: bool = False
    last_message_preview: str = ""
    last_activity_at: int


def strip_domain(identifier: str) -> str:
    """``"15551234567@c.us"`` -> ``"15551234567"``."""
    return identifier.split("@", 1)[0]


def message_preview(message: Optional[RawRecord]) -> str:
    if not message:
        return ""
    body = message.get("body") or ""
    if body:
        return str(body)
    kind = message.get("type")
    if kind and (kind not in TEXT_MESSAGE_TYPES or message.get("hasMedia")):
        return f"[{kind}]"
    return ""


def _to_millis(seconds: Any) -> Optional[int]:
    if seconds in (None, "", 0):
        return None
    try:
        return int(float(seconds) * 1000)
    except (TypeError, ValueError):
        return None


class DataProjector:
    """Pulls raw records from the backend and normalizes them.

    Stateless apart from its backend handle, so concurrent projections are
    safe. Nothing here touches the session state store.
    """

    def __init__(
        self,
        backend: MessagingBackend,
        *,
        concurrency: int = 8,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend
        self._concurrency = max(concurrency, 1)
        self._clock = clock

    async def project_contacts(self) -> List[Contact]:
        raw_contacts = await self._backend.fetch_contacts()
        semaphore = asyncio.Semaphore(self._concurrency)

        async def enrich(raw: RawRecord) -> Contact:
            contact_id = serialized_id(raw.get("id"))
            number = strip_domain(contact_id or str(raw.get("number") or ""))
            display_name = raw.get("name") or raw.get("pushname") or number
            last_seen: Optional[int] = None
            async with semaphore:
                try:
                    last_seen = await self._lookup_last_seen(contact_id)
                except PartialProjectionError as exc:
                    logger.debug("Presence lookup skipped: %s", exc)
            return Contact(
                id=contact_id,
                display_name=str(display_name),
                number=number,
                is_business=bool(raw.get("isBusiness")),
                last_seen=last_seen,
            )

        return list(await asyncio.gather(*(enrich(raw) for raw in raw_contacts)))

    async def project_chats(self) -> List[Chat]:
        raw_chats = await self._backend.fetch_chats()
        chats = [self._project_chat(raw) for raw in raw_chats]
        # sorted() is stable, so chats with equal activity keep backend order
        return sorted(chats, key=lambda chat: chat.last_activity_at, reverse=True)

    async def _lookup_last_seen(self, contact_id: str) -> Optional[int]:
        try:
            return await self._backend.fetch_last_seen(contact_id)
        except Exception as exc:
            raise PartialProjectionError(contact_id, str(exc) or type(exc).__name__) from exc

    def _project_chat(self, raw: RawRecord) -> Chat:
        chat_id = serialized_id(raw.get("id"))
        last_message = raw.get("lastMessage") or None
        activity = _to_millis(raw.get("timestamp"))
        if activity is None and last_message:
            activity = _to_millis(last_message.get("timestamp"))
        if activity is None:
            activity = int(self._clock() * 1000)
        return Chat(
            id=chat_id,
            display_name=str(raw.get("name") or strip_domain(chat_id)),
            is_group=bool(raw.get("isGroup")),
            last_message_preview=message_preview(last_message),
            last_activity_at=activity,
        )


__all__ = ["Contact", "Chat", "DataProjector", "message_preview", "strip_domain"]
