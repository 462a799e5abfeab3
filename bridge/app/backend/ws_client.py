"""Gateway WebSocket client feeding lifecycle events into the bridge."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional
from urllib.parse import urlencode

import websockets

from ..config import Settings
from ..state import EventKind, LifecycleEvent
from .base import EventSink, serialized_id

logger = logging.getLogger(__name__)

_FRAME_KINDS = {
    "qr": EventKind.CHALLENGE,
    "authenticated": EventKind.AUTHENTICATED,
    "ready": EventKind.READY,
    "disconnected": EventKind.DISCONNECTED,
    "auth_failure": EventKind.AUTH_FAILURE,
    "message": EventKind.MESSAGE,
}


def decode_frame(frame: dict[str, Any]) -> Optional[LifecycleEvent]:
    """Translate a gateway frame into a lifecycle event, or None if unknown."""
    kind = _FRAME_KINDS.get(str(frame.get("type")))
    if kind is None:
        return None
    data = frame.get("data") or {}

    if kind is EventKind.CHALLENGE:
        return LifecycleEvent(kind, {"qr": data.get("qr")})
    if kind is EventKind.READY:
        payload = {"profile": data["info"]} if data.get("info") else {}
        return LifecycleEvent(kind, payload)
    if kind is EventKind.MESSAGE:
        return LifecycleEvent(
            kind,
            {
                "from": data.get("from"),
                "body": data.get("body"),
                "id": serialized_id(data.get("id")),
            },
        )
    if kind in (EventKind.DISCONNECTED, EventKind.AUTH_FAILURE):
        return LifecycleEvent(kind, {"reason": data.get("reason") or data.get("message")})
    return LifecycleEvent(kind)


class GatewayEventStream:
    """Maintains the gateway event websocket, reconnecting when it drops."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._conn: Optional[Any] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()
        self._sink: Optional[EventSink] = None

    async def start(self, sink: EventSink) -> None:
        await self.stop()
        self._sink = sink
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="gateway-event-stream")

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Error during event stream cleanup: %s", e)
        self._task = None
        await self._close_conn()
        self._sink = None

    async def _run(self) -> None:
        uri = self._build_uri()
        while not self._stop_event.is_set():
            try:
                logger.info("Connecting to gateway event stream %s", self.settings.gateway_ws_url)
                self._conn = await websockets.connect(uri, ping_interval=20, ping_timeout=20)
                await self._listen()
            except asyncio.CancelledError:
                raise
            except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
                logger.warning("Gateway event stream unavailable: %s", e)
            finally:
                await self._close_conn()

            if self._stop_event.is_set():
                break
            logger.info("Reconnecting to gateway in %.1fs", self.settings.gateway_reconnect_seconds)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.settings.gateway_reconnect_seconds)
            except asyncio.TimeoutError:
                pass

    async def _listen(self) -> None:
        assert self._conn is not None
        try:
            async for message in self._conn:
                try:
                    frame = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON from gateway: %s", message)
                    continue
                if not isinstance(frame, dict):
                    continue

                if frame.get("type") == "ping":
                    await self._conn.send(json.dumps({"type": "pong"}))
                    continue

                event = decode_frame(frame)
                if event is None:
                    logger.debug("Unhandled gateway frame type %s", frame.get("type"))
                    continue
                if self._sink:
                    try:
                        await self._sink(event)
                    except Exception as e:
                        logger.exception("Error handing gateway event to bridge: %s", e)
        except websockets.ConnectionClosedOK:
            logger.info("Gateway event stream closed cleanly")
        except websockets.ConnectionClosedError as exc:
            logger.warning("Gateway event stream closed: %s", exc)

    async def _close_conn(self) -> None:
        if self._conn:
            try:
                await self._conn.close()
            except Exception as e:
                logger.warning("Error closing gateway websocket: %s", e)
            self._conn = None

    def _build_uri(self) -> str:
        base = self.settings.gateway_ws_url.rstrip("/")
        if not self.settings.gateway_api_key:
            return base
        query = urlencode({"token": self.settings.gateway_api_key})
        return f"{base}?{query}"
