"""Realtime fan-out of bridge events to connected web subscribers."""
from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import logging
from typing import List

from .session_store import SessionStateStore
from .state import BridgeEvent, SessionPhase

logger = logging.getLogger(__name__)

SubscriberChannel = asyncio.Queue  # of BridgeEvent


def status_event(phase: SessionPhase) -> BridgeEvent:
    return BridgeEvent(type="status", data={"status": phase.value}, phase=phase)


def qr_event(challenge: str, phase: SessionPhase) -> BridgeEvent:
    return BridgeEvent(type="qr", data={"qr": challenge}, phase=phase)


class BroadcastFanout:
    """Keeps one bounded queue per subscriber and pushes events into them.

    Pushing never awaits: a full queue loses its oldest event, so a stalled
    websocket only hurts itself.
    """

    def __init__(self, store: SessionStateStore, *, queue_size: int = 64) -> None:
        self._store = store
        self._queue_size = max(queue_size, 2)
        self._subscribers: List[SubscriberChannel] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def connect(self) -> SubscriberChannel:
        """Register a new subscriber and replay cached state to it.

        Status always goes first so the client never draws a QR code while
        believing the session is already linked.
        """
        queue: SubscriberChannel = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.append(queue)

        state = self._store.snapshot()
        self._push(queue, status_event(state.phase))
        if state.cached_challenge:
            self._push(queue, qr_event(state.cached_challenge, state.phase))
        logger.info("Subscriber connected (%d total, phase %s)", len(self._subscribers), state.phase.value)
        return queue

    def disconnect(self, queue: SubscriberChannel) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)
            logger.info("Subscriber disconnected (%d remaining)", len(self._subscribers))

    def is_connected(self, queue: SubscriberChannel) -> bool:
        return queue in self._subscribers

    async def broadcast(self, event: BridgeEvent) -> None:
        """Broadcast event to all subscribers with per-channel isolation."""
        for queue in list(self._subscribers):
            try:
                self._push(queue, event)
            except Exception as e:
                logger.warning("Failed to broadcast %s event to subscriber: %s", event.type, e)

    async def send_to(self, queue: SubscriberChannel, event: BridgeEvent) -> None:
        if queue not in self._subscribers:
            logger.debug("Discarding %s event for departed subscriber", event.type)
            return
        try:
            self._push(queue, event)
        except Exception as e:
            logger.warning("Failed to deliver %s event to subscriber: %s", event.type, e)

    @staticmethod
    def _push(queue: SubscriberChannel, event: BridgeEvent) -> None:
        if queue.full():
            try:
                dropped = queue.get_nowait()
                logger.warning("Subscriber queue full; dropped %s event", dropped.type)
            except QueueEmpty:
                pass
        queue.put_nowait(event)


__all__ = ["BroadcastFanout", "SubscriberChannel", "status_event", "qr_event"]
