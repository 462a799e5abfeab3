"""Session orchestration: lifecycle events in, subscriber events and control operations out."""
from __future__ import annotations

import asyncio
from functools import partial
import logging
from typing import Any, Dict, List, Optional, Tuple

from .backend.base import MessagingBackend
from .backend.ws_client import GatewayEventStream
from .config import Settings, get_settings
from .errors import BackendError, ValidationError
from .fanout import BroadcastFanout, SubscriberChannel, qr_event, status_event
from .projector import Chat, Contact, DataProjector
from .session_store import SessionStateStore, encode_challenge
from .state import BridgeEvent, EventKind, LifecycleEvent, SessionPhase, SessionState

logger = logging.getLogger(__name__)


class SessionBridge:
    """Owns the session state and coordinates backend, projector and subscribers.

    Lifecycle events are applied by a single consumer of the inbound queue,
    which makes :meth:`handle_event` the only path from backend events to
    state changes. Logout is the one control operation that also mutates
    state.
    """

    def __init__(
        self,
        backend: MessagingBackend,
        *,
        settings: Optional[Settings] = None,
        event_stream: Optional[GatewayEventStream] = None,
        store: Optional[SessionStateStore] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._backend = backend
        self._event_stream = event_stream
        self._store = store or SessionStateStore(
            encoder=partial(
                encode_challenge,
                box_size=self.settings.qr.box_size,
                border=self.settings.qr.border,
            )
        )
        self._fanout = BroadcastFanout(self._store, queue_size=self.settings.performance.subscriber_queue_size)
        self._projector = DataProjector(backend, concurrency=self.settings.performance.projection_concurrency)
        self._inbound: asyncio.Queue[LifecycleEvent] = asyncio.Queue(
            maxsize=self.settings.performance.inbound_queue_size
        )
        self._consumer_task: Optional[asyncio.Task[None]] = None
        self._background_tasks: set[asyncio.Task[Any]] = set()

    @property
    def phase(self) -> SessionPhase:
        return self._store.phase

    @property
    def store(self) -> SessionStateStore:
        return self._store

    @property
    def fanout(self) -> BroadcastFanout:
        return self._fanout

    async def start(self) -> None:
        logger.info("Starting session bridge")
        if not self._consumer_task or self._consumer_task.done():
            self._consumer_task = asyncio.create_task(self._consume(), name="bridge-inbound-consumer")
        if self._event_stream:
            try:
                await self._event_stream.start(self.submit)
            except Exception as e:
                logger.error("Failed to start gateway event stream: %s", e)
        logger.info("Session bridge started in %s phase", self.phase.value)

    async def stop(self) -> None:
        logger.info("Stopping session bridge")
        if self._event_stream:
            try:
                await self._event_stream.stop()
            except Exception as e:
                logger.warning("Error stopping gateway event stream: %s", e)

        tasks = list(self._background_tasks)
        if self._consumer_task:
            tasks.append(self._consumer_task)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Error stopping background task: %s", e)
        self._background_tasks.clear()
        self._consumer_task = None

        try:
            await self._backend.aclose()
        except Exception as e:
            logger.warning("Error closing backend client: %s", e)
        logger.info("Session bridge stopped")

    # ------------------------------------------------------------------
    # Inbound lifecycle events
    # ------------------------------------------------------------------

    async def submit(self, event: LifecycleEvent) -> None:
        """Queue a backend event for the consumer task."""
        await self._inbound.put(event)

    async def _consume(self) -> None:
        while True:
            event = await self._inbound.get()
            try:
                await self.handle_event(event)
            except Exception as e:
                logger.exception("Error handling %s event: %s", event.kind.value, e)
            finally:
                self._inbound.task_done()

    async def handle_event(self, event: LifecycleEvent) -> SessionState:
        if event.kind is EventKind.MESSAGE:
            await self._relay_message(event.payload)
            return self._store.snapshot()

        if event.kind is EventKind.READY and not event.payload.get("profile"):
            event = LifecycleEvent(event.kind, {**event.payload, "profile": await self._fetch_profile()})

        before = self._store.snapshot()
        state = self._store.transition(event)
        if state == before:
            return state

        await self._fanout.broadcast(status_event(state.phase))
        if event.kind is EventKind.CHALLENGE and state.cached_challenge:
            await self._fanout.broadcast(qr_event(state.cached_challenge, state.phase))
        if event.kind is EventKind.READY:
            self._spawn(self._broadcast_projections(), name="ready-projection")
        return state

    async def _relay_message(self, payload: Dict[str, Any]) -> None:
        logger.info("Incoming message from %s", payload.get("from"))
        await self._fanout.broadcast(
            BridgeEvent(
                type="message",
                data={"from": payload.get("from"), "body": payload.get("body"), "id": payload.get("id")},
                phase=self.phase,
            )
        )

    async def _fetch_profile(self) -> Dict[str, Any]:
        try:
            return await self._backend.current_profile() or {}
        except Exception as e:
            logger.warning("Could not read profile on ready: %s", e)
            return {}

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def connect_subscriber(self) -> SubscriberChannel:
        return self._fanout.connect()

    def disconnect_subscriber(self, channel: SubscriberChannel) -> None:
        self._fanout.disconnect(channel)

    def schedule_snapshot_refresh(self, channel: SubscriberChannel) -> None:
        """Run a refresh that outlives the requesting socket.

        If the subscriber leaves first, the fetch still completes and its
        result is dropped by the fan-out.
        """
        self._spawn(self.request_snapshot_refresh(channel), name="snapshot-refresh")

    async def request_snapshot_refresh(self, channel: SubscriberChannel) -> None:
        """Push fresh contacts and chats to one subscriber; silent before Ready."""
        if self.phase is not SessionPhase.READY:
            logger.debug("Snapshot refresh ignored in phase %s", self.phase.value)
            return
        try:
            contacts, chats = await self._project_both()
        except Exception as e:
            logger.warning("Snapshot refresh failed: %s", e)
            return
        await self._fanout.send_to(channel, self._collection_event("contacts", contacts))
        await self._fanout.send_to(channel, self._collection_event("chats", chats))

    async def _broadcast_projections(self) -> None:
        try:
            contacts, chats = await self._project_both()
        except Exception as e:
            logger.exception("Projection after ready failed: %s", e)
            return
        await self._fanout.broadcast(self._collection_event("contacts", contacts))
        await self._fanout.broadcast(self._collection_event("chats", chats))

    async def _project_both(self) -> Tuple[List[Contact], List[Chat]]:
        contacts, chats = await asyncio.gather(
            self._projector.project_contacts(),
            self._projector.project_chats(),
        )
        return contacts, chats

    def _collection_event(self, kind: str, items: List[Any]) -> BridgeEvent:
        return BridgeEvent(type=kind, data=[item.to_wire() for item in items], phase=self.phase)

    async def join_background(self) -> None:
        """Wait for in-flight projections and refreshes to finish."""
        pending = list(self._background_tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _spawn(self, coro: Any, *, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    # ------------------------------------------------------------------
    # Control operations
    # ------------------------------------------------------------------

    async def send(self, to: Optional[str], body: Optional[str]) -> str:
        if not to or not body:
            raise ValidationError("to and body required")
        try:
            return await self._backend.send_message(to, body)
        except Exception as e:
            logger.error("Send error: %s", e)
            raise BackendError(str(e) or type(e).__name__) from e

    def get_profile(self) -> Optional[Dict[str, Any]]:
        return self._store.snapshot().profile

    async def get_contacts(self) -> List[Contact]:
        try:
            return await self._projector.project_contacts()
        except Exception as e:
            logger.error("Contacts fetch error: %s", e)
            raise BackendError(str(e) or type(e).__name__) from e

    async def get_chats(self) -> List[Chat]:
        try:
            return await self._projector.project_chats()
        except Exception as e:
            logger.error("Chats fetch error: %s", e)
            raise BackendError(str(e) or type(e).__name__) from e

    async def logout(self) -> None:
        """Log the backend out; local state is reset and broadcast either way."""
        failure: Optional[Exception] = None
        try:
            await self._backend.logout()
        except Exception as e:
            logger.error("Logout error: %s", e)
            failure = e
        finally:
            self._store.clear()
            state = self._store.transition(LifecycleEvent(EventKind.LOGGED_OUT))
            await self._fanout.broadcast(status_event(state.phase))
        if failure is not None:
            raise BackendError(str(failure) or type(failure).__name__) from failure


__all__ = ["SessionBridge"]
