"""
Shared pytest fixtures for the session bridge tests.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest

from bridge.app.config import Settings
from bridge.app.session_manager import SessionBridge
from bridge.app.session_store import SessionStateStore


class FakeBackend:
    """In-memory stand-in for the messaging gateway."""

    def __init__(self) -> None:
        self.contacts: List[Dict[str, Any]] = []
        self.chats: List[Dict[str, Any]] = []
        self.last_seen: Dict[str, Any] = {}
        self.profile: Optional[Dict[str, Any]] = None
        self.failures: Dict[str, Exception] = {}
        self.sent: List[tuple] = []
        self.logout_calls = 0
        self.profile_calls = 0
        self.closed = False
        # when set, fetch_contacts blocks until the event fires
        self.contacts_gate: Optional[asyncio.Event] = None
        self.contacts_started = 0
        self.contacts_finished = 0

    def _maybe_fail(self, name: str) -> None:
        exc = self.failures.get(name)
        if exc is not None:
            raise exc

    async def send_message(self, to: str, body: str) -> str:
        self._maybe_fail("send_message")
        self.sent.append((to, body))
        return f"true_{to}_{len(self.sent)}"

    async def fetch_contacts(self) -> List[Dict[str, Any]]:
        self._maybe_fail("fetch_contacts")
        self.contacts_started += 1
        if self.contacts_gate is not None:
            await self.contacts_gate.wait()
        self.contacts_finished += 1
        return list(self.contacts)

    async def fetch_chats(self) -> List[Dict[str, Any]]:
        self._maybe_fail("fetch_chats")
        return list(self.chats)

    async def fetch_last_seen(self, contact_id: str) -> Optional[int]:
        value = self.last_seen.get(contact_id)
        if isinstance(value, Exception):
            raise value
        return value

    async def logout(self) -> None:
        self.logout_calls += 1
        self._maybe_fail("logout")

    async def current_profile(self) -> Optional[Dict[str, Any]]:
        self.profile_calls += 1
        self._maybe_fail("current_profile")
        return self.profile

    async def aclose(self) -> None:
        self.closed = True


def fake_encoder(raw: str) -> str:
    return f"data:image/png;base64,{raw}"


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from the developer's environment and .env file."""
    return Settings(
        _env_file=None,
        admin_token=None,
        frontend_url="*",
        log_directory=tmp_path / "logs",
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def store() -> SessionStateStore:
    return SessionStateStore(encoder=fake_encoder, clock=lambda: 1_700_000_000.0)


@pytest.fixture
def session_bridge(backend: FakeBackend, settings: Settings, store: SessionStateStore) -> SessionBridge:
    return SessionBridge(backend, settings=settings, store=store)


@pytest.fixture
def drain() -> Callable:
    """Pull everything currently buffered on a subscriber queue."""

    def _drain(queue) -> list:
        events = []
        while not queue.empty():
            events.append(queue.get_nowait())
        return events

    return _drain


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate`` holds."""

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout=timeout)
