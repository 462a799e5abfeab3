"""Shared session state definitions for the bridge."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


class SessionPhase(str, enum.Enum):
    """
    Lifecycle phases of the linked messaging session:

    1. UNINITIALIZED   - Nothing heard from the gateway yet (or after reset)
    2. AWAITING_SCAN   - QR challenge issued, waiting for the phone to scan it
    3. AUTHENTICATED   - Scan accepted, gateway still syncing
    4. READY           - Session usable; profile known
    5. DISCONNECTED    - Gateway dropped the session or logout completed
    6. AUTH_FAILED     - Gateway rejected the stored or scanned credentials

    A fresh challenge moves any phase back to AWAITING_SCAN.
    """
    UNINITIALIZED = "Uninitialized"
    AWAITING_SCAN = "AwaitingScan"
    AUTHENTICATED = "Authenticated"
    READY = "Ready"
    DISCONNECTED = "Disconnected"
    AUTH_FAILED = "AuthFailed"


class EventKind(str, enum.Enum):
    """Inbound events emitted by the messaging backend."""
    CHALLENGE = "challenge"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"
    AUTH_FAILURE = "auth_failure"
    MESSAGE = "message"
    LOGGED_OUT = "logged_out"


@dataclass
class LifecycleEvent:
    """One event taken off the inbound queue."""

    kind: EventKind
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SessionState:
    """Immutable view of the session returned by the state store."""

    phase: SessionPhase = SessionPhase.UNINITIALIZED
    cached_challenge: Optional[str] = None
    profile: Optional[Dict[str, Any]] = None
    ready_at: Optional[float] = None


@dataclass
class BridgeEvent:
    """Event payload distributed to realtime subscribers over the WebSocket."""

    type: str
    data: Union[Dict[str, Any], List[Any]]
    phase: SessionPhase

    def to_wire(self) -> Dict[str, Any]:
        return {"type": self.type, "phase": self.phase.value, "data": self.data}


__all__ = ["SessionPhase", "EventKind", "LifecycleEvent", "SessionState", "BridgeEvent"]
