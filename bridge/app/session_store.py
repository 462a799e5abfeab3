"""Single-owner record of the messaging session lifecycle."""
from __future__ import annotations

import base64
import io
import logging
import time
from typing import Any, Callable, Dict, FrozenSet, Optional

import qrcode
from qrcode.constants import ERROR_CORRECT_M

from .state import EventKind, LifecycleEvent, SessionPhase, SessionState

logger = logging.getLogger(__name__)

ChallengeEncoder = Callable[[str], str]

_ANY: FrozenSet[SessionPhase] = frozenset(SessionPhase)

# Uninitialized and Disconnected accept authenticated/ready without a challenge:
# the gateway may restore saved credentials at start-up or on reconnect.
# AuthFailed does not; rejected credentials need a fresh challenge.
_RESTORABLE: FrozenSet[SessionPhase] = frozenset({SessionPhase.UNINITIALIZED, SessionPhase.DISCONNECTED})

# event kind -> (phases it may be applied from, phase it leads to)
TRANSITIONS: Dict[EventKind, tuple[FrozenSet[SessionPhase], SessionPhase]] = {
    EventKind.CHALLENGE: (_ANY, SessionPhase.AWAITING_SCAN),
    EventKind.AUTHENTICATED: (
        frozenset({SessionPhase.AWAITING_SCAN}) | _RESTORABLE,
        SessionPhase.AUTHENTICATED,
    ),
    EventKind.READY: (
        frozenset({SessionPhase.AUTHENTICATED, SessionPhase.AWAITING_SCAN}) | _RESTORABLE,
        SessionPhase.READY,
    ),
    EventKind.AUTH_FAILURE: (_ANY, SessionPhase.AUTH_FAILED),
    EventKind.DISCONNECTED: (_ANY, SessionPhase.DISCONNECTED),
    EventKind.LOGGED_OUT: (_ANY, SessionPhase.DISCONNECTED),
}


def encode_challenge(raw: str, *, box_size: int = 10, border: int = 4) -> str:
    """Render a raw QR challenge string as a PNG data URI."""
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_M, box_size=box_size, border=border)
    qr.add_data(raw)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


class SessionStateStore:
    """Holds phase, cached challenge, profile and ready timestamp.

    Every mutation is synchronous so two transitions can never interleave on
    the event loop. Callers get frozen :class:`SessionState` snapshots back.
    """

    def __init__(
        self,
        *,
        encoder: Optional[ChallengeEncoder] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._encode = encoder or encode_challenge
        self._clock = clock
        self._phase = SessionPhase.UNINITIALIZED
        self._cached_challenge: Optional[str] = None
        self._profile: Optional[Dict[str, Any]] = None
        self._ready_at: Optional[float] = None

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    def snapshot(self) -> SessionState:
        return SessionState(
            phase=self._phase,
            cached_challenge=self._cached_challenge,
            profile=dict(self._profile) if self._profile is not None else None,
            ready_at=self._ready_at,
        )

    def clear(self) -> SessionState:
        self._phase = SessionPhase.UNINITIALIZED
        self._cached_challenge = None
        self._profile = None
        self._ready_at = None
        return self.snapshot()

    def transition(self, event: LifecycleEvent) -> SessionState:
        """Apply one lifecycle event; disallowed events leave the state untouched."""
        rule = TRANSITIONS.get(event.kind)
        if rule is None:
            logger.debug("Event %s carries no state change", event.kind.value)
            return self.snapshot()

        sources, target = rule
        if self._phase not in sources:
            logger.warning(
                "Ignoring %s event in phase %s", event.kind.value, self._phase.value
            )
            return self.snapshot()

        if event.kind is EventKind.CHALLENGE:
            raw = event.payload.get("qr")
            if not raw:
                logger.warning("Challenge event without QR data ignored")
                return self.snapshot()
            try:
                self._cached_challenge = self._encode(str(raw))
            except Exception as exc:
                logger.exception("Failed to encode QR challenge: %s", exc)
                return self.snapshot()
            # a new challenge means any previous link is gone
            self._profile = None
        elif event.kind is EventKind.READY:
            self._cached_challenge = None
            profile = event.payload.get("profile")
            self._profile = dict(profile) if profile else {}
            self._ready_at = self._clock()
        elif event.kind in (EventKind.AUTH_FAILURE, EventKind.DISCONNECTED):
            self._cached_challenge = None
            self._profile = None
        elif event.kind is EventKind.LOGGED_OUT:
            self._cached_challenge = None
            self._profile = None
            self._ready_at = None

        previous, self._phase = self._phase, target
        logger.info("Session phase %s -> %s (%s)", previous.value, target.value, event.kind.value)
        return self.snapshot()


__all__ = ["SessionStateStore", "TRANSITIONS", "encode_challenge"]
