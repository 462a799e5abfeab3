"""
Tests for the session state machine.

Tests:
- Transition table, including rejected events
- Challenge caching and clearing
- Random event sequences against an independent model of the table
- Real QR rendering
"""

import base64
import random

import pytest

from bridge.app.session_store import SessionStateStore, encode_challenge
from bridge.app.state import EventKind, LifecycleEvent, SessionPhase

from .conftest import fake_encoder

P = SessionPhase


def make_event(kind: EventKind) -> LifecycleEvent:
    if kind is EventKind.CHALLENGE:
        return LifecycleEvent(kind, {"qr": "challenge-token"})
    if kind is EventKind.READY:
        return LifecycleEvent(kind, {"profile": {"name": "Alice"}})
    return LifecycleEvent(kind)


def expected_next(phase: SessionPhase, kind: EventKind) -> SessionPhase:
    if kind is EventKind.CHALLENGE:
        return P.AWAITING_SCAN
    if kind is EventKind.AUTHENTICATED:
        return P.AUTHENTICATED if phase in (P.AWAITING_SCAN, P.UNINITIALIZED, P.DISCONNECTED) else phase
    if kind is EventKind.READY:
        return P.READY if phase in (P.AUTHENTICATED, P.AWAITING_SCAN, P.UNINITIALIZED, P.DISCONNECTED) else phase
    if kind is EventKind.AUTH_FAILURE:
        return P.AUTH_FAILED
    if kind in (EventKind.DISCONNECTED, EventKind.LOGGED_OUT):
        return P.DISCONNECTED
    return phase


def drive(store: SessionStateStore, *kinds: EventKind):
    state = store.snapshot()
    for kind in kinds:
        state = store.transition(make_event(kind))
    return state


class TestTransitions:
    """Tests for individual rows of the transition table."""

    def test_initial_state(self, store):
        state = store.snapshot()
        assert state.phase is P.UNINITIALIZED
        assert state.cached_challenge is None
        assert state.profile is None
        assert state.ready_at is None

    def test_challenge_caches_artifact(self, store):
        state = drive(store, EventKind.CHALLENGE)

        assert state.phase is P.AWAITING_SCAN
        assert state.cached_challenge == fake_encoder("challenge-token")

    @pytest.mark.parametrize("start", [EventKind.DISCONNECTED, EventKind.AUTH_FAILURE, EventKind.LOGGED_OUT])
    def test_challenge_reenters_awaiting_scan(self, store, start):
        drive(store, start)
        assert drive(store, EventKind.CHALLENGE).phase is P.AWAITING_SCAN

    def test_new_challenge_replaces_cached_one(self, store):
        store.transition(LifecycleEvent(EventKind.CHALLENGE, {"qr": "first"}))
        state = store.transition(LifecycleEvent(EventKind.CHALLENGE, {"qr": "second"}))

        assert state.cached_challenge == fake_encoder("second")

    def test_ready_clears_challenge_and_sets_profile(self, store):
        state = drive(store, EventKind.CHALLENGE, EventKind.AUTHENTICATED, EventKind.READY)

        assert state.phase is P.READY
        assert state.cached_challenge is None
        assert state.profile == {"name": "Alice"}
        assert state.ready_at == 1_700_000_000.0

    def test_ready_directly_from_awaiting_scan(self, store):
        state = drive(store, EventKind.CHALLENGE, EventKind.READY)
        assert state.phase is P.READY
        assert state.cached_challenge is None

    def test_restored_session_reaches_ready_without_challenge(self, store):
        state = drive(store, EventKind.AUTHENTICATED, EventKind.READY)
        assert state.phase is P.READY

    def test_auth_failure_clears_challenge(self, store):
        state = drive(store, EventKind.CHALLENGE, EventKind.AUTH_FAILURE)

        assert state.phase is P.AUTH_FAILED
        assert state.cached_challenge is None

    def test_disconnect_clears_profile(self, store):
        state = drive(store, EventKind.CHALLENGE, EventKind.READY, EventKind.DISCONNECTED)

        assert state.phase is P.DISCONNECTED
        assert state.profile is None
        assert state.cached_challenge is None
        assert state.ready_at is not None

    def test_logged_out_clears_everything(self, store):
        state = drive(store, EventKind.CHALLENGE, EventKind.READY, EventKind.LOGGED_OUT)

        assert state.phase is P.DISCONNECTED
        assert state.profile is None
        assert state.ready_at is None

    def test_authenticated_rejected_when_ready(self, store):
        drive(store, EventKind.CHALLENGE, EventKind.READY)
        state = drive(store, EventKind.AUTHENTICATED)

        assert state.phase is P.READY
        assert state.profile == {"name": "Alice"}

    def test_ready_restored_after_disconnect(self, store):
        drive(store, EventKind.CHALLENGE, EventKind.READY, EventKind.DISCONNECTED)
        state = drive(store, EventKind.AUTHENTICATED, EventKind.READY)

        assert state.phase is P.READY
        assert state.profile == {"name": "Alice"}
        assert state.cached_challenge is None

    def test_ready_rejected_after_auth_failure(self, store):
        state = drive(store, EventKind.AUTH_FAILURE, EventKind.AUTHENTICATED, EventKind.READY)
        assert state.phase is P.AUTH_FAILED
        assert state.profile is None

    def test_message_does_not_change_phase(self, store):
        drive(store, EventKind.CHALLENGE)
        assert drive(store, EventKind.MESSAGE).phase is P.AWAITING_SCAN

    def test_challenge_without_data_is_ignored(self, store):
        state = store.transition(LifecycleEvent(EventKind.CHALLENGE, {}))
        assert state.phase is P.UNINITIALIZED

    def test_encoder_failure_keeps_previous_state(self):
        def broken(raw):
            raise ValueError("cannot render")

        store = SessionStateStore(encoder=broken)
        state = store.transition(make_event(EventKind.CHALLENGE))

        assert state.phase is P.UNINITIALIZED
        assert state.cached_challenge is None

    def test_clear_resets(self, store):
        drive(store, EventKind.CHALLENGE, EventKind.READY)
        state = store.clear()

        assert state.phase is P.UNINITIALIZED
        assert state.cached_challenge is None
        assert state.profile is None
        assert state.ready_at is None

    def test_snapshot_is_detached(self, store):
        drive(store, EventKind.CHALLENGE, EventKind.READY)
        snapshot = store.snapshot()
        snapshot.profile["name"] = "Mallory"

        assert store.snapshot().profile == {"name": "Alice"}


class TestReplayProperty:
    """Replaying any event sequence lands where the table predicts."""

    @pytest.mark.parametrize("seed", range(25))
    def test_random_sequences(self, seed):
        rng = random.Random(seed)
        store = SessionStateStore(encoder=fake_encoder)
        phase = P.UNINITIALIZED
        kinds = list(EventKind)

        for _ in range(40):
            kind = rng.choice(kinds)
            phase = expected_next(phase, kind)
            state = store.transition(make_event(kind))
            assert state.phase is phase
            if phase not in (P.AWAITING_SCAN, P.AUTHENTICATED):
                assert state.cached_challenge is None
            if phase is not P.READY:
                assert state.profile is None


class TestQrRendering:
    """Tests for the default challenge encoder."""

    def test_encode_challenge_produces_png_data_uri(self):
        uri = encode_challenge("XYZ")

        prefix = "data:image/png;base64,"
        assert uri.startswith(prefix)
        png = base64.b64decode(uri[len(prefix):])
        assert png.startswith(b"\x89PNG")

    def test_store_uses_qrcode_by_default(self):
        store = SessionStateStore()
        state = store.transition(LifecycleEvent(EventKind.CHALLENGE, {"qr": "XYZ"}))

        assert state.cached_challenge.startswith("data:image/png;base64,")
