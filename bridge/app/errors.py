"""Error taxonomy shared by the bridge and its HTTP surface."""
from __future__ import annotations


class BridgeError(RuntimeError):
    """Base class for failures surfaced to API callers."""

    status_code: int = 500


class ValidationError(BridgeError):
    """Caller-supplied input is missing or malformed."""

    status_code = 400


class BackendError(BridgeError):
    """A call into the messaging backend failed."""

    status_code = 500


class AuthorizationError(BridgeError):
    """The shared secret was missing or wrong."""

    status_code = 401


class PartialProjectionError(BridgeError):
    """Enrichment of a single projected record failed; the projection continues."""

    def __init__(self, record_id: str, message: str) -> None:
        super().__init__(f"{record_id}: {message}")
        self.record_id = record_id


__all__ = ["BridgeError", "ValidationError", "BackendError", "AuthorizationError", "PartialProjectionError"]
