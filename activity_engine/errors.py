"""Exception types raised by the engine."""

from __future__ import annotations


class StoreUnavailableError(RuntimeError):
    """The embedded store could not be opened, read or written."""


class DecodeError(ValueError):
    """An auxiliary payload could not be decoded for its event type."""

    def __init__(self, event_type: str, reason: str) -> None:
        super().__init__(f"Malformed '{event_type}' payload: {reason}")
        self.event_type = event_type
        self.reason = reason
