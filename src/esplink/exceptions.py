"""Exception hierarchy for the esplink session engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from esplink.core.gate import PendingConfirmation


class EspLinkError(Exception):
    """Base exception for all esplink errors."""

    def __init__(self, message: str, code: str | None = None) -> None:
        self.code = code
        super().__init__(message)


class TransportError(EspLinkError):
    """The WebSocket transport failed to open, send, or stay connected."""


class DecodeError(EspLinkError):
    """An inbound message could not be decoded into a snapshot."""


class NotConnectedError(EspLinkError):
    """A command was sent while the session was not open."""


class InvalidCommandError(EspLinkError):
    """A command type or payload does not match the wire protocol."""


class ConfirmationRequired(EspLinkError):
    """A gated action was requested without an explicit confirmation.

    Not a failure: the staged confirmation is carried on ``pending`` and is
    resolved by confirming or cancelling it on the gate.
    """

    def __init__(self, pending: PendingConfirmation) -> None:
        self.pending = pending
        super().__init__(f"{pending.title}: confirmation required", code="confirmation_required")
