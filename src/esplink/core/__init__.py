"""Session engine: connection lifecycle, action gating, notifications."""

from esplink.core.engine import DeviceEngine
from esplink.core.gate import Action, ActionGate, PendingConfirmation
from esplink.core.notifier import Notification, Notifier, Severity
from esplink.core.session import ConnectionState, SessionManager

__all__ = [
    "Action",
    "ActionGate",
    "ConnectionState",
    "DeviceEngine",
    "Notification",
    "Notifier",
    "PendingConfirmation",
    "SessionManager",
    "Severity",
]
