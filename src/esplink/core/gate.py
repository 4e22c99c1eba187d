"""Confirmation gate for destructive or device-disrupting actions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable

from esplink.core.notifier import Notifier, Severity
from esplink.exceptions import ConfirmationRequired
from esplink.protocol.commands import Command
from esplink.utils.logging import get_logger

logger = get_logger(__name__)


class Action(StrEnum):
    """User-initiated actions the engine knows how to perform."""
    # Direct
    REFRESH = "refresh"
    SET_TARGET = "set_target"
    CALIBRATE = "calibrate"
    FULL_FORWARD = "full_forward"
    FULL_BACKWARD = "full_backward"
    SET_ALL_TARGETS = "set_all_targets"
    ALL_FULL_FORWARD = "all_full_forward"
    ALL_FULL_BACKWARD = "all_full_backward"
    SET_SERVO = "set_servo"
    EMERGENCY_STOP = "emergency_stop"
    CHECK_UPDATES = "check_updates"
    # Gated
    UPDATE_FIRMWARE = "update_firmware"
    UPDATE_FILESYSTEM = "update_filesystem"
    RESTART = "restart"
    RESET_WIFI = "reset_wifi"
    FORMAT_FILESYSTEM = "format_filesystem"
    CALIBRATE_ALL = "calibrate_all"


@dataclass(frozen=True)
class ConfirmationPrompt:
    """Dialog text for a gated action and the notice shown once confirmed."""

    title: str
    message: str
    notice: str
    notice_severity: Severity = Severity.SUCCESS


GATED_ACTIONS: dict[Action, ConfirmationPrompt] = {
    Action.UPDATE_FIRMWARE: ConfirmationPrompt(
        title="Update Firmware",
        message=(
            "Are you sure you want to update the firmware? The device will restart "
            "after update. Do not power off during update!"
        ),
        notice="Starting firmware update...",
    ),
    Action.UPDATE_FILESYSTEM: ConfirmationPrompt(
        title="Update LittleFS",
        message=(
            "Are you sure you want to update the filesystem? This will replace all "
            "web files. The device will not restart."
        ),
        notice="Starting LittleFS update...",
    ),
    Action.RESTART: ConfirmationPrompt(
        title="Restart ESP32",
        message=(
            "Are you sure you want to restart the ESP32? All current operations "
            "will be interrupted."
        ),
        notice="Restarting ESP32...",
    ),
    Action.RESET_WIFI: ConfirmationPrompt(
        title="Reset WiFi Settings",
        message="This will reset all WiFi settings and restart in configuration mode.",
        notice="WiFi settings reset. Reconnecting...",
        notice_severity=Severity.WARNING,
    ),
    Action.FORMAT_FILESYSTEM: ConfirmationPrompt(
        title="Format Filesystem",
        message=(
            "WARNING: This will erase all files from the filesystem! "
            "This action cannot be undone."
        ),
        notice="Formatting filesystem...",
        notice_severity=Severity.WARNING,
    ),
    Action.CALIBRATE_ALL: ConfirmationPrompt(
        title="Calibrate All Motors",
        message="This will start calibration for all motors.",
        notice="Starting calibration of all motors...",
    ),
}

# Notices shown after a direct action was actually sent.
DIRECT_NOTICES: dict[Action, tuple[str, Severity]] = {
    Action.CHECK_UPDATES: ("Checking for updates...", Severity.SUCCESS),
    Action.EMERGENCY_STOP: ("Emergency stop activated!", Severity.WARNING),
}

# Builds the wire command for an action; None when the action has no
# command in the device protocol.
CommandBuilder = Callable[[dict[str, Any]], Command | None]
Dispatcher = Callable[[Command], bool]


@dataclass
class PendingConfirmation:
    """A gated action waiting for the user's decision."""

    action: Action
    title: str
    message: str
    on_confirm: CommandBuilder
    payload: dict[str, Any] = field(default_factory=dict)


def is_gated(action: Action) -> bool:
    return action in GATED_ACTIONS


class ActionGate:
    """Routes actions either straight to dispatch or through confirmation.

    Only one confirmation can be pending. Requesting a second gated action
    before the first is resolved replaces it.
    """

    def __init__(self, dispatch: Dispatcher, notifier: Notifier | None = None) -> None:
        self._dispatch = dispatch
        self._notifier = notifier
        self._pending: PendingConfirmation | None = None

    @property
    def pending(self) -> PendingConfirmation | None:
        return self._pending

    def request(
        self,
        action: Action,
        build: CommandBuilder,
        payload: dict[str, Any] | None = None,
    ) -> PendingConfirmation | None:
        """Perform a direct action now, or stage a gated one.

        Returns:
            The staged PendingConfirmation for gated actions, else None.
        """
        payload = dict(payload or {})
        prompt = GATED_ACTIONS.get(action)
        if prompt is None:
            command = build(payload)
            if command is not None and self._dispatch(command):
                notice = DIRECT_NOTICES.get(action)
                if notice is not None and self._notifier is not None:
                    self._notifier.notify(*notice)
            return None

        if self._pending is not None:
            logger.info(
                "confirmation_replaced",
                previous=self._pending.action.value,
                action=action.value,
            )
        self._pending = PendingConfirmation(
            action=action,
            title=prompt.title,
            message=prompt.message,
            on_confirm=build,
            payload=payload,
        )
        logger.info("confirmation_requested", action=action.value)
        return self._pending

    def require(
        self,
        action: Action,
        build: CommandBuilder,
        payload: dict[str, Any] | None = None,
    ) -> None:
        """Like ``request`` but raise ConfirmationRequired for gated actions."""
        pending = self.request(action, build, payload)
        if pending is not None:
            raise ConfirmationRequired(pending)

    def confirm(self) -> Command | None:
        """Run the pending action and dispatch its command, if any.

        Returns:
            The command that was built, or None if nothing was pending or
            the action has no wire command.
        """
        pending, self._pending = self._pending, None
        if pending is None:
            logger.debug("confirm_without_pending")
            return None

        logger.info("confirmation_accepted", action=pending.action.value)
        command = pending.on_confirm(pending.payload)
        sent = True
        if command is not None:
            sent = self._dispatch(command)
        prompt = GATED_ACTIONS[pending.action]
        if sent and self._notifier is not None:
            self._notifier.notify(prompt.notice, prompt.notice_severity)
        return command

    def cancel(self) -> None:
        """Discard the pending confirmation with no side effect."""
        if self._pending is not None:
            logger.info("confirmation_cancelled", action=self._pending.action.value)
        self._pending = None

    # Background-area and close-button dismissal behave like cancel.
    dismiss = cancel
