"""Engine facade wiring session, reconciliation, gate, and notifier together.

The rendering layer reads ``DeviceEngine.state`` (or subscribes to it) and
calls the input-layer methods; it never writes UI state directly.

Usage:
    # inside a coroutine, or pass loop=
    engine = DeviceEngine(SessionConfig(host="192.168.1.40"))
    engine.subscribe(render)
    engine.start()
    engine.begin_edit(0)
    engine.preview_target(0, 12)
    engine.commit_target(0, 12)
    engine.update_firmware()      # staged, returns PendingConfirmation
    engine.confirm()
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from esplink.config import SessionConfig
from esplink.core.gate import Action, ActionGate, CommandBuilder, PendingConfirmation
from esplink.core.notifier import Notifier, Severity
from esplink.core.session import SessionManager
from esplink.exceptions import (
    EspLinkError,
    InvalidCommandError,
    NotConnectedError,
    TransportError,
)
from esplink.protocol.commands import Command, CommandType, build_command, now_ms
from esplink.protocol.snapshot import DeviceSnapshot, UpdateKind
from esplink.state.edit_guard import ALL_MOTORS, ControlId, EditGuard
from esplink.state.models import UIState
from esplink.state.reconciler import apply_local_all_targets, apply_local_target, merge
from esplink.transport.base import TransportFactory
from esplink.transport.websocket import WebSocketTransport
from esplink.utils.logging import get_logger

logger = get_logger(__name__)

StateCallback = Callable[[UIState], None]


class DeviceEngine:
    """One live session with a controller and the UI state derived from it.

    Args:
        config: Session settings; defaults to ``SessionConfig()``.
        transport_factory: Transport builder; defaults to WebSocketTransport.
        loop: Event loop for timers and the transport. Defaults to the
            running loop, so an engine built outside a coroutine must be
            given one explicitly.
        clock: Wall clock in epoch milliseconds.

    Raises:
        EspLinkError: If no loop is given and none is running.
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        transport_factory: TransportFactory | None = None,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                raise EspLinkError(
                    "DeviceEngine needs an event loop: pass loop= or create it "
                    "inside a running coroutine",
                    code="no_event_loop",
                ) from None
        self.config = config or SessionConfig()
        self._clock = clock
        self.edit_guard = EditGuard()
        self.notifier = Notifier(self.config.notify_timeout_ms, loop=loop, clock=clock)
        self.session = SessionManager(
            self.config,
            transport_factory or WebSocketTransport.factory(loop=loop),
            on_snapshot=self.apply_snapshot,
            notifier=self.notifier,
            loop=loop,
            clock=clock,
        )
        self.gate = ActionGate(self._dispatch, self.notifier)
        self._state = UIState.initial(self.config.motor_count)
        self._listeners: list[StateCallback] = []
        # Target to fall back to when a motor edit is cancelled: the value
        # before the edit, or the last one the device reported during it.
        self._edit_origin: dict[int, int] = {}
        self._group_target: int | None = None

        self._builders: dict[Action, CommandBuilder] = {
            Action.REFRESH: self._plain(CommandType.GET_IP),
            Action.SET_TARGET: self._build_set_target,
            Action.CALIBRATE: self._per_motor(CommandType.CALIBRATE),
            Action.FULL_FORWARD: self._per_motor(CommandType.FULL_FORWARD),
            Action.FULL_BACKWARD: self._per_motor(CommandType.FULL_BACKWARD),
            Action.SET_ALL_TARGETS: self._build_set_all_targets,
            Action.ALL_FULL_FORWARD: self._plain(CommandType.ALL_FULL_FORWARD),
            Action.ALL_FULL_BACKWARD: self._plain(CommandType.ALL_FULL_BACKWARD),
            Action.SET_SERVO: self._build_set_servo,
            Action.EMERGENCY_STOP: self._plain(CommandType.EMERGENCY_STOP),
            Action.CHECK_UPDATES: self._plain(CommandType.CHECK_UPDATES),
            Action.UPDATE_FIRMWARE: self._with_url(CommandType.UPDATE_FIRMWARE),
            Action.UPDATE_FILESYSTEM: self._with_url(CommandType.UPDATE_LITTLEFS),
            Action.CALIBRATE_ALL: self._plain(CommandType.CALIBRATE_ALL),
            # No wire command exists for these in the controller protocol.
            Action.RESTART: lambda payload: None,
            Action.RESET_WIFI: lambda payload: None,
            Action.FORMAT_FILESYSTEM: lambda payload: None,
        }

    # --- State ---

    @property
    def state(self) -> UIState:
        return self._state

    @property
    def pending(self) -> PendingConfirmation | None:
        return self.gate.pending

    def subscribe(self, listener: StateCallback) -> None:
        """Register a callback invoked with every new UIState."""
        self._listeners.append(listener)

    def apply_snapshot(self, snapshot: DeviceSnapshot) -> UIState:
        """Merge an inbound snapshot and publish the result."""
        for index, motor in snapshot.motors.items():
            if motor.target is not None and index in self._edit_origin:
                self._edit_origin[index] = motor.target
        previous = self._state
        merged = merge(previous, snapshot, self.edit_guard)
        self._announce_updates(previous, merged, snapshot)
        if merged is not previous:
            self._publish(merged)
        return merged

    # --- Lifecycle ---

    def start(self) -> None:
        self.session.start()

    def stop(self) -> None:
        self.session.stop()
        self.notifier.close()

    # --- Input layer ---

    @property
    def group_target(self) -> int | None:
        """In-progress value of the group slider, or None when idle."""
        return self._group_target

    def begin_edit(self, control: ControlId) -> None:
        if control != ALL_MOTORS:
            self._check_motor(control)
            self._edit_origin.setdefault(control, self._state.motors[control].target)
        self.edit_guard.begin_edit(control)

    def cancel_edit(self, control: ControlId) -> None:
        """Abandon an edit and put back the target it was covering."""
        self.edit_guard.end_edit(control)
        if control == ALL_MOTORS:
            self._group_target = None
            return
        origin = self._edit_origin.pop(control, None)
        if origin is not None and self._state.motors[control].target != origin:
            self._publish(apply_local_target(self._state, control, origin))

    def preview_target(self, motor: int, target: int) -> None:
        """Show an in-progress slider value without sending anything."""
        self._check_motor(motor)
        self._edit_origin.setdefault(motor, self._state.motors[motor].target)
        self._publish(apply_local_target(self._state, motor, target))

    def commit_target(self, motor: int, target: int) -> bool:
        """Finish an edit on one motor and send its new target."""
        self._check_motor(motor)
        self._check_target(target)
        self.edit_guard.end_edit(motor)
        self._edit_origin.pop(motor, None)
        self._publish(apply_local_target(self._state, motor, target))
        return self._perform_direct(Action.SET_TARGET, motor=motor, target=target)

    def preview_all_targets(self, target: int) -> None:
        """Track the group slider while dragging; motor targets are untouched."""
        self._group_target = target

    def commit_all_targets(self, target: int) -> bool:
        """Finish an edit on the group slider and send it to every motor."""
        self._check_target(target)
        self.edit_guard.end_edit(ALL_MOTORS)
        self._group_target = None
        self._publish(apply_local_all_targets(self._state, target))
        return self._perform_direct(Action.SET_ALL_TARGETS, target=target)

    # --- Actions ---

    def perform(self, action: Action | str, **params: Any) -> PendingConfirmation | None:
        """Run a direct action, or stage a gated one for confirmation.

        Raises:
            InvalidCommandError: If parameters are out of range or missing.
        """
        action = Action(action)
        payload = self._resolve_params(action, params)
        return self.gate.request(action, self._builders[action], payload)

    def execute(self, action: Action | str, **params: Any) -> None:
        """Like ``perform`` but raise ConfirmationRequired for gated actions."""
        action = Action(action)
        payload = self._resolve_params(action, params)
        self.gate.require(action, self._builders[action], payload)

    def confirm(self) -> Command | None:
        return self.gate.confirm()

    def cancel(self) -> None:
        self.gate.cancel()

    def refresh(self) -> None:
        self.perform(Action.REFRESH)

    def set_target(self, motor: int, target: int) -> None:
        self.perform(Action.SET_TARGET, motor=motor, target=target)

    def calibrate(self, motor: int) -> None:
        self.perform(Action.CALIBRATE, motor=motor)

    def full_forward(self, motor: int) -> None:
        self.perform(Action.FULL_FORWARD, motor=motor)

    def full_backward(self, motor: int) -> None:
        self.perform(Action.FULL_BACKWARD, motor=motor)

    def set_all_targets(self, target: int) -> None:
        self.perform(Action.SET_ALL_TARGETS, target=target)

    def all_full_forward(self) -> None:
        self.perform(Action.ALL_FULL_FORWARD)

    def all_full_backward(self) -> None:
        self.perform(Action.ALL_FULL_BACKWARD)

    def set_servo(self, state: bool) -> None:
        self.perform(Action.SET_SERVO, state=state)

    def emergency_stop(self) -> None:
        self.perform(Action.EMERGENCY_STOP)

    def check_updates(self) -> None:
        self.perform(Action.CHECK_UPDATES)

    def update_firmware(self, url: str | None = None) -> PendingConfirmation | None:
        return self.perform(Action.UPDATE_FIRMWARE, url=url)

    def update_filesystem(self, url: str | None = None) -> PendingConfirmation | None:
        return self.perform(Action.UPDATE_FILESYSTEM, url=url)

    def calibrate_all(self) -> PendingConfirmation | None:
        return self.perform(Action.CALIBRATE_ALL)

    def restart(self) -> PendingConfirmation | None:
        return self.perform(Action.RESTART)

    def reset_wifi(self) -> PendingConfirmation | None:
        return self.perform(Action.RESET_WIFI)

    def format_filesystem(self) -> PendingConfirmation | None:
        return self.perform(Action.FORMAT_FILESYSTEM)

    # --- Command builders ---

    def _command(self, command_type: CommandType, **payload: Any) -> Command:
        return build_command(command_type, payload, issued_at=self._clock())

    def _plain(self, command_type: CommandType) -> CommandBuilder:
        return lambda payload: self._command(command_type)

    def _per_motor(self, command_type: CommandType) -> CommandBuilder:
        def build(payload: dict[str, Any]) -> Command:
            motor = self._require(payload, "motor")
            self._check_motor(motor)
            return self._command(command_type, motor=motor)
        return build

    def _with_url(self, command_type: CommandType) -> CommandBuilder:
        return lambda payload: self._command(command_type, url=self._require(payload, "url"))

    def _build_set_target(self, payload: dict[str, Any]) -> Command:
        motor = self._require(payload, "motor")
        target = self._require(payload, "target")
        self._check_motor(motor)
        self._check_target(target)
        return self._command(CommandType.SET_TARGET, motor=motor, target=target)

    def _build_set_all_targets(self, payload: dict[str, Any]) -> Command:
        target = self._require(payload, "target")
        self._check_target(target)
        return self._command(CommandType.SET_ALL_TARGETS, target=target)

    def _build_set_servo(self, payload: dict[str, Any]) -> Command:
        return self._command(CommandType.SET_SERVO, state=self._require(payload, "state"))

    # --- Helpers ---

    def _resolve_params(self, action: Action, params: dict[str, Any]) -> dict[str, Any]:
        payload = {k: v for k, v in params.items() if v is not None}
        if action == Action.UPDATE_FIRMWARE and "url" not in payload:
            url = self._state.update.firmware_url
            if not url:
                raise InvalidCommandError("No firmware update available", code="no_update")
            payload["url"] = url
        elif action == Action.UPDATE_FILESYSTEM and "url" not in payload:
            url = self._state.update.littlefs_url
            if not url:
                raise InvalidCommandError("No filesystem update available", code="no_update")
            payload["url"] = url
        return payload

    def _perform_direct(self, action: Action, **params: Any) -> bool:
        command = self._builders[action](params)
        return command is not None and self._dispatch(command)

    def _dispatch(self, command: Command) -> bool:
        try:
            self.session.send(command)
        except NotConnectedError:
            return False
        except TransportError as exc:
            logger.warning("command_send_failed", type=command.type.value, error=str(exc))
            return False
        return True

    @staticmethod
    def _require(payload: dict[str, Any], key: str) -> Any:
        if key not in payload:
            raise InvalidCommandError(f"Missing parameter '{key}'", code="missing_param")
        return payload[key]

    def _check_motor(self, motor: Any) -> None:
        if isinstance(motor, bool) or not isinstance(motor, int):
            raise InvalidCommandError(f"Motor index must be an integer, got {motor!r}")
        if not 0 <= motor < self.config.motor_count:
            raise InvalidCommandError(
                f"Motor index {motor} out of range 0..{self.config.motor_count - 1}",
                code="motor_range",
            )

    def _check_target(self, target: Any) -> None:
        if isinstance(target, bool) or not isinstance(target, int):
            raise InvalidCommandError(f"Target must be an integer, got {target!r}")
        low, high = self.config.target_min, self.config.target_max
        if not low <= target <= high:
            raise InvalidCommandError(
                f"Target {target} out of range {low}..{high}", code="target_range"
            )

    def _publish(self, state: UIState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)

    def _announce_updates(
        self,
        previous: UIState,
        merged: UIState,
        snapshot: DeviceSnapshot,
    ) -> None:
        info = snapshot.update_info
        if info is not None:
            if not info.firmware_url and not info.littlefs_url:
                self.notifier.notify("No updates available", Severity.WARNING)
            else:
                self.notifier.notify("Update check complete", Severity.SUCCESS)

        update = merged.update
        if snapshot.update is None or update == previous.update:
            return
        if update.in_progress or not update.status_text:
            return
        if update.progress_percent == 100:
            if update.kind == UpdateKind.FIRMWARE:
                self.notifier.notify(
                    "Firmware update complete! Device will restart.", Severity.SUCCESS
                )
            else:
                self.notifier.notify("LittleFS update complete!", Severity.SUCCESS)
        elif any(word in update.status_text.lower() for word in ("error", "failed")):
            self.notifier.notify(f"Update failed: {update.status_text}", Severity.ERROR)
