"""Merge device snapshots into UI state without clobbering local edits.

Every function here is pure: it takes the current UIState and returns a
new one, so the same inputs always give the same result.
"""

from __future__ import annotations

from typing import Iterable

from esplink.protocol.snapshot import DeviceSnapshot, MotorSnapshot, UpdateInfo, UpdateSnapshot
from esplink.state.edit_guard import EditGuard
from esplink.state.models import MotorState, UIState, UpdateStatus

# Motor fields the device always owns; target is handled separately.
_DEVICE_OWNED_MOTOR_FIELDS = ("position", "running", "calibrating", "full_forward", "full_backward")


def derive_aggregates(reported: Iterable[MotorSnapshot]) -> tuple[bool, bool]:
    """Return (all_forward, all_backward) over the motors in one snapshot.

    A motor missing from the snapshot does not count against either flag,
    but at least one motor has to be reported for a flag to be true.
    """
    motors = list(reported)
    if not motors:
        return False, False
    all_forward = all(m.full_forward is True for m in motors)
    all_backward = all(m.full_backward is True for m in motors)
    return all_forward, all_backward


def _merge_motor(current: MotorState, reported: MotorSnapshot, editing: bool) -> MotorState:
    changes = {
        name: getattr(reported, name)
        for name in _DEVICE_OWNED_MOTOR_FIELDS
        if getattr(reported, name) is not None
    }
    if reported.target is not None and not editing:
        changes["target"] = reported.target
    if not changes:
        return current
    return current.model_copy(update=changes)


def _merge_update(
    current: UpdateStatus,
    update: UpdateSnapshot | None,
    info: UpdateInfo | None,
) -> UpdateStatus:
    changes: dict[str, object] = {}
    if update is not None:
        if update.in_progress is not None:
            changes["in_progress"] = update.in_progress
        if update.progress_percent is not None:
            changes["progress_percent"] = update.progress_percent
        if update.status_text is not None:
            changes["status_text"] = update.status_text
        if update.kind is not None:
            changes["kind"] = update.kind
        if update.latest_version is not None:
            changes["latest_version"] = update.latest_version
    if info is not None:
        # An update check result is complete: a missing URL means no update.
        changes["firmware_url"] = info.firmware_url
        changes["littlefs_url"] = info.littlefs_url
        if info.latest_version is not None:
            changes["latest_version"] = info.latest_version
    if not changes:
        return current
    return current.model_copy(update=changes)


def merge(ui_state: UIState, snapshot: DeviceSnapshot, edit_guard: EditGuard) -> UIState:
    """Fold one snapshot into *ui_state*.

    Scalar fields overwrite unconditionally. Per-motor fields overwrite
    unconditionally except ``target``, which is left alone while the user
    is editing that motor. Aggregates are recomputed on every non-empty
    snapshot from the motors it reports, so they are false when it
    reports none. An empty snapshot returns *ui_state* unchanged.
    """
    if snapshot.is_empty:
        return ui_state

    changes: dict[str, object] = {}
    if snapshot.ip_address is not None:
        changes["ip_address"] = snapshot.ip_address
    if snapshot.global_status is not None:
        changes["global_status"] = str(snapshot.global_status)
    if snapshot.servo_state is not None:
        changes["servo_state"] = snapshot.servo_state

    update = _merge_update(ui_state.update, snapshot.update, snapshot.update_info)
    if update is not ui_state.update:
        changes["update"] = update

    reported = {
        index: motor
        for index, motor in snapshot.motors.items()
        if 0 <= index < ui_state.motor_count
    }
    if reported:
        motors = list(ui_state.motors)
        for index, motor in reported.items():
            motors[index] = _merge_motor(motors[index], motor, edit_guard.is_editing(index))
        changes["motors"] = tuple(motors)

    all_forward, all_backward = derive_aggregates(reported.values())
    changes["all_motors_forward"] = all_forward
    changes["all_motors_backward"] = all_backward
    return ui_state.model_copy(update=changes)


def apply_local_target(ui_state: UIState, motor: int, target: int) -> UIState:
    """Record a user-chosen target for one motor (preview or commit)."""
    if not 0 <= motor < ui_state.motor_count:
        raise IndexError(f"Motor index {motor} out of range 0..{ui_state.motor_count - 1}")
    motors = list(ui_state.motors)
    motors[motor] = motors[motor].model_copy(update={"target": target})
    return ui_state.model_copy(update={"motors": tuple(motors)})


def apply_local_all_targets(ui_state: UIState, target: int) -> UIState:
    """Record a committed group target on every motor."""
    motors = tuple(m.model_copy(update={"target": target}) for m in ui_state.motors)
    return ui_state.model_copy(update={"motors": motors})
