"""Plain-text projection of UI state for the terminal."""

from __future__ import annotations

from esplink.core.notifier import Notification
from esplink.state.models import UIState


def format_state(state: UIState) -> list[str]:
    lines = [
        f"IP: {state.ip_address or '-'}  Status: {state.global_status or '-'}  "
        f"Servo: {'ON' if state.servo_state else 'OFF'}",
    ]
    for index, motor in enumerate(state.motors):
        lines.append(
            f"  M{index}: pos={motor.position:>3} target={motor.target:>3} "
            f"[{motor.activity.value}]"
        )
    flags = []
    if state.all_motors_forward:
        flags.append("ALL FORWARD")
    if state.all_motors_backward:
        flags.append("ALL BACKWARD")
    if flags:
        lines.append("  " + ", ".join(flags))

    update = state.update
    if update.in_progress:
        lines.append(
            f"  Update ({update.kind.value}): {update.progress_percent}% "
            f"{update.status_text or 'Updating...'}"
        )
    elif update.latest_version:
        lines.append(f"  Latest version: {update.latest_version}")
    return lines


def format_notification(note: Notification) -> str:
    return f"[{note.severity.value.upper()}] {note.message}"
