"""UI state, local edit tracking, and snapshot reconciliation."""

from esplink.state.edit_guard import ALL_MOTORS, EditGuard
from esplink.state.models import MotorActivity, MotorState, UIState, UpdateStatus
from esplink.state.reconciler import apply_local_all_targets, apply_local_target, merge

__all__ = [
    "ALL_MOTORS",
    "EditGuard",
    "MotorActivity",
    "MotorState",
    "UIState",
    "UpdateStatus",
    "apply_local_all_targets",
    "apply_local_target",
    "merge",
]
