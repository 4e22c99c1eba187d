"""Per-control tracking of uncommitted local edits."""

from __future__ import annotations

from esplink.utils.logging import get_logger

logger = get_logger(__name__)

# Control id of the group target slider. The device reports no aggregate
# target, so snapshots never touch it.
ALL_MOTORS = "all"

ControlId = int | str


class EditGuard:
    """Records which controls the user is currently dragging or editing.

    The input layer calls ``begin_edit`` on press/touch-start and
    ``end_edit`` on commit or cancel; the reconciler asks ``is_editing``
    while merging each snapshot. Controls are independent of each other.
    """

    def __init__(self) -> None:
        self._editing: dict[ControlId, bool] = {}

    def begin_edit(self, control: ControlId) -> None:
        self._editing[control] = True
        logger.debug("edit_begin", control=control)

    def end_edit(self, control: ControlId) -> None:
        self._editing[control] = False
        logger.debug("edit_end", control=control)

    def is_editing(self, control: ControlId) -> bool:
        return self._editing.get(control, False)

    def active_controls(self) -> list[ControlId]:
        """Controls with an edit currently in progress."""
        return [c for c, active in self._editing.items() if active]

    def clear(self) -> None:
        self._editing.clear()
