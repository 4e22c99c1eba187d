"""Fully-populated UI state, the single source of truth for rendering."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

from esplink.protocol.snapshot import GlobalStatus, UpdateKind


class MotorActivity(StrEnum):
    """Status badge derived from a motor's flags."""
    IDLE = "IDLE"
    MOVING = "MOVING"
    CALIBRATING = "CALIBRATING"
    FORWARD = "FORWARD"
    BACKWARD = "BACKWARD"


class MotorState(BaseModel):
    """Last known state of one motor."""
    model_config = {"frozen": True}

    position: int = 0
    target: int = 0
    running: bool = False
    calibrating: bool = False
    full_forward: bool = False
    full_backward: bool = False

    @property
    def activity(self) -> MotorActivity:
        if not self.running:
            return MotorActivity.IDLE
        if self.calibrating:
            return MotorActivity.CALIBRATING
        if self.full_forward:
            return MotorActivity.FORWARD
        if self.full_backward:
            return MotorActivity.BACKWARD
        return MotorActivity.MOVING


class UpdateStatus(BaseModel):
    """OTA update progress plus the most recent update check result."""
    model_config = {"frozen": True}

    in_progress: bool = False
    progress_percent: int = Field(default=0, ge=0, le=100)
    status_text: str = ""
    kind: UpdateKind = UpdateKind.FIRMWARE
    latest_version: str = ""
    firmware_url: str | None = None
    littlefs_url: str | None = None


class UIState(BaseModel):
    """Everything the rendering layer needs, with defaults applied."""
    model_config = {"frozen": True}

    ip_address: str = ""
    global_status: str = ""
    servo_state: bool = False
    update: UpdateStatus = Field(default_factory=UpdateStatus)
    motors: tuple[MotorState, ...] = ()
    all_motors_forward: bool = False
    all_motors_backward: bool = False

    @classmethod
    def initial(cls, motor_count: int) -> UIState:
        """Blank state for a device with *motor_count* motors."""
        return cls(motors=tuple(MotorState() for _ in range(motor_count)))

    @property
    def motor_count(self) -> int:
        return len(self.motors)

    @property
    def is_running(self) -> bool:
        return self.global_status.upper() == GlobalStatus.RUNNING

    def motor(self, index: int) -> MotorState:
        return self.motors[index]
