"""Inbound state snapshot decoding.

The controller pushes JSON objects whose top-level keys are all optional::

    {
      "ip": "192.168.1.40",
      "globalStatus": "RUNNING",
      "servoState": true,
      "updateInProgress": false, "updateProgress": 100,
      "updateStatus": "Update complete", "updateType": "firmware",
      "latestVersion": "1.4.0",
      "type": "update_info",
      "data": {"latest_version": "1.4.0", "firmware_url": "...", "littlefs_url": "..."},
      "motor0": {"position": 3, "target": 10, "running": true,
                 "calibrating": false, "fullForward": false, "fullBackward": false}
    }

Absent keys mean "unchanged". Values that are present but cannot be
coerced are dropped individually, so one bad field never costs the rest
of the snapshot.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable, Mapping

from esplink.exceptions import DecodeError
from esplink.utils.logging import get_logger

logger = get_logger(__name__)

UPDATE_INFO_TYPE = "update_info"

_TRUE_STRINGS = frozenset({"true", "1", "on", "yes"})
_FALSE_STRINGS = frozenset({"false", "0", "off", "no"})


class GlobalStatus(StrEnum):
    """Controller-wide status values reported by stock firmware."""
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"


class UpdateKind(StrEnum):
    """What an OTA update is writing."""
    FIRMWARE = "firmware"
    FILESYSTEM = "littlefs"


@dataclass(frozen=True)
class MotorSnapshot:
    """One motor's reported fields. ``None`` marks a field that was not reported."""

    position: int | None = None
    target: int | None = None
    running: bool | None = None
    calibrating: bool | None = None
    full_forward: bool | None = None
    full_backward: bool | None = None


@dataclass(frozen=True)
class UpdateSnapshot:
    """OTA progress fields carried on regular state pushes."""

    in_progress: bool | None = None
    progress_percent: int | None = None
    status_text: str | None = None
    kind: UpdateKind | None = None
    latest_version: str | None = None


@dataclass(frozen=True)
class UpdateInfo:
    """Result of a ``check_updates`` request (``type == "update_info"``)."""

    latest_version: str | None = None
    firmware_url: str | None = None
    littlefs_url: str | None = None


@dataclass(frozen=True)
class DeviceSnapshot:
    """A decoded, possibly partial, device state push."""

    ip_address: str | None = None
    global_status: GlobalStatus | str | None = None
    servo_state: bool | None = None
    update: UpdateSnapshot | None = None
    update_info: UpdateInfo | None = None
    motors: dict[int, MotorSnapshot] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return (
            self.ip_address is None
            and self.global_status is None
            and self.servo_state is None
            and self.update is None
            and self.update_info is None
            and not self.motors
        )


class _Skip:
    """Marker for a value that failed coercion."""


_SKIP = _Skip()


def _coerce_int(value: Any) -> int | _Skip:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(round(value)) if math.isfinite(value) else _SKIP
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return _SKIP
        return int(round(number)) if math.isfinite(number) else _SKIP
    return _SKIP


def _coerce_bool(value: Any) -> bool | _Skip:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    return _SKIP


def _coerce_str(value: Any) -> str | _Skip:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return _SKIP


def _take(
    source: Mapping[str, Any],
    key: str,
    coerce: Callable[[Any], Any],
    *,
    context: str = "",
) -> Any:
    """Return the coerced value for *key*, or None if absent or unparseable."""
    if key not in source or source[key] is None:
        return None
    result = coerce(source[key])
    if result is _SKIP:
        logger.debug(
            "snapshot_field_skipped",
            field=f"{context}{key}",
            value=repr(source[key])[:64],
        )
        return None
    return result


def _parse_global_status(value: str | None) -> GlobalStatus | str | None:
    if not value:
        return None
    try:
        return GlobalStatus(value.upper())
    except ValueError:
        return value


def _parse_motor(raw: Mapping[str, Any], index: int) -> MotorSnapshot:
    ctx = f"motor{index}."
    return MotorSnapshot(
        position=_take(raw, "position", _coerce_int, context=ctx),
        target=_take(raw, "target", _coerce_int, context=ctx),
        running=_take(raw, "running", _coerce_bool, context=ctx),
        calibrating=_take(raw, "calibrating", _coerce_bool, context=ctx),
        full_forward=_take(raw, "fullForward", _coerce_bool, context=ctx),
        full_backward=_take(raw, "fullBackward", _coerce_bool, context=ctx),
    )


def _parse_update(raw: Mapping[str, Any]) -> UpdateSnapshot | None:
    in_progress = _take(raw, "updateInProgress", _coerce_bool)
    progress = _take(raw, "updateProgress", _coerce_int)
    if progress is not None:
        progress = max(0, min(100, progress))
    status_text = _take(raw, "updateStatus", _coerce_str)
    kind_text = _take(raw, "updateType", _coerce_str)
    kind = None
    if kind_text is not None:
        kind = UpdateKind.FIRMWARE if kind_text == UpdateKind.FIRMWARE else UpdateKind.FILESYSTEM
    latest = _take(raw, "latestVersion", _coerce_str)
    if latest is None:
        latest = _take(raw, "latest_version", _coerce_str)

    update = UpdateSnapshot(
        in_progress=in_progress,
        progress_percent=progress,
        status_text=status_text,
        kind=kind,
        latest_version=latest,
    )
    if update == UpdateSnapshot():
        return None
    return update


def _parse_update_info(raw: Mapping[str, Any]) -> UpdateInfo | None:
    if raw.get("type") != UPDATE_INFO_TYPE:
        return None
    data = raw.get("data")
    if not isinstance(data, Mapping):
        logger.debug("update_info_without_data")
        return None
    return UpdateInfo(
        latest_version=_take(data, "latest_version", _coerce_str, context="data.") or None,
        firmware_url=_take(data, "firmware_url", _coerce_str, context="data.") or None,
        littlefs_url=_take(data, "littlefs_url", _coerce_str, context="data.") or None,
    )


def parse_snapshot(value: Any, motor_count: int = 4) -> DeviceSnapshot:
    """Decode an already-parsed JSON value into a DeviceSnapshot.

    Args:
        value: The decoded JSON payload.
        motor_count: Number of motors the device drives; ``motorN`` keys
            at or beyond this count are ignored.

    Raises:
        DecodeError: If *value* is not a JSON object.
    """
    if not isinstance(value, Mapping):
        raise DecodeError(
            f"Snapshot payload must be an object, got {type(value).__name__}",
            code="not_an_object",
        )

    motors: dict[int, MotorSnapshot] = {}
    for index in range(motor_count):
        raw_motor = value.get(f"motor{index}")
        if raw_motor is None:
            continue
        if not isinstance(raw_motor, Mapping):
            logger.debug("snapshot_motor_skipped", motor=index, kind=type(raw_motor).__name__)
            continue
        motors[index] = _parse_motor(raw_motor, index)

    return DeviceSnapshot(
        ip_address=_take(value, "ip", _coerce_str) or None,
        global_status=_parse_global_status(_take(value, "globalStatus", _coerce_str)),
        servo_state=_take(value, "servoState", _coerce_bool),
        update=_parse_update(value),
        update_info=_parse_update_info(value),
        motors=motors,
    )


def decode_snapshot(raw: str | bytes, motor_count: int = 4) -> DeviceSnapshot:
    """Decode one inbound text frame into a DeviceSnapshot.

    Raises:
        DecodeError: If the frame is not valid UTF-8 JSON or not an object.
    """
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise DecodeError(f"Malformed snapshot JSON: {exc}", code="bad_json") from exc
    return parse_snapshot(value, motor_count=motor_count)
