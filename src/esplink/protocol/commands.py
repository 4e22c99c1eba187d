"""Outbound command envelope: build, validate, and serialize.

Wire format (one JSON text frame per command)::

    {"type": "set_target", "data": {"motor": 1, "target": 12}, "timestamp": 1700000000000}

Commands are fire-and-forget. The device answers, if at all, with an
unsolicited state snapshot rather than a correlated reply.
"""

from __future__ import annotations

import json
import time
from enum import StrEnum
from typing import Any, Mapping

from pydantic import BaseModel, Field

from esplink.exceptions import InvalidCommandError


class CommandType(StrEnum):
    """Command types understood by the controller firmware."""
    GET_IP = "get_ip"
    CHECK_UPDATES = "check_updates"
    UPDATE_FIRMWARE = "update_firmware"
    UPDATE_LITTLEFS = "update_littlefs"
    CALIBRATE_ALL = "calibrate_all"
    EMERGENCY_STOP = "emergency_stop"
    SET_TARGET = "set_target"
    CALIBRATE = "calibrate"
    FULL_FORWARD = "full_forward"
    FULL_BACKWARD = "full_backward"
    SET_ALL_TARGETS = "set_all_targets"
    ALL_FULL_FORWARD = "all_full_forward"
    ALL_FULL_BACKWARD = "all_full_backward"
    SET_SERVO = "set_servo"


# Required payload keys and their value types, per command type.
PAYLOAD_SCHEMA: dict[CommandType, dict[str, type]] = {
    CommandType.GET_IP: {},
    CommandType.CHECK_UPDATES: {},
    CommandType.UPDATE_FIRMWARE: {"url": str},
    CommandType.UPDATE_LITTLEFS: {"url": str},
    CommandType.CALIBRATE_ALL: {},
    CommandType.EMERGENCY_STOP: {},
    CommandType.SET_TARGET: {"motor": int, "target": int},
    CommandType.CALIBRATE: {"motor": int},
    CommandType.FULL_FORWARD: {"motor": int},
    CommandType.FULL_BACKWARD: {"motor": int},
    CommandType.SET_ALL_TARGETS: {"target": int},
    CommandType.ALL_FULL_FORWARD: {},
    CommandType.ALL_FULL_BACKWARD: {},
    CommandType.SET_SERVO: {"state": bool},
}

# Lightweight request that makes the device push a full snapshot.
REFRESH_COMMAND = CommandType.GET_IP


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class Command(BaseModel):
    """A validated outbound command. Immutable once built."""
    model_config = {"frozen": True}

    type: CommandType
    payload: dict[str, Any] = Field(default_factory=dict)
    issued_at: int


def parse_command_type(value: str | CommandType) -> CommandType:
    """Resolve a command type name, raising InvalidCommandError if unknown."""
    try:
        return CommandType(value)
    except ValueError:
        raise InvalidCommandError(
            f"Unknown command type: {value!r}", code="unknown_type"
        ) from None


def _check_value(command_type: CommandType, key: str, value: Any, expected: type) -> None:
    # bool is an int subclass; the firmware reads motor/target with as<int>()
    if expected is int and isinstance(value, bool):
        ok = False
    else:
        ok = isinstance(value, expected)
    if not ok:
        raise InvalidCommandError(
            f"{command_type.value}: '{key}' must be {expected.__name__}, "
            f"got {type(value).__name__}",
            code="bad_value",
        )


def validate_payload(command_type: CommandType, payload: Mapping[str, Any]) -> dict[str, Any]:
    """Check *payload* against the schema for *command_type*.

    Returns:
        A plain-dict copy of the payload.

    Raises:
        InvalidCommandError: On missing keys, unexpected keys, or wrong types.
    """
    schema = PAYLOAD_SCHEMA[command_type]
    missing = sorted(set(schema) - set(payload))
    if missing:
        raise InvalidCommandError(
            f"{command_type.value}: missing payload key(s) {missing}", code="missing_key"
        )
    extra = sorted(set(payload) - set(schema))
    if extra:
        raise InvalidCommandError(
            f"{command_type.value}: unexpected payload key(s) {extra}", code="extra_key"
        )
    for key, expected in schema.items():
        _check_value(command_type, key, payload[key], expected)
    return dict(payload)


def build_command(
    command_type: str | CommandType,
    payload: Mapping[str, Any] | None = None,
    *,
    issued_at: int | None = None,
) -> Command:
    """Build a validated Command, stamping it with the current time."""
    ctype = parse_command_type(command_type)
    data = validate_payload(ctype, payload or {})
    return Command(
        type=ctype,
        payload=data,
        issued_at=now_ms() if issued_at is None else issued_at,
    )


def refresh_command(issued_at: int | None = None) -> Command:
    """Build the refresh/ping request (``get_ip``)."""
    return build_command(REFRESH_COMMAND, issued_at=issued_at)


def encode_command(command: Command) -> str:
    """Serialize a Command into the JSON wire envelope."""
    return json.dumps(
        {
            "type": command.type.value,
            "data": dict(command.payload),
            "timestamp": command.issued_at,
        },
        separators=(",", ":"),
    )
