"""Wire protocol: outbound commands and inbound state snapshots."""

from esplink.protocol.commands import (
    Command,
    CommandType,
    build_command,
    encode_command,
    refresh_command,
)
from esplink.protocol.snapshot import (
    DeviceSnapshot,
    GlobalStatus,
    MotorSnapshot,
    UpdateInfo,
    UpdateKind,
    UpdateSnapshot,
    decode_snapshot,
    parse_snapshot,
)

__all__ = [
    "Command",
    "CommandType",
    "DeviceSnapshot",
    "GlobalStatus",
    "MotorSnapshot",
    "UpdateInfo",
    "UpdateKind",
    "UpdateSnapshot",
    "build_command",
    "decode_snapshot",
    "encode_command",
    "parse_snapshot",
    "refresh_command",
]
