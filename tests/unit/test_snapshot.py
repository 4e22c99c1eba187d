"""Unit tests for esplink.protocol.snapshot - tolerant snapshot decoding."""

from __future__ import annotations

import json

import pytest
from structlog.testing import capture_logs

from esplink.exceptions import DecodeError
from esplink.protocol.snapshot import (
    DeviceSnapshot,
    GlobalStatus,
    MotorSnapshot,
    UpdateKind,
    decode_snapshot,
    parse_snapshot,
)


# ---------------------------------------------------------------------------
# Whole-payload handling
# ---------------------------------------------------------------------------

class TestPayloadShape:

    def test_full_firmware_push(self, make_motor):
        raw = {
            "ip": "192.168.1.40",
            "globalStatus": "RUNNING",
            "servoState": True,
            **{f"motor{i}": make_motor(position=i, target=10 + i, running=True) for i in range(4)},
        }
        snap = decode_snapshot(json.dumps(raw))

        assert snap.ip_address == "192.168.1.40"
        assert snap.global_status is GlobalStatus.RUNNING
        assert snap.servo_state is True
        assert sorted(snap.motors) == [0, 1, 2, 3]
        assert snap.motors[3] == MotorSnapshot(
            position=3, target=13, running=True, calibrating=False,
            full_forward=False, full_backward=False,
        )

    def test_empty_object_is_empty_snapshot(self):
        snap = parse_snapshot({})
        assert snap == DeviceSnapshot()
        assert snap.is_empty

    @pytest.mark.parametrize("value", [[1, 2], "text", 42, None, True])
    def test_non_object_rejected(self, value):
        with pytest.raises(DecodeError, match="must be an object"):
            parse_snapshot(value)

    def test_malformed_json(self):
        with pytest.raises(DecodeError, match="Malformed"):
            decode_snapshot("{not json")

    def test_invalid_utf8_bytes(self):
        with pytest.raises(DecodeError):
            decode_snapshot(b"{\"ip\": \"\xc3\x28\"}")

    def test_bytes_accepted(self):
        assert decode_snapshot(b'{"ip": "10.0.0.2"}').ip_address == "10.0.0.2"

    def test_unknown_keys_ignored(self):
        assert parse_snapshot({"uptime": 99, "rssi": -60}).is_empty


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------

class TestCoercion:

    def test_numeric_strings_and_floats(self):
        snap = parse_snapshot({"motor0": {"position": "7", "target": 12.6}})
        assert snap.motors[0].position == 7
        assert snap.motors[0].target == 13

    def test_bool_variants(self):
        snap = parse_snapshot({
            "servoState": "on",
            "motor0": {"running": 1, "calibrating": "false", "fullForward": 0},
        })
        assert snap.servo_state is True
        assert snap.motors[0].running is True
        assert snap.motors[0].calibrating is False
        assert snap.motors[0].full_forward is False

    def test_unparseable_fields_are_absent(self):
        snap = parse_snapshot({
            "servoState": "maybe",
            "motor1": {"position": "far", "target": 5, "running": [1]},
        })
        assert snap.servo_state is None
        assert snap.motors[1].position is None
        assert snap.motors[1].running is None
        assert snap.motors[1].target == 5

    def test_null_values_are_absent(self):
        snap = parse_snapshot({"ip": None, "motor0": {"target": None}})
        assert snap.ip_address is None
        assert snap.motors[0].target is None

    def test_empty_strings_are_absent(self):
        snap = parse_snapshot({"ip": "", "globalStatus": ""})
        assert snap.ip_address is None
        assert snap.global_status is None

    def test_free_text_status_kept(self):
        assert parse_snapshot({"globalStatus": "Homing"}).global_status == "Homing"

    def test_status_case_insensitive(self):
        assert parse_snapshot({"globalStatus": "stopped"}).global_status is GlobalStatus.STOPPED

    def test_non_finite_float_skipped(self):
        snap = parse_snapshot({"motor0": {"position": float("inf")}})
        assert snap.motors[0].position is None

    def test_skipped_field_logged_with_motor_context(self):
        with capture_logs() as logs:
            parse_snapshot({"motor2": {"position": "far"}})
        skipped = [entry for entry in logs if entry["event"] == "snapshot_field_skipped"]
        assert len(skipped) == 1
        assert skipped[0]["field"] == "motor2.position"
        assert skipped[0]["value"] == "'far'"


# ---------------------------------------------------------------------------
# Motors
# ---------------------------------------------------------------------------

class TestMotors:

    def test_partial_motor_set(self, make_motor):
        snap = parse_snapshot({"motor2": make_motor(target=4)})
        assert list(snap.motors) == [2]

    def test_motors_beyond_count_ignored(self, make_motor):
        snap = parse_snapshot({"motor4": make_motor(), "motor1": make_motor()}, motor_count=4)
        assert list(snap.motors) == [1]

    def test_configurable_motor_count(self, make_motor):
        snap = parse_snapshot({"motor5": make_motor(position=9)}, motor_count=6)
        assert snap.motors[5].position == 9

    def test_non_object_motor_skipped(self):
        snap = parse_snapshot({"motor0": 12, "ip": "1.2.3.4"})
        assert snap.motors == {}
        assert snap.ip_address == "1.2.3.4"


# ---------------------------------------------------------------------------
# OTA fields
# ---------------------------------------------------------------------------

class TestUpdateFields:

    def test_progress_push(self):
        snap = parse_snapshot({
            "updateInProgress": True,
            "updateProgress": 42,
            "updateStatus": "Downloading",
            "updateType": "firmware",
        })
        assert snap.update.in_progress is True
        assert snap.update.progress_percent == 42
        assert snap.update.status_text == "Downloading"
        assert snap.update.kind is UpdateKind.FIRMWARE

    def test_other_update_type_is_filesystem(self):
        assert parse_snapshot({"updateType": "littlefs"}).update.kind is UpdateKind.FILESYSTEM
        assert parse_snapshot({"updateType": "spiffs"}).update.kind is UpdateKind.FILESYSTEM

    def test_progress_clamped(self):
        assert parse_snapshot({"updateProgress": 140}).update.progress_percent == 100
        assert parse_snapshot({"updateProgress": -3}).update.progress_percent == 0

    @pytest.mark.parametrize("key", ["latestVersion", "latest_version"])
    def test_latest_version_spellings(self, key):
        assert parse_snapshot({key: "1.4.0"}).update.latest_version == "1.4.0"

    def test_no_update_fields_means_no_update(self):
        assert parse_snapshot({"ip": "1.1.1.1"}).update is None

    def test_update_info(self):
        snap = parse_snapshot({
            "type": "update_info",
            "data": {
                "latest_version": "2.0.0",
                "firmware_url": "http://host/fw.bin",
                "littlefs_url": "",
            },
        })
        assert snap.update_info.latest_version == "2.0.0"
        assert snap.update_info.firmware_url == "http://host/fw.bin"
        assert snap.update_info.littlefs_url is None

    def test_update_info_without_data_ignored(self):
        assert parse_snapshot({"type": "update_info", "data": "nope"}).update_info is None

    def test_other_type_ignored(self):
        assert parse_snapshot({"type": "hello", "data": {}}).update_info is None
