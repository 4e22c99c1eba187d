"""End-to-end tests for esplink.core.engine against a fake transport."""

from __future__ import annotations

import asyncio

import pytest

from esplink.core.engine import DeviceEngine
from esplink.core.gate import Action, PendingConfirmation
from esplink.core.notifier import Severity
from esplink.core.session import ConnectionState
from esplink.exceptions import ConfirmationRequired, EspLinkError, InvalidCommandError
from esplink.state.edit_guard import ALL_MOTORS
from esplink.state.models import UIState

FIRMWARE_URL = "http://updates.local/fw.bin"
LITTLEFS_URL = "http://updates.local/fs.bin"


def _types(transports) -> list[str]:
    return [m["type"] for m in transports.last.sent_messages]


def _offer_updates(transports, firmware=FIRMWARE_URL, littlefs=LITTLEFS_URL) -> None:
    transports.last.fire_message({
        "type": "update_info",
        "data": {"latest_version": "1.5.0", "firmware_url": firmware, "littlefs_url": littlefs},
    })


# ---------------------------------------------------------------------------
# Connection and state publishing
# ---------------------------------------------------------------------------

class TestLifecycle:

    def test_initial_state(self, engine, config):
        assert engine.state == UIState.initial(config.motor_count)
        assert engine.session.state == ConnectionState.IDLE

    def test_needs_event_loop(self, config, transports):
        with pytest.raises(EspLinkError) as excinfo:
            DeviceEngine(config, transports)
        assert excinfo.value.code == "no_event_loop"

    def test_uses_running_loop(self, config, transports):
        async def build():
            return DeviceEngine(config, transports)

        engine = asyncio.run(build())
        assert engine.session.state == ConnectionState.IDLE
        assert transports.transports == []

    def test_start_sends_refresh_on_open(self, engine, transports):
        engine.start()
        transports.last.fire_open()
        assert _types(transports) == ["get_ip"]

    def test_snapshot_published(self, open_engine, transports, make_motor):
        states = []
        open_engine.subscribe(states.append)
        transports.last.fire_message({
            "ip": "192.168.1.40",
            "globalStatus": "RUNNING",
            "motor0": make_motor(position=5, target=9, running=True, full_forward=True),
        })
        assert len(states) == 1
        state = open_engine.state
        assert state.ip_address == "192.168.1.40"
        assert state.is_running
        assert state.motors[0].position == 5
        assert state.all_motors_forward is True

    def test_empty_snapshot_not_published(self, open_engine, transports):
        states = []
        open_engine.subscribe(states.append)
        transports.last.fire_message({})
        assert states == []

    def test_bad_message_leaves_state(self, open_engine, transports):
        before = open_engine.state
        transports.last.fire_message("garbage{")
        assert open_engine.state is before
        assert open_engine.session.decode_failures == 1

    def test_stop(self, open_engine, transports, loop):
        open_engine.stop()
        assert transports.last.closed
        assert open_engine.notifier.active is None
        loop.advance(30.0)
        assert len(transports.transports) == 1


# ---------------------------------------------------------------------------
# Input layer and edit guard
# ---------------------------------------------------------------------------

class TestEditing:

    def test_drag_survives_snapshots(self, open_engine, transports, make_motor):
        open_engine.begin_edit(0)
        open_engine.preview_target(0, 14)
        transports.last.fire_message({"motor0": make_motor(position=3, target=10)})

        assert open_engine.state.motors[0].target == 14
        assert open_engine.state.motors[0].position == 3
        assert transports.last.sent == []

    def test_commit_sends_and_releases(self, open_engine, transports, make_motor):
        open_engine.begin_edit(0)
        open_engine.preview_target(0, 14)
        assert open_engine.commit_target(0, 14) is True

        assert transports.last.sent_messages[-1]["type"] == "set_target"
        assert transports.last.sent_messages[-1]["data"] == {"motor": 0, "target": 14}
        assert not open_engine.edit_guard.is_editing(0)

        transports.last.fire_message({"motor0": make_motor(target=12)})
        assert open_engine.state.motors[0].target == 12

    def test_cancel_edit_restores_on_next_snapshot(self, open_engine, transports, make_motor):
        open_engine.begin_edit(1)
        open_engine.preview_target(1, 18)
        open_engine.cancel_edit(1)
        transports.last.fire_message({"motor1": make_motor(target=6)})
        assert open_engine.state.motors[1].target == 6
        assert transports.last.sent == []

    def test_other_motors_update_during_edit(self, open_engine, transports, make_motor):
        open_engine.begin_edit(2)
        transports.last.fire_message({
            "motor1": make_motor(target=7),
            "motor2": make_motor(target=7),
        })
        assert open_engine.state.motors[1].target == 7
        assert open_engine.state.motors[2].target == 0

    def test_commit_all_targets(self, open_engine, transports):
        open_engine.begin_edit(ALL_MOTORS)
        assert open_engine.commit_all_targets(8) is True
        assert [m.target for m in open_engine.state.motors] == [8, 8, 8, 8]
        assert transports.last.sent_messages[-1] == {
            "type": "set_all_targets",
            "data": {"target": 8},
            "timestamp": transports.last.sent_messages[-1]["timestamp"],
        }
        assert not open_engine.edit_guard.is_editing(ALL_MOTORS)

    def test_preview_all_targets_sends_nothing(self, open_engine, transports):
        open_engine.begin_edit(ALL_MOTORS)
        open_engine.preview_all_targets(11)
        assert [m.target for m in open_engine.state.motors] == [0, 0, 0, 0]
        assert open_engine.group_target == 11
        assert transports.last.sent == []

    def test_cancelled_group_edit_keeps_device_targets(
        self, open_engine, transports, make_motor,
    ):
        transports.last.fire_message({
            f"motor{i}": make_motor(target=3) for i in range(4)
        })
        open_engine.begin_edit(ALL_MOTORS)
        open_engine.preview_all_targets(11)
        open_engine.cancel_edit(ALL_MOTORS)

        assert [m.target for m in open_engine.state.motors] == [3, 3, 3, 3]
        assert open_engine.group_target is None
        assert transports.last.sent == []

    def test_cancel_edit_restores_target_immediately(
        self, open_engine, transports, make_motor,
    ):
        transports.last.fire_message({"motor1": make_motor(target=6)})
        open_engine.begin_edit(1)
        open_engine.preview_target(1, 18)
        assert open_engine.state.motors[1].target == 18

        open_engine.cancel_edit(1)
        assert open_engine.state.motors[1].target == 6
        assert transports.last.sent == []

    def test_cancel_edit_restores_target_reported_during_edit(
        self, open_engine, transports, make_motor,
    ):
        transports.last.fire_message({"motor0": make_motor(target=6)})
        open_engine.begin_edit(0)
        open_engine.preview_target(0, 18)
        transports.last.fire_message({"motor0": make_motor(target=9)})
        assert open_engine.state.motors[0].target == 18

        open_engine.cancel_edit(0)
        assert open_engine.state.motors[0].target == 9

    def test_commit_all_targets_clears_group_preview(self, open_engine):
        open_engine.begin_edit(ALL_MOTORS)
        open_engine.preview_all_targets(11)
        open_engine.commit_all_targets(11)
        assert open_engine.group_target is None
        assert [m.target for m in open_engine.state.motors] == [11, 11, 11, 11]

    def test_commit_while_disconnected(self, engine, transports):
        engine.start()
        assert engine.commit_target(1, 5) is False
        assert engine.state.motors[1].target == 5
        assert engine.notifier.active.message == "No connection to device"

    @pytest.mark.parametrize(("motor", "target", "code"), [
        (4, 5, "motor_range"),
        (-1, 5, "motor_range"),
        (0, 21, "target_range"),
        (0, -1, "target_range"),
    ])
    def test_commit_validation(self, open_engine, transports, motor, target, code):
        with pytest.raises(InvalidCommandError) as excinfo:
            open_engine.commit_target(motor, target)
        assert excinfo.value.code == code
        assert transports.last.sent == []

    def test_preview_out_of_range_motor(self, open_engine):
        with pytest.raises(InvalidCommandError):
            open_engine.preview_target(9, 1)


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

class TestDirectActions:

    @pytest.mark.parametrize(("call", "expected"), [
        (lambda e: e.refresh(), {"type": "get_ip", "data": {}}),
        (lambda e: e.set_target(1, 20), {"type": "set_target", "data": {"motor": 1, "target": 20}}),
        (lambda e: e.calibrate(3), {"type": "calibrate", "data": {"motor": 3}}),
        (lambda e: e.full_forward(0), {"type": "full_forward", "data": {"motor": 0}}),
        (lambda e: e.full_backward(2), {"type": "full_backward", "data": {"motor": 2}}),
        (lambda e: e.set_all_targets(0), {"type": "set_all_targets", "data": {"target": 0}}),
        (lambda e: e.all_full_forward(), {"type": "all_full_forward", "data": {}}),
        (lambda e: e.all_full_backward(), {"type": "all_full_backward", "data": {}}),
        (lambda e: e.set_servo(True), {"type": "set_servo", "data": {"state": True}}),
        (lambda e: e.emergency_stop(), {"type": "emergency_stop", "data": {}}),
        (lambda e: e.check_updates(), {"type": "check_updates", "data": {}}),
    ])
    def test_wire_commands(self, open_engine, transports, loop, call, expected):
        call(open_engine)
        sent = transports.last.sent_messages
        assert len(sent) == 1
        assert {k: sent[0][k] for k in ("type", "data")} == expected
        assert sent[0]["timestamp"] == loop.now_ms()

    def test_check_updates_notice(self, open_engine):
        open_engine.check_updates()
        assert open_engine.notifier.active.message == "Checking for updates..."

    def test_perform_by_name(self, open_engine, transports):
        assert open_engine.perform("calibrate", motor=1) is None
        assert _types(transports) == ["calibrate"]

    def test_unknown_action(self, open_engine):
        with pytest.raises(ValueError):
            open_engine.perform("launch")

    def test_missing_parameter(self, open_engine):
        with pytest.raises(InvalidCommandError, match="motor"):
            open_engine.perform(Action.CALIBRATE)

    def test_direct_action_while_disconnected(self, engine):
        engine.start()
        engine.emergency_stop()
        assert engine.notifier.active.message == "No connection to device"


class TestGatedActions:

    def test_update_firmware_uses_offered_url(self, open_engine, transports):
        _offer_updates(transports)
        pending = open_engine.update_firmware()

        assert isinstance(pending, PendingConfirmation)
        assert open_engine.pending is pending
        assert transports.last.sent == []

        open_engine.confirm()
        assert transports.last.sent_messages[-1]["type"] == "update_firmware"
        assert transports.last.sent_messages[-1]["data"] == {"url": FIRMWARE_URL}
        assert open_engine.notifier.active.message == "Starting firmware update..."

    def test_update_filesystem_uses_littlefs_command(self, open_engine, transports):
        _offer_updates(transports)
        open_engine.update_filesystem()
        open_engine.confirm()
        assert transports.last.sent_messages[-1]["type"] == "update_littlefs"
        assert transports.last.sent_messages[-1]["data"] == {"url": LITTLEFS_URL}

    def test_explicit_url_wins(self, open_engine, transports):
        open_engine.update_firmware("http://mirror/fw.bin")
        open_engine.confirm()
        assert transports.last.sent_messages[-1]["data"] == {"url": "http://mirror/fw.bin"}

    def test_update_without_offer(self, open_engine):
        with pytest.raises(InvalidCommandError) as excinfo:
            open_engine.update_firmware()
        assert excinfo.value.code == "no_update"
        assert open_engine.pending is None

    def test_cancel(self, open_engine, transports):
        open_engine.calibrate_all()
        open_engine.cancel()
        assert open_engine.pending is None
        assert transports.last.sent == []

    def test_calibrate_all_confirmed(self, open_engine, transports):
        open_engine.calibrate_all()
        open_engine.confirm()
        assert _types(transports) == ["calibrate_all"]

    @pytest.mark.parametrize("method", ["restart", "reset_wifi", "format_filesystem"])
    def test_local_only_actions(self, open_engine, transports, method):
        assert getattr(open_engine, method)() is not None
        assert open_engine.confirm() is None
        assert transports.last.sent == []
        assert open_engine.notifier.active is not None

    def test_execute_raises_for_gated(self, open_engine):
        with pytest.raises(ConfirmationRequired) as excinfo:
            open_engine.execute(Action.CALIBRATE_ALL)
        assert excinfo.value.pending.action is Action.CALIBRATE_ALL

    def test_emergency_stop_during_pending(self, open_engine, transports):
        open_engine.calibrate_all()
        open_engine.emergency_stop()
        assert _types(transports) == ["emergency_stop"]
        assert open_engine.pending is not None


# ---------------------------------------------------------------------------
# Update notices
# ---------------------------------------------------------------------------

class TestUpdateNotices:

    def test_update_check_with_offer(self, open_engine, transports):
        _offer_updates(transports)
        assert open_engine.notifier.active.message == "Update check complete"
        assert open_engine.state.update.latest_version == "1.5.0"

    def test_update_check_without_offer(self, open_engine, transports):
        _offer_updates(transports, firmware="", littlefs="")
        note = open_engine.notifier.active
        assert note.message == "No updates available"
        assert note.severity is Severity.WARNING

    def test_progress_then_complete(self, open_engine, transports):
        transports.last.fire_message({
            "updateInProgress": True, "updateProgress": 40,
            "updateStatus": "Downloading", "updateType": "firmware",
        })
        assert open_engine.state.update.in_progress
        assert open_engine.notifier.active.message == "Connected to device"

        transports.last.fire_message({
            "updateInProgress": False, "updateProgress": 100, "updateStatus": "Done",
        })
        assert open_engine.notifier.active.message == (
            "Firmware update complete! Device will restart."
        )

    def test_littlefs_complete(self, open_engine, transports):
        transports.last.fire_message({
            "updateInProgress": False, "updateProgress": 100,
            "updateStatus": "Done", "updateType": "littlefs",
        })
        assert open_engine.notifier.active.message == "LittleFS update complete!"

    def test_failure(self, open_engine, transports):
        transports.last.fire_message({
            "updateInProgress": False, "updateProgress": 12,
            "updateStatus": "Download failed: HTTP 404",
        })
        note = open_engine.notifier.active
        assert note.message == "Update failed: Download failed: HTTP 404"
        assert note.severity is Severity.ERROR

    def test_repeated_status_not_reannounced(self, open_engine, transports):
        payload = {"updateInProgress": False, "updateProgress": 100, "updateStatus": "Done"}
        transports.last.fire_message(payload)
        open_engine.notifier.dismiss()
        transports.last.fire_message(payload)
        assert open_engine.notifier.active is None
