"""Tests for the MotorController facade."""

import asyncio

import pytest

from conftest import TARGET_PEER, FakeTransport, drive_to_ready

from motorctrl.codec import Direction, TelemetryReading
from motorctrl.controller import MotorController
from motorctrl.core import NUS_TX_UUID, ConnectionTimeoutError, MotorCtrlError, Settings
from motorctrl.preferences import Preferences
from motorctrl.session import SessionState
from motorctrl.transport import Notification, NotifyFailed, PeerDiscovered


@pytest.mark.asyncio
async def test_end_to_end_simulated_run(transport, settings):
    controller = MotorController(transport=transport, settings=settings)
    drive_to_ready(controller.session)
    updates = []
    controller.set_on_update(updates.append)

    assert controller.start_motor("CW")
    for _ in range(20):
        controller.tracker.advance()

    assert controller.reading.angle == pytest.approx(240.0)
    assert controller.reading.rotations == pytest.approx(600 / 360)
    assert controller.last_telemetry == "A:240.0 R:1.667 T:3000"
    assert len(updates) == 20

    assert controller.stop_motor()
    assert not controller.tracker.timer_active
    controller.tracker.advance()
    assert controller.reading.rotations == pytest.approx(600 / 360)
    assert transport.writes == ["START_CW", "STOP"]


@pytest.mark.asyncio
async def test_pass_through_telemetry(transport):
    controller = MotorController(
        transport=transport, settings=Settings(tracking_mode="pass-through")
    )
    drive_to_ready(controller.session)

    controller.session.handle(Notification(NUS_TX_UUID, b"A:45.0 R:1.5 T:2700"))

    assert controller.last_telemetry == "A:45.0 R:1.5 T:2700"
    assert controller.reading == TelemetryReading(45.0, 1.5, 2700)


@pytest.mark.asyncio
async def test_simulated_mode_keeps_raw_line_separately(transport, settings):
    controller = MotorController(transport=transport, settings=settings)
    drive_to_ready(controller.session)

    controller.session.handle(Notification(NUS_TX_UUID, b"A:45.0 R:1.5 T:2700"))

    assert controller.last_received == "A:45.0 R:1.5 T:2700"
    assert controller.reading == TelemetryReading()


@pytest.mark.asyncio
async def test_ensure_connected_through_event_pump():
    transport = FakeTransport(auto=True)
    controller = MotorController(transport=transport, settings=Settings())
    await controller.ensure_connected(timeout=1.0, poll_interval=0.01)

    assert controller.is_ready
    assert controller.device_name == TARGET_PEER.name
    await controller.shutdown()
    assert controller.state is SessionState.IDLE


@pytest.mark.asyncio
async def test_ensure_connected_times_out():
    transport = FakeTransport(auto=True, peers=[])
    controller = MotorController(transport=transport, settings=Settings())

    with pytest.raises(ConnectionTimeoutError) as exc_info:
        await controller.ensure_connected(timeout=0.1, poll_interval=0.02)

    assert exc_info.value.timeout == 0.1
    assert "0.1s" in str(exc_info.value)
    await controller.shutdown()


class FlakyNotifyTransport(FakeTransport):
    """Refuses the first subscription, then behaves like a healthy device."""

    def __init__(self) -> None:
        super().__init__(auto=True)
        self.failures = 1

    def subscribe(self, endpoint_id: str) -> None:
        if self.failures:
            self.failures -= 1
            self.calls.append(("subscribe", endpoint_id))
            self.emit(NotifyFailed("not permitted"))
            return
        super().subscribe(endpoint_id)


class SilentConnectTransport(FakeTransport):
    """Finds the target but never answers the connect request."""

    def __init__(self) -> None:
        super().__init__(auto=True)

    def connect(self, peer_id: str) -> None:
        self.calls.append(("connect", peer_id))


@pytest.mark.asyncio
async def test_ensure_connected_rescans_after_notify_failure():
    transport = FlakyNotifyTransport()
    controller = MotorController(transport=transport, settings=Settings())

    await controller.ensure_connected(timeout=1.0, poll_interval=0.01)

    assert controller.is_ready
    assert transport.called("scan") == 2
    assert ("disconnect",) in transport.calls
    assert [e.message for e in controller.error_log] == ["Notify error: not permitted"]
    await controller.shutdown()


@pytest.mark.asyncio
async def test_ensure_connected_timeout_drops_pending_attempt():
    transport = SilentConnectTransport()
    controller = MotorController(transport=transport, settings=Settings())

    with pytest.raises(ConnectionTimeoutError) as exc_info:
        await controller.ensure_connected(timeout=0.1, poll_interval=0.02)

    assert "Connecting" in str(exc_info.value)
    assert controller.state is SessionState.IDLE
    assert ("disconnect",) in transport.calls

    # The next attempt starts a fresh scan
    with pytest.raises(ConnectionTimeoutError):
        await controller.ensure_connected(timeout=0.1, poll_interval=0.02)
    assert transport.called("scan") == 2
    await controller.shutdown()


@pytest.mark.asyncio
async def test_ensure_connected_can_be_cancelled():
    controller = MotorController(transport=FakeTransport(), settings=Settings())
    task = asyncio.create_task(controller.ensure_connected(timeout=10.0, poll_interval=0.01))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await controller.shutdown()


@pytest.mark.asyncio
async def test_run_motor_for_duration():
    transport = FakeTransport(auto=True)
    controller = MotorController(transport=transport, settings=Settings())

    await controller.run_motor_for_duration("CCW", 0.12)

    assert transport.writes == ["START_CCW", "STOP"]
    assert not controller.tracker.running
    assert controller.reading.rotations < 0
    await controller.shutdown()


@pytest.mark.asyncio
async def test_run_motor_stops_when_cancelled():
    transport = FakeTransport(auto=True)
    controller = MotorController(transport=transport, settings=Settings())
    task = asyncio.create_task(controller.run_motor_for_duration(Direction.CW, 30.0))

    for _ in range(100):
        await asyncio.sleep(0.01)
        if transport.writes:
            break
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert transport.writes == ["START_CW", "STOP"]
    await controller.shutdown()


@pytest.mark.asyncio
async def test_move_resolves_heading_through_preferences():
    transport = FakeTransport(auto=True)
    controller = MotorController(
        transport=transport,
        settings=Settings(),
        preferences=Preferences(directions_swapped=True, default_duration=0.05),
    )
    await controller.move("up")
    await controller.move("down")
    assert transport.writes == ["START_CW", "STOP", "START_CCW", "STOP"]
    await controller.shutdown()


@pytest.mark.asyncio
async def test_calibrated_positions(transport, settings):
    controller = MotorController(
        transport=transport,
        settings=settings,
        preferences=Preferences(low_rotation=-1.0),
    )
    drive_to_ready(controller.session)

    assert not controller.go_to_high()
    assert controller.go_to_low()
    assert controller.autopos.goal.target == -1.0
    assert transport.writes == ["START_CCW"]
    controller.stop_auto_positioning()


def test_observable_state(transport, settings):
    controller = MotorController(transport=transport, settings=settings)
    statuses = []
    controller.set_on_status(statuses.append)

    controller.start_scan()
    controller.session.handle(PeerDiscovered(TARGET_PEER))

    assert controller.state is SessionState.CONNECTING
    assert controller.discovered_devices == [TARGET_PEER.describe()]
    assert statuses[-1].startswith("Found target")
    assert not controller.is_connected

    status = controller.get_status()
    assert status["state"] == "connecting"
    assert status["connected"] is False
    assert status["running"] is False
    assert status["target"] is None


def test_commands_dropped_when_not_connected(transport, settings):
    controller = MotorController(transport=transport, settings=settings)
    assert not controller.stop_motor()
    assert transport.writes == []
    assert len(controller.error_log) == 1
    controller.clear_errors()
    assert controller.error_log == []


def test_disconnect_callback(transport, settings):
    controller = MotorController(transport=transport, settings=settings)
    drive_to_ready(controller.session)
    calls = []
    controller.set_on_disconnect(lambda: calls.append(controller.is_connected))

    controller.disconnect()
    assert calls == [False]
    assert controller.state is SessionState.IDLE


@pytest.mark.asyncio
async def test_run_motor_refused_during_auto_positioning():
    transport = FakeTransport(auto=True)
    controller = MotorController(transport=transport, settings=Settings())
    await controller.ensure_connected(timeout=1.0, poll_interval=0.01)
    controller.go_to_position(5.0)

    with pytest.raises(MotorCtrlError):
        await controller.run_motor_for_duration("CCW", 0.05)

    assert transport.writes == ["START_CW"]
    await controller.shutdown()
