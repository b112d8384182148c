"""
Facade over the BLE motor controller stack.

This module wires the session state machine, command dispatcher, position
tracker and auto-positioning controller together and exposes the single
object the REPL and one-shot commands talk to. Create one instance at
startup and pass it to every consumer; the connection lives as long as the
process does.
"""

import asyncio
import logging
from typing import Any, AsyncGenerator, Callable, List, Optional, Union

from .autopos import AutoPositioningController
from .codec import Direction, TelemetryReading, decode_telemetry, format_telemetry
from .core import (
    CONNECT_POLL_INTERVAL,
    CONNECT_TIMEOUT,
    ConnectionTimeoutError,
    MotorCtrlError,
    Settings,
)
from .dispatcher import CommandDispatcher
from .preferences import Preferences, resolve_heading
from .session import ErrorLogEntry, SessionState, SessionStateMachine
from .tracker import PositionTracker, TrackingMode
from .transport import BleakTransport, Transport

logger = logging.getLogger(__name__)


def _as_direction(direction: Union[Direction, str]) -> Direction:
    if isinstance(direction, Direction):
        return direction
    return Direction.parse(direction)


class MotorController:
    """Manages connection to, and control of, one BLE motor controller."""

    def __init__(
        self,
        transport: Optional[Transport] = None,
        settings: Optional[Settings] = None,
        preferences: Optional[Preferences] = None,
    ) -> None:
        """Initialize controller with no device connection.

        Args:
            transport: Transport to drive (a BleakTransport if None)
            settings: Tunables (defaults if None)
            preferences: Read-only user preferences (defaults if None)
        """
        self.settings = settings or Settings()
        self.preferences = preferences or Preferences()
        self._transport = transport or BleakTransport()

        self.session = SessionStateMachine(self._transport, self.settings)
        self.tracker = PositionTracker(
            mode=TrackingMode(self.settings.tracking_mode),
            tick_interval=self.settings.tick_interval,
            degrees_per_tick=self.settings.degrees_per_tick,
        )
        self.dispatcher = CommandDispatcher(self.session, self.tracker)
        self.autopos = AutoPositioningController(
            self.dispatcher,
            self.tracker,
            self.session,
            tolerance=self.settings.tolerance,
            move_timeout=self.settings.move_timeout,
        )

        self._last_telemetry = ""
        self._last_received = ""
        self._pump: Optional[asyncio.Task] = None
        self._update_queue: asyncio.Queue = asyncio.Queue(maxsize=10)

        # Callbacks
        self._on_update: Optional[Callable[[TelemetryReading], None]] = None
        self._on_status: Optional[Callable[[str], None]] = None
        self._on_disconnect: Optional[Callable[[], None]] = None

        self.session.add_state_listener(self._on_session_state)
        self.session.add_status_listener(self._on_session_status)
        self.session.add_telemetry_listener(self._on_telemetry_line)
        self.tracker.add_listener(self._on_position)

    # ========== Lifecycle ==========

    async def start(self) -> None:
        """Start processing transport events."""
        if self._pump is None or self._pump.done():
            self._pump = asyncio.create_task(self.session.run())

    async def shutdown(self) -> None:
        """Stop the motor, drop the link and stop processing events."""
        self.autopos.abort()
        if self.session.is_ready:
            self.dispatcher.stop_motor()
        self.tracker.stop()

        # Let the STOP write finish before the link goes away
        close = getattr(self._transport, "close", None)
        if close is not None:
            await close()
        self.session.disconnect()

        if self._pump is not None:
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
            self._pump = None

    # ========== Observable state ==========

    @property
    def status(self) -> str:
        return self.session.status

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to device."""
        return self.session.is_connected

    @property
    def is_ready(self) -> bool:
        return self.session.is_ready

    @property
    def device_name(self) -> Optional[str]:
        current = self.session.session
        return current.peer.display_name if current else None

    @property
    def last_telemetry(self) -> str:
        """Latest telemetry line (synthesized in simulated mode)."""
        return self._last_telemetry

    @property
    def last_received(self) -> str:
        """Latest raw line received from the device."""
        return self._last_received

    @property
    def reading(self) -> TelemetryReading:
        return self.tracker.reading

    @property
    def discovered_devices(self) -> List[str]:
        return self.session.discovered_devices

    @property
    def error_log(self) -> List[ErrorLogEntry]:
        return self.session.error_log

    def clear_errors(self) -> None:
        self.session.clear_errors()

    def set_on_update(self, callback: Callable[[TelemetryReading], None]) -> None:
        """Set callback for position updates.

        Args:
            callback: Function called with the TelemetryReading after each update
        """
        self._on_update = callback

    def set_on_status(self, callback: Callable[[str], None]) -> None:
        """Set callback for status text changes."""
        self._on_status = callback

    def set_on_disconnect(self, callback: Callable[[], None]) -> None:
        """Set callback for disconnect events.

        Args:
            callback: Function called when the session drops
        """
        self._on_disconnect = callback

    def get_status(self) -> dict:
        """Get current values without waiting for an update.

        Returns:
            Dictionary with connection and position values
        """
        reading = self.tracker.reading
        goal = self.autopos.goal
        direction = self.tracker.direction
        return {
            "status": self.status,
            "state": self.state.value,
            "connected": self.is_connected,
            "device": self.device_name,
            "mode": self.tracker.mode.value,
            "angle": reading.angle,
            "rotations": reading.rotations,
            "ticks": reading.ticks,
            "running": self.dispatcher.motor_running,
            "direction": direction.value if direction else None,
            "target": goal.target if goal else None,
            "telemetry": self._last_telemetry,
        }

    # ========== Commands ==========

    def start_scan(self) -> bool:
        """Scan for the motor controller and connect to the first match."""
        return self.session.start_scan()

    def disconnect(self) -> None:
        """Disconnect from device."""
        self.session.disconnect()

    def start_motor(self, direction: Union[Direction, str]) -> bool:
        """Start the motor turning in ``direction`` ("CW"/"CCW")."""
        if self.autopos.active:
            logger.warning("Auto-positioning in progress; stop it first")
            return False
        return self.dispatcher.start_motor(_as_direction(direction))

    def stop_motor(self) -> bool:
        """Stop the motor, cancelling any auto-positioning move."""
        if self.autopos.active:
            self.autopos.cancel()
            return True
        return self.dispatcher.stop_motor()

    def set_speed(self, speed: int) -> bool:
        """Set motor speed (0-255).

        Raises:
            ValueError: If speed is out of range
        """
        return self.dispatcher.set_speed(speed)

    def go_to_position(self, target_rotation: float) -> bool:
        """Move to ``target_rotation`` and stop within tolerance."""
        return self.autopos.go_to(target_rotation)

    def stop_auto_positioning(self) -> None:
        self.autopos.cancel()

    def go_to_low(self) -> bool:
        """Move to the calibrated low position."""
        return self._go_to_calibrated("low", self.preferences.low_rotation)

    def go_to_high(self) -> bool:
        """Move to the calibrated high position."""
        return self._go_to_calibrated("high", self.preferences.high_rotation)

    def _go_to_calibrated(self, label: str, target: Optional[float]) -> bool:
        if target is None:
            logger.warning(f"No {label} position calibrated")
            return False
        return self.go_to_position(target)

    async def ensure_connected(
        self,
        timeout: float = CONNECT_TIMEOUT,
        poll_interval: float = CONNECT_POLL_INTERVAL,
    ) -> None:
        """Scan and connect unless a session is already ready.

        Raises:
            ConnectionTimeoutError: If not ready within ``timeout`` seconds
        """
        if self.session.is_ready:
            return

        await self.start()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self.session.is_ready:
            if self.session.can_scan:
                self.session.start_scan()
            if loop.time() >= deadline:
                status = self.status
                # Leave nothing half-open so the next call can rescan
                if not self.session.can_scan:
                    self.session.disconnect()
                raise ConnectionTimeoutError(timeout, status)
            await asyncio.sleep(poll_interval)

    async def run_motor_for_duration(
        self, direction: Union[Direction, str], seconds: float
    ) -> None:
        """Connect if needed, run the motor for ``seconds``, then stop it.

        Raises:
            ConnectionTimeoutError: If the device could not be reached
            MotorCtrlError: If the start command could not be sent
        """
        direction = _as_direction(direction)
        await self.ensure_connected()
        if not self.start_motor(direction):
            raise MotorCtrlError(f"Could not start motor: {self.status}")
        try:
            await asyncio.sleep(seconds)
        finally:
            self.stop_motor()

    async def move(self, heading: str, seconds: Optional[float] = None) -> None:
        """Run the motor "up" or "down" for ``seconds`` (preference default)."""
        direction = resolve_heading(heading, self.preferences.directions_swapped)
        duration = self.preferences.default_duration if seconds is None else seconds
        await self.run_motor_for_duration(direction, duration)

    # ========== Event handlers ==========

    def _on_telemetry_line(self, line: str) -> None:
        self._last_received = line
        if self.tracker.mode is TrackingMode.PASS_THROUGH:
            self._last_telemetry = line
            self.tracker.ingest(decode_telemetry(line))
        else:
            logger.debug(f"Device telemetry (untrusted): {line}")

    def _on_position(self, reading: TelemetryReading) -> None:
        if self.tracker.mode is TrackingMode.SIMULATED:
            self._last_telemetry = format_telemetry(reading)
        try:
            self._update_queue.put_nowait(reading)
        except asyncio.QueueFull:
            # Drop if backed up - live display can skip a frame
            pass
        if self._on_update:
            try:
                self._on_update(reading)
            except Exception as e:
                logger.error(f"Update callback error: {e}")

    def _on_session_state(self, state: SessionState) -> None:
        if state is not SessionState.DISCONNECTED:
            return
        self.autopos.abort()
        self.tracker.stop()
        if self._on_disconnect:
            try:
                self._on_disconnect()
            except Exception as e:
                logger.error(f"Disconnect callback error: {e}")

    def _on_session_status(self, status: str) -> None:
        if self._on_status:
            try:
                self._on_status(status)
            except Exception as e:
                logger.error(f"Status callback error: {e}")

    async def get_updates(self) -> AsyncGenerator[Any, None]:
        """Async generator that yields position updates.

        Yields:
            TelemetryReading objects as the tracked position changes
        """
        while self._pump is not None and not self._pump.done():
            try:
                data = await asyncio.wait_for(
                    self._update_queue.get(),
                    timeout=0.5,
                )
                yield data
            except asyncio.TimeoutError:
                # Continue - motor may be idle
                continue
