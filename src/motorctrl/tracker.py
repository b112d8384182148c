"""
Angle and rotation tracking for the motor shaft.

The physical encoder on the reference hardware is unreliable, so by default
position is integrated locally from the commands sent (simulated mode). When
the device feed can be trusted, readings are taken verbatim (pass-through).
"""

import asyncio
import logging
import math
from enum import Enum
from typing import Callable, List, Optional

from .codec import Direction, TelemetryReading
from .core import DEGREES_PER_TICK, TICK_INTERVAL, TICKS_PER_ROTATION

logger = logging.getLogger(__name__)


class TrackingMode(str, Enum):
    PASS_THROUGH = "pass-through"
    SIMULATED = "simulated"


class PositionTracker:
    """Keeps the current angle/rotation model and notifies listeners."""

    def __init__(
        self,
        mode: TrackingMode = TrackingMode.SIMULATED,
        tick_interval: float = TICK_INTERVAL,
        degrees_per_tick: float = DEGREES_PER_TICK,
        ticks_per_rotation: int = TICKS_PER_ROTATION,
    ) -> None:
        self.mode = TrackingMode(mode)
        self.tick_interval = tick_interval
        self.degrees_per_tick = degrees_per_tick
        self.ticks_per_rotation = ticks_per_rotation

        self._angle = 0.0
        self._turns = 0
        self._device_reading: Optional[TelemetryReading] = None
        self._running = False
        self._direction: Optional[Direction] = None
        self._task: Optional[asyncio.Task] = None
        self._listeners: List[Callable[[TelemetryReading], None]] = []

    @property
    def running(self) -> bool:
        return self._running

    @property
    def direction(self) -> Optional[Direction]:
        return self._direction if self._running else None

    @property
    def timer_active(self) -> bool:
        """True while the integration timer task is alive."""
        return self._task is not None and not self._task.done()

    @property
    def angle(self) -> float:
        return self.reading.angle

    @property
    def rotations(self) -> float:
        return self.reading.rotations

    @property
    def reading(self) -> TelemetryReading:
        """Current position as a TelemetryReading."""
        if self.mode is TrackingMode.PASS_THROUGH:
            return self._device_reading or TelemetryReading()
        rotations = self._turns + self._angle / 360.0
        return TelemetryReading(
            angle=self._angle,
            rotations=rotations,
            ticks=round(rotations * self.ticks_per_rotation),
        )

    def add_listener(self, callback: Callable[[TelemetryReading], None]) -> None:
        """Register a callback invoked with the reading after every update."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[TelemetryReading], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def start(self, direction: Direction) -> None:
        """Mark the motor as running in ``direction``.

        In simulated mode this (re)starts the integration timer; reversing
        direction keeps the existing timer.
        """
        self._running = True
        self._direction = direction
        if self.mode is TrackingMode.SIMULATED and not self.timer_active:
            self._task = asyncio.create_task(self._run())
            logger.debug(f"Integration timer started ({direction.value})")

    def stop(self) -> None:
        """Mark the motor as stopped and cancel the integration timer."""
        self._running = False
        self._direction = None
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.debug("Integration timer stopped")

    def reset(self) -> None:
        """Zero the simulated position."""
        self._angle = 0.0
        self._turns = 0
        self._notify()

    def advance(self) -> None:
        """Apply one integration step in the active direction."""
        if not self._running or self._direction is None:
            return

        self._angle += self.degrees_per_tick * self._direction.sign
        wraps = math.floor(self._angle / 360.0)
        if wraps:
            self._turns += wraps
            self._angle -= wraps * 360.0
            # float round-up
            if self._angle >= 360.0:
                self._turns += 1
                self._angle = 0.0
        self._notify()

    def ingest(self, reading: TelemetryReading) -> None:
        """Accept a reading decoded from device telemetry.

        Ignored in simulated mode, where the device feed is not trusted.
        """
        if self.mode is not TrackingMode.PASS_THROUGH:
            return
        self._device_reading = TelemetryReading(
            angle=reading.angle % 360.0,
            rotations=reading.rotations,
            ticks=reading.ticks,
        )
        self._notify()

    async def _run(self) -> None:
        try:
            while self._running:
                await asyncio.sleep(self.tick_interval)
                self.advance()
        except asyncio.CancelledError:
            pass

    def _notify(self) -> None:
        reading = self.reading
        for callback in list(self._listeners):
            try:
                callback(reading)
            except Exception as e:
                logger.error(f"Position listener error: {e}")
