"""
Closed-loop move to a target rotation.

A bang-bang controller: it picks a direction once, starts the motor and stops
it when the tracked rotation comes within tolerance of the target. It does not
reverse after an overshoot; pick the tolerance so one tracker step cannot jump
across the window.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from .codec import Direction, TelemetryReading
from .core import MOVE_TIMEOUT, POSITION_TOLERANCE
from .dispatcher import CommandDispatcher
from .session import SessionStateMachine
from .tracker import PositionTracker

logger = logging.getLogger(__name__)


@dataclass
class AutoPositionGoal:
    target: float
    tolerance: float
    direction: Direction
    started_at: float = field(default_factory=time.monotonic)


class AutoPositioningController:
    """Drives the motor toward a target and stops it on arrival."""

    def __init__(
        self,
        dispatcher: CommandDispatcher,
        tracker: PositionTracker,
        session: SessionStateMachine,
        tolerance: float = POSITION_TOLERANCE,
        move_timeout: float = MOVE_TIMEOUT,
    ) -> None:
        self._dispatcher = dispatcher
        self._tracker = tracker
        self._session = session
        self.tolerance = tolerance
        self.move_timeout = move_timeout
        self._goal: Optional[AutoPositionGoal] = None
        self._watchdog: Optional[asyncio.Task] = None

        tracker.add_listener(self._on_position)

    @property
    def goal(self) -> Optional[AutoPositionGoal]:
        return self._goal

    @property
    def active(self) -> bool:
        return self._goal is not None

    def go_to(self, target: float, tolerance: Optional[float] = None) -> bool:
        """Start moving toward ``target`` rotations.

        Returns:
            True if the move started or the target is already reached,
            False if refused (move in progress or motor not startable)
        """
        if self._goal is not None:
            logger.warning("Auto-positioning already active")
            return False

        tol = self.tolerance if tolerance is None else tolerance
        current = self._tracker.rotations
        if abs(current - target) <= tol:
            logger.info(f"Already at {target:.2f} rotations")
            return True

        direction = Direction.CW if target > current else Direction.CCW
        # Goal first: a pass-through reading may arrive while starting
        self._goal = AutoPositionGoal(target=target, tolerance=tol, direction=direction)
        if not self._dispatcher.start_motor(direction):
            self._goal = None
            return False

        logger.info(
            f"Moving {direction.value} from {current:.2f} to {target:.2f} "
            f"rotations (tolerance {tol})"
        )
        if self._goal is not None and self.move_timeout > 0:
            self._watchdog = asyncio.create_task(self._watch(self._goal))
        return True

    def cancel(self) -> None:
        """User stop: clear the goal and stop the motor."""
        if self._goal is not None:
            logger.info("Auto-positioning cancelled")
        self._clear()
        self._dispatcher.stop_motor()

    def abort(self) -> None:
        """Clear the goal without sending anything (link already gone)."""
        if self._goal is not None:
            logger.warning("Auto-positioning aborted")
        self._clear()

    def _on_position(self, reading: TelemetryReading) -> None:
        goal = self._goal
        if goal is None:
            return
        if abs(reading.rotations - goal.target) <= goal.tolerance:
            logger.info(f"Reached target {goal.target:.2f} (at {reading.rotations:.3f})")
            self._clear()
            self._dispatcher.stop_motor()

    async def _watch(self, goal: AutoPositionGoal) -> None:
        try:
            await asyncio.sleep(self.move_timeout)
        except asyncio.CancelledError:
            return
        if self._goal is goal:
            self._watchdog = None
            self._clear()
            self._dispatcher.stop_motor()
            self._session.report_error(
                f"Auto-positioning timed out after {self.move_timeout:g}s "
                f"(target {goal.target:.2f}, at {self._tracker.rotations:.2f})"
            )

    def _clear(self) -> None:
        self._goal = None
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
