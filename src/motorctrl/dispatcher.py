"""
Turns motor intents into wire commands.

Commands are fire-and-forget: nothing is queued or retried. The firmware
stops the motor by itself when the link drops.
"""

import logging
from typing import Optional

from .codec import Command, CommandKind, Direction, encode_command
from .session import SessionStateMachine
from .tracker import PositionTracker

logger = logging.getLogger(__name__)


class CommandDispatcher:
    """Sends commands over the session and keeps the tracker in step."""

    def __init__(self, session: SessionStateMachine, tracker: PositionTracker) -> None:
        self._session = session
        self._tracker = tracker
        self.last_command: Optional[Command] = None

    def issue(self, command: Command) -> bool:
        """Send one command if the session is ready.

        Returns:
            True if the command was handed to the transport, False if dropped
        """
        text = encode_command(command)
        if not self._session.send_text(text):
            self._session.report_error(f"Not connected - dropped {text}")
            return False
        logger.info(f"Sent command: {text}")
        self.last_command = command
        return True

    def start_motor(self, direction: Direction) -> bool:
        """Start the motor turning in ``direction``."""
        if (
            self._tracker.running
            and self._tracker.direction is direction
            and self.last_command == Command.start(direction)
        ):
            logger.debug(f"Motor already running {direction.value}; not resending")
            return True

        if not self.issue(Command.start(direction)):
            return False
        self._tracker.start(direction)
        return True

    def stop_motor(self) -> bool:
        """Stop the motor. STOP is always sent, even if already stopped."""
        sent = self.issue(Command.stop())
        self._tracker.stop()
        return sent

    def set_speed(self, speed: int) -> bool:
        """Set motor speed (0-255).

        Raises:
            ValueError: If speed is out of range
        """
        return self.issue(Command.set_speed(speed))

    @property
    def motor_running(self) -> bool:
        return (
            self.last_command is not None
            and self.last_command.kind is CommandKind.START
            and self._tracker.running
        )
