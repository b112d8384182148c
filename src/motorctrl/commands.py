"""
Command definitions and auto-completion for REPL.

Defines all available commands with metadata and provides a completer
for prompt_toolkit auto-completion.
"""

from dataclasses import dataclass
from typing import Any, List

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document


@dataclass
class Command:
    """Command definition with metadata."""

    name: str
    aliases: List[str]
    description: str
    usage: str
    handler: str


# Define all available commands
COMMANDS = [
    Command(
        name="scan",
        aliases=["connect", "c"],
        description="Scan for the motor controller and connect",
        usage="scan",
        handler="cmd_scan",
    ),
    Command(
        name="disconnect",
        aliases=["dc"],
        description="Disconnect from device",
        usage="disconnect",
        handler="cmd_disconnect",
    ),
    Command(
        name="start",
        aliases=["s"],
        description="Start the motor (cw/ccw, or up/down)",
        usage="start <cw|ccw|up|down>",
        handler="cmd_start",
    ),
    Command(
        name="stop",
        aliases=["x"],
        description="Stop the motor and any auto-positioning",
        usage="stop",
        handler="cmd_stop",
    ),
    Command(
        name="run",
        aliases=["r"],
        description="Run the motor for a number of seconds",
        usage="run <cw|ccw|up|down> [seconds]",
        handler="cmd_run",
    ),
    Command(
        name="goto",
        aliases=["g"],
        description="Move to a target rotation count",
        usage="goto <rotations>",
        handler="cmd_goto",
    ),
    Command(
        name="low",
        aliases=[],
        description="Move to the calibrated low position",
        usage="low",
        handler="cmd_low",
    ),
    Command(
        name="high",
        aliases=[],
        description="Move to the calibrated high position",
        usage="high",
        handler="cmd_high",
    ),
    Command(
        name="speed",
        aliases=["sp"],
        description="Set motor speed (0-255)",
        usage="speed <0-255>",
        handler="cmd_speed",
    ),
    Command(
        name="status",
        aliases=["st"],
        description="Show connection and position",
        usage="status",
        handler="cmd_status",
    ),
    Command(
        name="devices",
        aliases=["d"],
        description="List devices seen in the last scan",
        usage="devices",
        handler="cmd_devices",
    ),
    Command(
        name="errors",
        aliases=["e"],
        description="Show the error log ('errors clear' to empty it)",
        usage="errors [clear]",
        handler="cmd_errors",
    ),
    Command(
        name="live",
        aliases=["l"],
        description="Toggle live display mode",
        usage="live",
        handler="cmd_live",
    ),
    Command(
        name="help",
        aliases=["h", "?"],
        description="Show all available commands",
        usage="help",
        handler="cmd_help",
    ),
    Command(
        name="quit",
        aliases=["q", "exit"],
        description="Exit the REPL",
        usage="quit",
        handler="cmd_quit",
    ),
]

DIRECTION_WORDS = ["cw", "ccw", "up", "down"]

# Commands whose first argument is a direction
_DIRECTION_COMMANDS = ("start", "s", "run", "r")


def get_command(name: str) -> Command | None:
    """Get command by name or alias.

    Args:
        name: Command name or alias

    Returns:
        Command object if found, None otherwise
    """
    for cmd in COMMANDS:
        if cmd.name == name or name in cmd.aliases:
            return cmd
    return None


class CommandCompleter(Completer):
    """Auto-completion for commands and arguments."""

    def __init__(self) -> None:
        """Initialize completer."""
        self._command_names = set()
        self._command_aliases = set()

        for cmd in COMMANDS:
            self._command_names.add(cmd.name)
            self._command_aliases.update(cmd.aliases)

    def get_completions(self, document: Document, complete_event) -> Any:  # type: ignore[no-untyped-def]
        """Get completion suggestions for current input.

        Args:
            document: Current input document
            complete_event: Completion event

        Yields:
            Completion objects for matching commands/arguments
        """
        text = document.text_before_cursor.lstrip()
        parts = text.split()

        # If no text yet, suggest nothing (avoid spam)
        if not text:
            return

        # A trailing space means the next word has not been started yet
        if text.endswith(" "):
            parts.append("")

        # First part: complete command name
        if len(parts) <= 1:
            partial_cmd = parts[0].lower() if parts else ""
            all_names = self._command_names | self._command_aliases

            for name in sorted(all_names):
                if name.startswith(partial_cmd):
                    # Calculate completion (what needs to be added)
                    completion = name[len(partial_cmd) :]
                    yield Completion(
                        completion,
                        start_position=0,
                        display=f"({name})",
                    )

        # Second part: suggest directions for start/run
        elif len(parts) == 2 and parts[0].lower() in _DIRECTION_COMMANDS:
            partial = parts[1].lower()
            for word in DIRECTION_WORDS:
                if word.startswith(partial):
                    yield Completion(
                        word[len(partial) :],
                        start_position=0,
                        display=word,
                    )
