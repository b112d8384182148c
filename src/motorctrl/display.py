"""
Display manager for Rich-based REPL output and live updates.

Handles all console output including formatted tables, status display,
and toggle-able live display updates.
"""

import logging
from typing import Any, Optional, Sequence

from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .codec import TelemetryReading

logger = logging.getLogger(__name__)


class DisplayManager:
    """Manages console output with Rich library."""

    def __init__(self, console: Optional[Console] = None):
        """Initialize display manager.

        Args:
            console: Rich Console instance (creates one if None)
        """
        self.console = console or Console()
        self.live_enabled = False
        self._live: Optional[Live] = None
        self._live_data: dict[str, Any] = {}

    def print_banner(self) -> None:
        """Print startup banner."""
        panel = Panel(
            "[bold cyan]MotorCtrl - BLE Motor Control[/bold cyan]\n"
            "[dim]Type 'help' for commands, 'quit' to exit[/dim]",
            expand=False,
        )
        self.console.print(panel)

    def print_status(self, data: dict) -> None:
        """Display one-time status table.

        Args:
            data: Dictionary from MotorController.get_status()
        """
        table = self.format_status_table(data)
        self.console.print(table)

    def print_result(self, cmd: str, ok: bool) -> None:
        """Display command result.

        Args:
            cmd: Command name
            ok: Whether the command was sent
        """
        if ok:
            self.console.print(f"[green]✓[/green] {cmd} sent", highlight=False)
        else:
            self.console.print(f"[red]✗[/red] {cmd} failed", highlight=False)

    def print_error(self, message: str) -> None:
        """Print red error message.

        Args:
            message: Error message text
        """
        self.console.print(f"[red]Error:[/red] {message}", highlight=False)

    def print_info(self, message: str) -> None:
        """Print blue info message.

        Args:
            message: Info message text
        """
        self.console.print(f"[cyan]Info:[/cyan] {message}", highlight=False)

    def print_devices(self, devices: Sequence[str]) -> None:
        """List devices seen in the last scan."""
        if not devices:
            self.console.print("[dim]No devices discovered[/dim]")
            return
        table = Table(title="Discovered Devices", show_header=False)
        table.add_column("Device", style="white")
        for line in devices:
            table.add_row(line)
        self.console.print(table)

    def print_errors(self, entries: Sequence[Any]) -> None:
        """Show the error log, newest first."""
        if not entries:
            self.console.print("[dim italic]No errors[/dim italic]")
            return
        for entry in reversed(entries):
            self.console.print(f"[red]{escape(str(entry))}[/red]", highlight=False)

    def print_help(self, commands: list) -> None:
        """Display command reference.

        Args:
            commands: List of Command objects
        """
        table = Table(title="Available Commands", show_header=True)
        table.add_column("Command", style="cyan")
        table.add_column("Aliases", style="magenta")
        table.add_column("Description", style="white")
        table.add_column("Usage", style="yellow")

        for cmd in commands:
            aliases = ", ".join(cmd.aliases) if cmd.aliases else "-"
            table.add_row(cmd.name, aliases, cmd.description, cmd.usage)

        self.console.print(table)
        self.console.print(
            "[dim]Keyboard shortcuts: Ctrl+C to interrupt, Ctrl+D to exit[/dim]"
        )

    def start_live(self) -> None:
        """Start live display refresh mode."""
        if self.live_enabled:
            return

        self.live_enabled = True
        self._live_data = {"angle": 0.0, "rotations": 0.0, "ticks": 0}
        renderable = self._create_live_table()
        self._live = Live(renderable, console=self.console, refresh_per_second=4)
        self._live.start()
        self.console.print("[dim]Live display enabled ['live' to disable][/dim]")

    def stop_live(self) -> None:
        """Stop live display refresh mode."""
        if not self.live_enabled:
            return

        self.live_enabled = False
        if self._live is not None:
            self._live.stop()
            self._live = None

    def update_live(self, data: Any) -> None:
        """Update live display with new position data.

        Args:
            data: TelemetryReading or status dict
        """
        if not self.live_enabled or self._live is None:
            return

        if isinstance(data, TelemetryReading):
            self._live_data.update(
                angle=data.angle, rotations=data.rotations, ticks=data.ticks
            )
        else:
            self._live_data.update(data)

        try:
            self._live.update(self._create_live_table())
        except Exception as e:
            logger.error(f"Live update error: {e}")

    def toggle_live(self) -> bool:
        """Toggle live display on/off.

        Returns:
            New live display state (True = on, False = off)
        """
        if self.live_enabled:
            self.stop_live()
        else:
            self.start_live()
        return self.live_enabled

    def _create_live_table(self) -> Table:
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="yellow")

        table.add_row("Angle", self.format_angle(self._live_data.get("angle", 0.0)))
        table.add_row(
            "Rotations", self.format_rotations(self._live_data.get("rotations", 0.0))
        )
        table.add_row("Ticks", f"{self._live_data.get('ticks', 0):,}")
        return table

    def format_status_table(self, data: dict) -> Table:
        """Create Rich Table for status display.

        Args:
            data: Dictionary from MotorController.get_status()

        Returns:
            Rich Table object
        """
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="yellow")

        connected = data.get("connected", False)
        table.add_row("Status", str(data.get("status", "UNKNOWN")))
        table.add_row("Connected", "✓ Connected" if connected else "✗ Not Connected")
        if data.get("device"):
            table.add_row("Device", data["device"])
        table.add_row("Tracking", str(data.get("mode", "-")))
        table.add_row("Angle", self.format_angle(data.get("angle", 0.0)))
        table.add_row("Rotations", self.format_rotations(data.get("rotations", 0.0)))
        table.add_row("Ticks", f"{data.get('ticks', 0):,}")
        table.add_row("Motor", self.format_motor(data.get("running"), data.get("direction")))
        if data.get("target") is not None:
            table.add_row("Target", self.format_rotations(data["target"]))

        return table

    @staticmethod
    def format_angle(degrees: float) -> str:
        """Format an angle in degrees."""
        return f"{degrees:.1f}°"

    @staticmethod
    def format_rotations(rotations: float) -> str:
        """Format a rotation count to one decimal place."""
        return f"{rotations:.1f}"

    @staticmethod
    def format_motor(running: Optional[bool], direction: Optional[str]) -> str:
        """Describe the motor state.

        Args:
            running: Whether the motor is running
            direction: "CW"/"CCW" while running

        Returns:
            "Stopped" or "Running CW"/"Running CCW"
        """
        if not running:
            return "Stopped"
        return f"Running {direction}" if direction else "Running"
