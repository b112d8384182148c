"""
Main REPL application for BLE motor control.

Interactive command loop with async support, auto-completion,
and live position display.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.history import InMemoryHistory

from .codec import Direction
from .commands import COMMANDS, CommandCompleter, get_command
from .controller import MotorController
from .core import MotorCtrlError, Settings, __version__
from .display import DisplayManager
from .preferences import load_preferences, resolve_heading
from .session import SessionState
from .tracker import TrackingMode

logger = logging.getLogger(__name__)


def parse_direction(word: str, swapped: bool) -> Direction:
    """Accept cw/ccw as-is and up/down through the swap preference.

    Raises:
        ValueError: If word is not a known direction
    """
    if word.lower() in ("up", "down"):
        return resolve_heading(word, swapped)
    return Direction.parse(word)


class MotorCtrlREPL:
    """Interactive REPL for BLE motor control."""

    def __init__(self, controller: MotorController) -> None:
        """Initialize REPL with controller and display manager."""
        self.controller = controller
        self.display = DisplayManager()
        self.running = False
        self.session: PromptSession

        # Set up callbacks
        self.controller.set_on_disconnect(self._on_device_disconnect)

        # Create prompt session with auto-completion
        self.session = PromptSession(
            completer=CommandCompleter(),
            history=InMemoryHistory(),
            enable_history_search=True,
        )

        # Background update task
        self._update_task: Optional[asyncio.Task] = None

    async def run(self) -> None:
        """Run the main REPL loop."""
        self.running = True
        self.display.print_banner()
        await self.controller.start()

        # Auto-connect to device on startup
        if self.controller.start_scan():
            self.display.print_info(
                "Scanning for motor controller... ('status' to follow progress)"
            )

        # Start update processing loop
        self._update_task = asyncio.create_task(self._update_loop())

        try:
            while self.running:
                try:
                    # Get user input
                    prompt_text = self._get_prompt()
                    text = await self.session.prompt_async(prompt_text)

                    # Parse and execute command
                    if text.strip():
                        await self._handle_input(text.strip())

                except KeyboardInterrupt:
                    # Just show new prompt on Ctrl+C
                    self.display.console.print()
                    continue

        except EOFError:
            # End of input (Ctrl+D)
            await self.cmd_quit([])
        finally:
            self.running = False
            if self._update_task:
                self._update_task.cancel()
                try:
                    await self._update_task
                except asyncio.CancelledError:
                    pass
            await self.controller.shutdown()

    def _get_prompt(self) -> FormattedText:
        """Get dynamic prompt based on connection state.

        Returns:
            FormattedText for prompt_toolkit
        """
        if self.controller.is_ready:
            device_name = self.controller.device_name or "Device"
            return FormattedText([("class:prompt", f"[{device_name}] > ")])
        return FormattedText([("class:prompt", f"[{self.controller.state.value}] > ")])

    async def _handle_input(self, text: str) -> None:
        """Parse and dispatch command.

        Args:
            text: Raw user input text
        """
        parts = text.split(maxsplit=1)
        if not parts:
            return

        cmd_name = parts[0].lower()
        args = parts[1].split() if len(parts) > 1 else []

        # Find command
        cmd = get_command(cmd_name)
        if not cmd:
            self.display.print_error(
                f"Unknown command: {cmd_name}. Type 'help' for available commands."
            )
            return

        # Get handler method
        handler_name = cmd.handler
        if not hasattr(self, handler_name):
            self.display.print_error(f"Handler not found: {handler_name}")
            return

        handler = getattr(self, handler_name)

        # Execute command
        try:
            await handler(args)
        except (MotorCtrlError, ValueError) as e:
            self.display.print_error(str(e))
        except Exception as e:
            self.display.print_error(f"Command failed: {e}")
            logger.exception("Command exception")

    async def _update_loop(self) -> None:
        """Background task to process position updates."""
        try:
            async for reading in self.controller.get_updates():
                if self.display.live_enabled:
                    self.display.update_live(reading)
        except asyncio.CancelledError:
            pass

    def _on_device_disconnect(self) -> None:
        """Callback when device disconnects."""
        if self.display.live_enabled:
            self.display.stop_live()
        self.display.print_info(f"Device disconnected ({self.controller.status})")

    def _require_ready(self) -> bool:
        if self.controller.is_ready:
            return True
        self.display.print_error("Not connected. Use 'scan' first.")
        return False

    # ========== Command Handlers ==========

    async def cmd_scan(self, args: list) -> None:
        """Scan for the motor controller and connect."""
        if self.controller.is_connected:
            self.display.print_info("Already connected")
            return

        self.display.print_info("Scanning for motor controller...")
        try:
            await self.controller.ensure_connected(
                timeout=self.controller.settings.scan_window + 5.0
            )
        except MotorCtrlError as e:
            self.display.print_error(str(e))
            devices = self.controller.discovered_devices
            if devices:
                self.display.print_devices(devices)
            return

        self.display.print_info(f"Connected to {self.controller.device_name}")
        await self.cmd_status([])

    async def cmd_disconnect(self, args: list) -> None:
        """Disconnect from device."""
        if self.controller.state is SessionState.IDLE:
            self.display.print_info("Not connected")
            return

        if self.display.live_enabled:
            self.display.stop_live()

        self.controller.disconnect()
        self.display.print_info("Disconnected")

    async def cmd_start(self, args: list) -> None:
        """Start the motor."""
        if not self._require_ready():
            return
        if not args:
            self.display.print_error("Usage: start <cw|ccw|up|down>")
            return

        direction = parse_direction(args[0], self.controller.preferences.directions_swapped)
        ok = self.controller.start_motor(direction)
        self.display.print_result(f"start {direction.value}", ok)

    async def cmd_stop(self, args: list) -> None:
        """Stop the motor."""
        ok = self.controller.stop_motor()
        self.display.print_result("stop", ok)

    async def cmd_run(self, args: list) -> None:
        """Run the motor for a number of seconds."""
        if not args:
            self.display.print_error("Usage: run <cw|ccw|up|down> [seconds]")
            return

        direction = parse_direction(args[0], self.controller.preferences.directions_swapped)
        seconds = (
            float(args[1]) if len(args) > 1 else self.controller.preferences.default_duration
        )
        self.display.print_info(f"Running {direction.value} for {seconds:g}s...")
        await self.controller.run_motor_for_duration(direction, seconds)
        await self.cmd_status([])

    async def cmd_goto(self, args: list) -> None:
        """Move to a target rotation count."""
        if not self._require_ready():
            return
        if not args:
            self.display.print_error("Usage: goto <rotations>")
            return

        try:
            target = float(args[0])
        except ValueError:
            self.display.print_error(f"Invalid rotation count: {args[0]}")
            return

        if self.controller.go_to_position(target):
            self.display.print_info(f"Moving to {target:.2f} rotations ('stop' to cancel)")
        else:
            self.display.print_error(f"Could not start move: {self.controller.status}")

    async def cmd_low(self, args: list) -> None:
        """Move to the calibrated low position."""
        if not self._require_ready():
            return
        if not self.controller.go_to_low():
            self.display.print_error("Low position not calibrated or move refused")

    async def cmd_high(self, args: list) -> None:
        """Move to the calibrated high position."""
        if not self._require_ready():
            return
        if not self.controller.go_to_high():
            self.display.print_error("High position not calibrated or move refused")

    async def cmd_speed(self, args: list) -> None:
        """Set motor speed."""
        if not self._require_ready():
            return
        if not args:
            self.display.print_error("Usage: speed <0-255>")
            return

        try:
            speed = int(args[0])
        except ValueError:
            self.display.print_error(f"Invalid speed: {args[0]}")
            return

        ok = self.controller.set_speed(speed)
        self.display.print_result(f"speed {speed}", ok)

    async def cmd_status(self, args: list) -> None:
        """Show connection and position."""
        self.display.print_status(self.controller.get_status())

    async def cmd_devices(self, args: list) -> None:
        """List devices seen in the last scan."""
        self.display.print_devices(self.controller.discovered_devices)

    async def cmd_errors(self, args: list) -> None:
        """Show or clear the error log."""
        if args and args[0].lower() == "clear":
            self.controller.clear_errors()
            self.display.print_info("Error log cleared")
            return
        self.display.print_errors(self.controller.error_log)

    async def cmd_live(self, args: list) -> None:
        """Toggle live display mode."""
        enabled = self.display.toggle_live()
        if enabled:
            self.display.update_live(self.controller.reading)
        else:
            self.display.print_info("Live display disabled")

    async def cmd_help(self, args: list) -> None:
        """Show all available commands."""
        self.display.print_help(COMMANDS)

    async def cmd_quit(self, args: list) -> None:
        """Exit the REPL."""
        if self.display.live_enabled:
            self.display.stop_live()

        if self.controller.is_connected:
            self.display.print_info("Disconnecting...")

        self.display.console.print("[cyan]Goodbye![/cyan]")
        self.running = False


async def run_cli_command(controller: MotorController, args: argparse.Namespace) -> int:
    """Run a single CLI command and exit.

    Returns:
        Process exit code
    """
    display = DisplayManager()
    swapped = controller.preferences.directions_swapped

    try:
        await controller.start()

        if args.scan:
            controller.start_scan()
            await asyncio.sleep(controller.settings.scan_window)
            display.print_info(controller.status)
            display.print_devices(controller.discovered_devices)
            return 0

        display.print_info("Connecting to device...")
        await controller.ensure_connected()

        if args.run:
            direction = parse_direction(args.run, swapped)
            duration = (
                args.duration
                if args.duration is not None
                else controller.preferences.default_duration
            )
            await controller.run_motor_for_duration(direction, duration)
            display.print_result(f"run {direction.value} {duration:g}s", True)

        elif args.goto is not None:
            if not controller.go_to_position(args.goto):
                display.print_error(f"Could not start move: {controller.status}")
                return 1
            while controller.autopos.active:
                await asyncio.sleep(0.1)
            display.print_status(controller.get_status())

        elif args.stop:
            display.print_result("stop", controller.stop_motor())

        elif args.status:
            # Wait a moment for telemetry to arrive after connecting
            await asyncio.sleep(1)
            display.print_status(controller.get_status())

        return 0

    except MotorCtrlError as e:
        display.print_error(str(e))
        return 1

    finally:
        await controller.shutdown()


def build_settings(args: argparse.Namespace) -> Settings:
    """Create Settings from command line flags."""
    settings = Settings(
        scan_window=args.scan_window,
        skip_anonymous=args.skip_anonymous,
        lenient_ready=args.lenient_ready,
        tracking_mode=args.mode,
        tolerance=args.tolerance,
    )
    if args.name:
        settings.target_name = args.name
    return settings


def main() -> None:
    """Entry point for the REPL application."""
    defaults = Settings()
    parser = argparse.ArgumentParser(
        description="BLE Motor Control",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  motorctrl                      # Start interactive REPL
  motorctrl --scan               # List nearby devices
  motorctrl --run up --duration 2  # Run motor up for 2s (auto-connects)
  motorctrl --goto 3.5           # Move to 3.5 rotations
  motorctrl --status             # Get device status (auto-connects)
  motorctrl --stop               # Stop the motor
        """,
    )

    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    parser.add_argument(
        "--scan",
        action="store_true",
        help="Scan, connect to the target if seen, and list devices",
    )

    parser.add_argument(
        "--run", metavar="DIRECTION", help="Run motor (cw, ccw, up or down)"
    )

    parser.add_argument(
        "--duration", type=float, default=None, help="Seconds to run with --run"
    )

    parser.add_argument(
        "--goto", type=float, metavar="ROTATIONS", help="Move to a rotation count"
    )

    parser.add_argument("--stop", action="store_true", help="Stop the motor")

    parser.add_argument("--status", action="store_true", help="Show device status")

    parser.add_argument("--name", help="Target device name substring")

    parser.add_argument(
        "--scan-window",
        type=float,
        default=defaults.scan_window,
        help="Seconds to scan before giving up",
    )

    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in TrackingMode],
        default=defaults.tracking_mode,
        help="Trust device telemetry (pass-through) or integrate locally (simulated)",
    )

    parser.add_argument(
        "--tolerance",
        type=float,
        default=defaults.tolerance,
        help="Auto-positioning tolerance in rotations",
    )

    parser.add_argument(
        "--lenient-ready",
        action="store_true",
        help="Treat the session as ready once either endpoint is bound",
    )

    parser.add_argument(
        "--skip-anonymous",
        action="store_true",
        help="Hide unnamed devices from the discovered list",
    )

    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
    )

    # Check which command was requested
    commands = [
        name
        for name, requested in (
            ("scan", args.scan),
            ("run", args.run is not None),
            ("goto", args.goto is not None),
            ("stop", args.stop),
            ("status", args.status),
        )
        if requested
    ]

    if len(commands) > 1:
        print("Error: Only one command can be specified at a time", file=sys.stderr)
        sys.exit(1)

    controller = MotorController(
        settings=build_settings(args), preferences=load_preferences()
    )

    # If no CLI commands, start REPL
    if not commands:
        try:
            repl = MotorCtrlREPL(controller)
            asyncio.run(repl.run())
        except KeyboardInterrupt:
            print("\nInterrupted")
            sys.exit(0)
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        try:
            sys.exit(asyncio.run(run_cli_command(controller, args)))
        except KeyboardInterrupt:
            print("\nInterrupted")
            sys.exit(1)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)


if __name__ == "__main__":
    main()
