#!/usr/bin/env python
"""Basic functionality test for REPL components without device."""

import pytest
from prompt_toolkit.document import Document
from rich.console import Console

from motorctrl.cli import parse_direction
from motorctrl.codec import Direction, TelemetryReading
from motorctrl.commands import COMMANDS, CommandCompleter, get_command
from motorctrl.display import DisplayManager
from motorctrl.session import ErrorLogEntry


@pytest.fixture
def display():
    return DisplayManager(Console(record=True, width=120))


def test_display(display):
    """Test display functionality."""
    display.print_banner()
    display.print_status(
        {
            "status": "Ready",
            "connected": True,
            "device": "Feather ESP32-S3",
            "mode": "simulated",
            "angle": 240.0,
            "rotations": 1.6667,
            "ticks": 3000,
            "running": True,
            "direction": "CW",
            "target": 2.0,
        }
    )
    display.print_result("start CW", True)
    display.print_result("stop", False)
    display.print_info("This is an info message")
    display.print_error("This is an error message")
    display.print_help(COMMANDS)

    output = display.console.export_text()
    assert "MotorCtrl" in output
    assert "240.0°" in output
    assert "Running CW" in output
    assert "3,000" in output
    assert "stop failed" in output


def test_format_functions():
    assert DisplayManager.format_angle(12.345) == "12.3°"
    assert DisplayManager.format_rotations(-0.26) == "-0.3"
    assert DisplayManager.format_motor(False, None) == "Stopped"
    assert DisplayManager.format_motor(True, "CCW") == "Running CCW"


def test_devices_and_errors(display):
    from datetime import datetime

    display.print_devices([])
    display.print_devices(["Feather ESP32-S3 (RSSI: -52)"])
    display.print_errors([])
    display.print_errors(
        [
            ErrorLogEntry(datetime(2024, 1, 1, 12, 0, 0), "first"),
            ErrorLogEntry(datetime(2024, 1, 1, 12, 0, 5), "second"),
        ]
    )

    output = display.console.export_text()
    assert "No devices discovered" in output
    assert "Feather ESP32-S3 (RSSI: -52)" in output
    assert "No errors" in output
    # newest first
    assert output.index("[12:00:05] second") < output.index("[12:00:00] first")


def test_live_toggle(display):
    assert display.toggle_live()
    display.update_live(TelemetryReading(90.0, 0.25, 450))
    assert display._live_data["ticks"] == 450
    assert not display.toggle_live()
    # updates after stopping are ignored
    display.update_live(TelemetryReading(180.0, 0.5, 900))
    assert display._live_data["ticks"] == 450


def test_commands():
    """Test command definitions."""
    assert get_command("connect").name == "scan"
    assert get_command("g").name == "goto"
    assert get_command("?").name == "help"
    assert get_command("nope") is None

    handlers = {cmd.handler for cmd in COMMANDS}
    assert "cmd_goto" in handlers


def test_completer():
    completer = CommandCompleter()

    names = [c.text for c in completer.get_completions(Document("go"), None)]
    assert names == ["to"]

    directions = [c.display_text for c in completer.get_completions(Document("run c"), None)]
    assert directions == ["cw", "ccw"]

    assert list(completer.get_completions(Document(""), None)) == []


def test_parse_direction():
    assert parse_direction("cw", False) is Direction.CW
    assert parse_direction("up", False) is Direction.CCW
    assert parse_direction("up", True) is Direction.CW
    with pytest.raises(ValueError):
        parse_direction("left", False)
