"""
Core constants, settings and exceptions for BLE motor control.
"""

from dataclasses import dataclass

# Nordic UART Service (NUS) used by the motor controller firmware
NUS_SERVICE_UUID = "6e400001-b5a3-f393-e0a9-e50e24dcca9e"
NUS_RX_UUID = "6e400002-b5a3-f393-e0a9-e50e24dcca9e"  # write (host -> device)
NUS_TX_UUID = "6e400003-b5a3-f393-e0a9-e50e24dcca9e"  # notify (device -> host)

# Advertised name of the reference board
TARGET_DEVICE_NAME = "Feather ESP32-S3"

# Discovery and connection timing (seconds)
SCAN_WINDOW = 10.0
CONNECT_TIMEOUT = 10.0
CONNECT_POLL_INTERVAL = 0.5

# Position tracking
TICK_INTERVAL = 0.05
DEGREES_PER_TICK = 30.0
TICKS_PER_ROTATION = 1800

# Auto-positioning
POSITION_TOLERANCE = 0.05
MOVE_TIMEOUT = 60.0

# Speed setter range
SPEED_MIN = 0
SPEED_MAX = 255

ERROR_LOG_SIZE = 50

# Application metadata
__version__ = "0.1.0"
__author__ = "OpenCode"
__description__ = "CLI and REPL interface for controlling a BLE motor controller"


@dataclass
class Settings:
    """Tunables for one controller instance.

    Defaults match the reference hardware; the CLI overrides fields from
    command line flags.
    """

    target_name: str = TARGET_DEVICE_NAME
    service_uuid: str = NUS_SERVICE_UUID
    write_uuid: str = NUS_RX_UUID
    notify_uuid: str = NUS_TX_UUID
    scan_window: float = SCAN_WINDOW
    skip_anonymous: bool = False
    lenient_ready: bool = False
    tracking_mode: str = "simulated"
    tick_interval: float = TICK_INTERVAL
    degrees_per_tick: float = DEGREES_PER_TICK
    tolerance: float = POSITION_TOLERANCE
    move_timeout: float = MOVE_TIMEOUT
    error_log_size: int = ERROR_LOG_SIZE


class MotorCtrlError(Exception):
    """Base class for errors raised to callers of the controller."""


class ConnectionTimeoutError(MotorCtrlError):
    """Raised when no session becomes ready within the allowed time."""

    def __init__(self, timeout: float, status: str = "") -> None:
        self.timeout = timeout
        self.status = status
        message = f"Could not connect to device within {timeout:g}s"
        if status:
            message += f" (last status: {status})"
        super().__init__(message)
