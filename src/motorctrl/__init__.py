"""
MotorCtrl - BLE Motor Controller Library

A Python library for driving a motor controller peripheral over Bluetooth
Low Energy and tracking the resulting shaft position.
"""

__version__ = "0.1.0"
__author__ = "OpenCode"
__description__ = "CLI and REPL interface for controlling a BLE motor controller"

from .codec import Command, Direction, TelemetryReading
from .controller import MotorController
from .core import ConnectionTimeoutError, MotorCtrlError, Settings
from .display import DisplayManager

__all__ = [
    "Command",
    "ConnectionTimeoutError",
    "Direction",
    "DisplayManager",
    "MotorController",
    "MotorCtrlError",
    "Settings",
    "TelemetryReading",
]
