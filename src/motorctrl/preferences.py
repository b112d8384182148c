"""
Read-only user preferences.

Calibration bounds and the direction swap flag are owned by whatever front
end the user configures them in; the controller only reads them.
"""

import json
import logging
import os
import platform
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .codec import Direction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Preferences:
    directions_swapped: bool = False
    low_rotation: Optional[float] = None
    high_rotation: Optional[float] = None
    default_duration: float = 1.0


def get_preferences_file() -> Path:
    """Get the standard location of the preferences file."""
    # Check XDG_CONFIG_HOME first (Linux/Unix standard)
    config_dir = os.environ.get("XDG_CONFIG_HOME")
    if config_dir:
        config_path = Path(config_dir) / "motorctrl"
    else:
        system = platform.system()
        if system == "Darwin":  # macOS
            config_path = Path.home() / "Library" / "Application Support" / "motorctrl"
        elif system == "Windows":
            appdata = os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming"))
            config_path = Path(appdata) / "motorctrl"
        else:  # Linux/Unix fallback
            config_path = Path.home() / ".config" / "motorctrl"

    return config_path / "preferences.json"


def _optional_float(value: object) -> Optional[float]:
    if value is None:
        return None
    return float(value)  # type: ignore[arg-type]


def load_preferences(path: Optional[Path] = None) -> Preferences:
    """Load preferences, falling back to defaults.

    Args:
        path: Preferences file (defaults to the platform location)

    Returns:
        Preferences; defaults if the file is missing or unreadable
    """
    pref_file = path or get_preferences_file()
    try:
        if not pref_file.exists():
            return Preferences()
        with open(pref_file, "r") as f:
            data = json.load(f)
        return Preferences(
            directions_swapped=bool(data.get("directions_swapped", False)),
            low_rotation=_optional_float(data.get("low_rotation")),
            high_rotation=_optional_float(data.get("high_rotation")),
            default_duration=float(data.get("default_duration", 1.0)),
        )
    except (OSError, ValueError, TypeError, AttributeError) as e:
        logger.warning(f"Failed to load preferences from {pref_file}: {e}")
        return Preferences()


def resolve_heading(heading: str, swapped: bool) -> Direction:
    """Map an "up"/"down" heading onto a motor direction.

    Up turns counter-clockwise and down clockwise, unless the user swapped
    directions to match how the motor is mounted.

    Raises:
        ValueError: If heading is neither "up" nor "down"
    """
    heading = heading.strip().lower()
    if heading == "up":
        return Direction.CW if swapped else Direction.CCW
    if heading == "down":
        return Direction.CCW if swapped else Direction.CW
    raise ValueError(f"Unknown heading: {heading!r}")
