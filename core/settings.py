"""
Settings persistence.

Settings live in ~/.innato/settings.json. Loaded values are merged over the
built-in defaults per category, so new keys added in a later version are
filled in automatically.
"""
import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path.home() / ".innato" / "settings.json"

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "audio": {
        "sample_rate": 44100,
        "buffer_size": 512,
        "output_device": None,  # None = system default
        "latency": "low",
        "voice_gain": 0.3,
    },
    "playback": {
        "tempo": 70,
        "time_signature": [4, 4],
        "flute_type": "Cm4",
        "tuning": "440",
    },
    "metronome": {
        "enabled": False,
        "accent_frequency": 800.0,
        "tick_frequency": 600.0,
    },
    "drone": {
        "instrument": "tanpura",
        "base_url": "audio/drone_player",
        "use_432hz": False,
        "fine_tune": 0,
        "volume": 75,
        "watchdog_interval": 0.05,
        "max_decoded_seconds": 600.0,
    },
}


def default_settings() -> Dict[str, Dict[str, Any]]:
    """Fresh copy of the built-in defaults."""
    return copy.deepcopy(DEFAULTS)


def load_settings(path: Optional[Path] = None) -> Dict[str, Dict[str, Any]]:
    """
    Load settings from the config file.

    Missing categories or keys fall back to defaults. If the file does not
    exist it is created with the defaults. A corrupt file is reported and
    the defaults are returned.

    Args:
        path: Settings file path (default: ~/.innato/settings.json)

    Returns:
        Settings dictionary keyed by category
    """
    config_path = Path(path) if path is not None else DEFAULT_SETTINGS_PATH
    settings = default_settings()

    if not config_path.exists():
        try:
            save_settings(settings, config_path)
            logger.info("Created new settings file with defaults at %s", config_path)
        except OSError as e:
            logger.warning("Failed to save default settings: %s", e)
        return settings

    try:
        with open(config_path, "r") as f:
            loaded = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Failed to load settings from %s: %s", config_path, e)
        return settings

    if not isinstance(loaded, dict):
        logger.warning("Ignoring settings file %s: expected an object", config_path)
        return settings

    # Merge with defaults (in case new settings added)
    for category, values in settings.items():
        if isinstance(loaded.get(category), dict):
            values.update(loaded[category])

    return settings


def save_settings(settings: Dict[str, Dict[str, Any]], path: Optional[Path] = None):
    """
    Save settings to the config file.

    Raises:
        OSError: If the file cannot be written
    """
    config_path = Path(path) if path is not None else DEFAULT_SETTINGS_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        json.dump(settings, f, indent=2)
