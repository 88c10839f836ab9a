"""
User settings stored as JSON in ~/.strumtab/settings.json.

Loaded values are merged over the defaults category by category, so a
settings file written by an older version picks up new keys.
"""
import copy
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from core.constants import TEMPO_DEFAULT

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict[str, Dict[str, Any]] = {
    "general": {
        "auto_save_enabled": True,
        "auto_save_interval": 300,  # seconds
        "undo_limit": 100,
        "default_tempo": TEMPO_DEFAULT,
    },
    "playback": {
        "lookahead_seconds": 0.1,
        "preview_duration": 0.8,
        "count_in_enabled": False,
        "time_signature": [4, 4],
    },
    "audio": {
        "sample_rate": 44100,
        "buffer_size": 512,
        "output_device": "Default",
        "volume": 0.7,
    },
}


def get_settings_path() -> Path:
    """Path to the user's settings file."""
    return Path.home() / ".strumtab" / "settings.json"


def load_settings(config_path: Optional[Path] = None) -> Dict[str, Dict[str, Any]]:
    """
    Load settings, creating the file with defaults if it does not exist.

    Args:
        config_path: Settings file (defaults to ~/.strumtab/settings.json)

    Returns:
        Settings dictionary keyed by category
    """
    config_path = Path(config_path) if config_path is not None else get_settings_path()
    settings = copy.deepcopy(DEFAULT_SETTINGS)

    if not config_path.exists():
        try:
            save_settings(settings, config_path)
            logger.info("[SETTINGS] Created new settings file with defaults")
        except OSError as e:
            logger.warning("Failed to save default settings: %s", e)
        return settings

    try:
        with open(config_path, "r") as f:
            loaded = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Failed to load settings: %s", e)
        return settings

    # Merge with defaults (in case new settings were added)
    for category in settings:
        if isinstance(loaded.get(category), dict):
            settings[category].update(loaded[category])

    return settings


def save_settings(settings: Dict[str, Dict[str, Any]], config_path: Optional[Path] = None):
    """Write settings to disk, creating the parent directory if needed."""
    config_path = Path(config_path) if config_path is not None else get_settings_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        json.dump(settings, f, indent=2)


@dataclass(frozen=True)
class PlaybackConfig:
    """Tunables the scheduler and audio output read at construction."""
    lookahead_seconds: float = 0.1
    preview_duration: float = 0.8
    count_in_enabled: bool = False
    time_signature: Tuple[int, int] = (4, 4)
    default_tempo: float = TEMPO_DEFAULT
    sample_rate: int = 44100
    buffer_size: int = 512
    volume: float = 0.7

    @classmethod
    def from_settings(cls, settings: Dict[str, Dict[str, Any]]) -> "PlaybackConfig":
        """Build from a settings dictionary returned by load_settings."""
        playback = settings.get("playback", {})
        audio = settings.get("audio", {})
        general = settings.get("general", {})
        return cls(
            lookahead_seconds=float(playback.get("lookahead_seconds", 0.1)),
            preview_duration=float(playback.get("preview_duration", 0.8)),
            count_in_enabled=bool(playback.get("count_in_enabled", False)),
            time_signature=tuple(playback.get("time_signature", (4, 4))),
            default_tempo=float(general.get("default_tempo", TEMPO_DEFAULT)),
            sample_rate=int(audio.get("sample_rate", 44100)),
            buffer_size=int(audio.get("buffer_size", 512)),
            volume=float(audio.get("volume", 0.7)),
        )
