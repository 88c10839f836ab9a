"""
Project file I/O for the .stab format.

File format:
- MessagePack binary format (fast, compact)
- Contains: tab snapshot + metadata + playback settings
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import msgpack

from core.constants import TEMPO_DEFAULT, clamp_tempo
from core.models import Tab
from core.operations import sequence_length
from core.timing import ticks_to_seconds

logger = logging.getLogger(__name__)

PROJECT_VERSION = "1.0.0"
PROJECT_SUFFIX = ".stab"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Project:
    """
    A saved tab plus the metadata around it.

    Attributes:
        tab: Tab content
        title: Song title
        artist: Optional artist name
        tempo: Saved tempo (BPM)
        time_signature: (numerator, denominator)
        count_in_enabled: Whether playback starts with a count-in
        loop_enabled: Whether playback loops
        loop_start: Loop start tick
        loop_end: Loop end tick
        tags: Free-form tags
        created_at: ISO timestamp of first save
        modified_at: ISO timestamp of last save
    """
    tab: Tab = field(default_factory=Tab)
    title: str = "Untitled Song"
    artist: Optional[str] = None
    tempo: float = TEMPO_DEFAULT
    time_signature: Tuple[int, int] = (4, 4)
    count_in_enabled: bool = False
    loop_enabled: bool = False
    loop_start: int = 0
    loop_end: int = 0
    tags: Tuple[str, ...] = field(default_factory=tuple)
    created_at: str = field(default_factory=_now)
    modified_at: str = field(default_factory=_now)

    @property
    def duration_seconds(self) -> float:
        """Playback length of the tab at the saved tempo."""
        return ticks_to_seconds(sequence_length(self.tab), self.tempo)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "version": PROJECT_VERSION,
            "metadata": {
                "title": self.title,
                "artist": self.artist,
                "tags": list(self.tags),
                "created_at": self.created_at,
                "modified_at": self.modified_at,
                "duration": self.duration_seconds,
            },
            "tab": self.tab.to_snapshot(),
            "playback": {
                "tempo": self.tempo,
                "time_signature": list(self.time_signature),
                "count_in_enabled": self.count_in_enabled,
                "loop_enabled": self.loop_enabled,
                "loop_start": self.loop_start,
                "loop_end": self.loop_end,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        """Create Project from dictionary."""
        metadata = data.get("metadata", {})
        playback = data.get("playback", {})
        return cls(
            tab=Tab.from_snapshot(data.get("tab", {})),
            title=metadata.get("title", "Untitled Song"),
            artist=metadata.get("artist"),
            tempo=clamp_tempo(float(playback.get("tempo", TEMPO_DEFAULT))),
            time_signature=tuple(playback.get("time_signature", (4, 4))),
            count_in_enabled=playback.get("count_in_enabled", False),
            loop_enabled=playback.get("loop_enabled", False),
            loop_start=playback.get("loop_start", 0),
            loop_end=playback.get("loop_end", 0),
            tags=tuple(metadata.get("tags", [])),
            created_at=metadata.get("created_at", _now()),
            modified_at=metadata.get("modified_at", _now()),
        )


class ProjectFile:
    """Handles .stab project file I/O."""

    @staticmethod
    def save(project: Project, path: Path) -> Path:
        """
        Save project to .stab file.

        Args:
            project: Project to save
            path: Destination file path

        Returns:
            The path actually written (with .stab suffix)

        Raises:
            IOError: If save fails
        """
        try:
            path = Path(path)

            if path.suffix != PROJECT_SUFFIX:
                path = path.with_suffix(PROJECT_SUFFIX)

            path.parent.mkdir(parents=True, exist_ok=True)

            project = replace(project, modified_at=_now())
            packed_data = msgpack.packb(project.to_dict(), use_bin_type=True)

            with open(path, "wb") as f:
                f.write(packed_data)

            return path

        except Exception as e:
            raise IOError(f"Failed to save project to {path}: {e}") from e

    @staticmethod
    def load(path: Path) -> Project:
        """
        Load project from .stab file.

        Raises:
            IOError: If the file cannot be read
            ValueError: If file format or version is invalid
        """
        path = Path(path)
        if not path.exists():
            raise IOError(f"Project file not found: {path}")

        try:
            with open(path, "rb") as f:
                packed_data = f.read()
            data = msgpack.unpackb(packed_data, raw=False)
        except (msgpack.exceptions.ExtraData, ValueError) as e:
            raise ValueError(f"Invalid {PROJECT_SUFFIX} file format: {e}") from e
        except OSError as e:
            raise IOError(f"Failed to load project from {path}: {e}") from e

        if not isinstance(data, dict):
            raise ValueError(f"Invalid {PROJECT_SUFFIX} file format: expected a map")

        version = str(data.get("version", "unknown"))
        if not version.startswith("1."):
            raise ValueError(f"Incompatible project version: {version}. Expected 1.x")

        try:
            return Project.from_dict(data)
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Invalid {PROJECT_SUFFIX} file format: {e!r}") from e

    @staticmethod
    def auto_save(project: Project) -> Optional[Path]:
        """
        Auto-save project to the autosave directory.

        Failures are logged and never raised.
        """
        try:
            return ProjectFile.save(project, ProjectFile.get_auto_save_path(project.title))
        except IOError as e:
            logger.error("Auto-save failed: %s", e)
            return None

    @staticmethod
    def get_auto_save_path(project_name: str, base_dir: Optional[Path] = None) -> Path:
        """
        Get path to auto-save file for a project.

        Args:
            project_name: Project name
            base_dir: Autosave directory (defaults to ~/.strumtab/autosave)
        """
        auto_save_dir = Path(base_dir) if base_dir is not None else Path.home() / ".strumtab" / "autosave"
        auto_save_dir.mkdir(parents=True, exist_ok=True)

        # Sanitize project name for file system
        safe_name = "".join(c for c in project_name if c.isalnum() or c in (' ', '-', '_')).strip()
        if not safe_name:
            safe_name = "untitled"

        return auto_save_dir / f"{safe_name}{PROJECT_SUFFIX}"
