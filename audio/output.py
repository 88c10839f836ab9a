"""
Boundaries between the playback scheduler and its collaborators.

AudioOutput is the synth side: it receives "play this pitch at this
absolute time" requests. PlaybackListener is the UI side: fire-and-forget
notifications for highlighting, the playhead and the count-in flash.
"""
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Tuple


class AudioOutput(ABC):
    """Audio output collaborator injected into the scheduler."""

    @abstractmethod
    def trigger_note(self, pitch: str, duration_seconds: float,
                     at_wall_time: float, voice_channel: int):
        """
        Schedule a note.

        Args:
            pitch: Pitch name (e.g., "F#4")
            duration_seconds: Sounding length
            at_wall_time: Absolute start time on the scheduler's clock
            voice_channel: Voice/string index (0-2)
        """
        raise NotImplementedError()

    @abstractmethod
    def trigger_metronome_click(self, accented: bool, at_wall_time: float):
        """Schedule a count-in click."""
        raise NotImplementedError()

    @abstractmethod
    def stop_all(self):
        """Cancel everything scheduled but not yet sounding."""
        raise NotImplementedError()


class PlaybackListener:
    """UI notifications; every method defaults to a no-op."""

    def on_notes_playing(self, notes: List[Tuple[int, int]]):
        """Notes now sounding as (fret, voice) pairs; empty clears highlights."""

    def on_playhead_position_change(self, ticks: Optional[int]):
        """Playhead moved to ticks; None hides the playhead."""

    def on_playback_state_change(self, is_playing: bool):
        """Playback started or stopped."""

    def on_count_in_beat(self, beat_index: int, total_beats: int):
        """Count-in beat beat_index (0-based) of total_beats is sounding."""


@dataclass(frozen=True)
class NoteRequest:
    pitch: str
    duration_seconds: float
    at_wall_time: float
    voice_channel: int


@dataclass(frozen=True)
class ClickRequest:
    accented: bool
    at_wall_time: float


class RecordingOutput(AudioOutput):
    """Output that keeps every request in memory (offline rendering, tests)."""

    def __init__(self):
        self._lock = threading.Lock()
        self.notes: List[NoteRequest] = []
        self.clicks: List[ClickRequest] = []
        self.stop_count = 0

    def trigger_note(self, pitch, duration_seconds, at_wall_time, voice_channel):
        with self._lock:
            self.notes.append(NoteRequest(pitch, duration_seconds, at_wall_time, voice_channel))

    def trigger_metronome_click(self, accented, at_wall_time):
        with self._lock:
            self.clicks.append(ClickRequest(accented, at_wall_time))

    def stop_all(self):
        with self._lock:
            self.stop_count += 1

    def clear(self):
        with self._lock:
            self.notes.clear()
            self.clicks.clear()
            self.stop_count = 0
