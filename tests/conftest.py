import threading
import time
from typing import List, Optional, Tuple

import pytest

from audio.clock import Clock
from audio.output import PlaybackListener, RecordingOutput
from core.models import Note, Tab
from core.operations import insert_note


class FakeClock(Clock):
    """Clock that jumps straight to every deadline."""

    def __init__(self, start: float = 100.0):
        self.t = start
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self.t

    def wait_until(self, deadline: float, cancel: threading.Event) -> bool:
        if cancel.is_set():
            return False
        with self._lock:
            self.t = max(self.t, deadline)
        return not cancel.is_set()


class GatedClock(FakeClock):
    """FakeClock that stalls on any deadline past limit until cancelled."""

    def __init__(self, start: float = 100.0, limit: float = float("inf")):
        super().__init__(start)
        self.limit = limit

    def wait_until(self, deadline: float, cancel: threading.Event) -> bool:
        if deadline > self.limit:
            cancel.wait()
            return False
        return super().wait_until(deadline, cancel)


def wait_for(predicate, timeout: float = 2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.001)


class RecordingListener(PlaybackListener):
    def __init__(self):
        self.events: List[Tuple[str, object]] = []

    def on_notes_playing(self, notes):
        self.events.append(("notes", list(notes)))

    def on_playhead_position_change(self, ticks: Optional[int]):
        self.events.append(("playhead", ticks))

    def on_playback_state_change(self, is_playing: bool):
        self.events.append(("state", is_playing))

    def on_count_in_beat(self, beat_index: int, total_beats: int):
        self.events.append(("count_in", (beat_index, total_beats)))

    def of(self, kind: str) -> list:
        return [value for k, value in self.events if k == kind]


def build_tab(*notes: Note) -> Tab:
    tab = Tab()
    for note in notes:
        tab = insert_note(tab, note)
    return tab


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def output():
    return RecordingOutput()


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def scale_tab():
    """Three quarter notes on Hi D: D4, F#4, A4."""
    return build_tab(
        Note.fretted(2, 0, 0),
        Note.fretted(2, 960, 2),
        Note.fretted(2, 1920, 4),
    )
