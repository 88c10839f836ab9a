"""
Transport state reducer.

A pure (state, action) -> state function is the single source of truth for
tempo, volume, loop points and the transport position. TransportStore wraps
it for the UI and the playback thread.
"""
import logging
import math
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from numbers import Real
from typing import Any, Callable, List

from core.constants import TEMPO_DEFAULT, clamp_tempo
from core.errors import ValidationError
from core.models import Tab

logger = logging.getLogger(__name__)


class ActionType(Enum):
    """Transport actions."""
    LOAD_SEQUENCE = "LOAD_SEQUENCE"
    PLAY = "PLAY"
    STOP = "STOP"
    PAUSE = "PAUSE"
    SET_TEMPO = "SET_TEMPO"
    SET_POSITION = "SET_POSITION"
    SET_VOLUME = "SET_VOLUME"
    TOGGLE_LOOP = "TOGGLE_LOOP"
    SET_LOOP_POINTS = "SET_LOOP_POINTS"
    TRANSPORT_POSITION_UPDATE = "TRANSPORT_POSITION_UPDATE"


@dataclass(frozen=True)
class Action:
    type: ActionType
    payload: Any = None


@dataclass(frozen=True)
class TransportState:
    """
    Playback transport state.

    Attributes:
        sequence: Tab snapshot loaded for playback
        is_playing: Whether the transport is running
        current_position: Transport position in ticks
        tempo: Tempo in BPM (60-200)
        volume: Output volume (0.0-1.0)
        is_looping: Whether playback loops between loop_start and loop_end
        loop_start: Loop start tick
        loop_end: Loop end tick (>= loop_start)
    """
    sequence: Tab = field(default_factory=Tab)
    is_playing: bool = False
    current_position: int = 0
    tempo: float = TEMPO_DEFAULT
    volume: float = 0.7
    is_looping: bool = False
    loop_start: int = 0
    loop_end: int = 0

    @property
    def has_loop(self) -> bool:
        return self.is_looping and self.loop_end > self.loop_start


# Action constructors

def load_sequence(tab: Tab) -> Action:
    return Action(ActionType.LOAD_SEQUENCE, tab)


def play() -> Action:
    return Action(ActionType.PLAY)


def stop() -> Action:
    return Action(ActionType.STOP)


def pause() -> Action:
    return Action(ActionType.PAUSE)


def set_tempo(bpm: float) -> Action:
    return Action(ActionType.SET_TEMPO, bpm)


def set_position(ticks: int) -> Action:
    return Action(ActionType.SET_POSITION, ticks)


def set_volume(volume: float) -> Action:
    return Action(ActionType.SET_VOLUME, volume)


def toggle_loop() -> Action:
    return Action(ActionType.TOGGLE_LOOP)


def set_loop_points(start: int, end: int) -> Action:
    return Action(ActionType.SET_LOOP_POINTS, (start, end))


def transport_position_update(ticks: int) -> Action:
    return Action(ActionType.TRANSPORT_POSITION_UPDATE, ticks)


def _number(value: Any, name: str) -> float:
    """Reject missing, boolean, non-numeric and non-finite payloads."""
    if value is None or isinstance(value, bool) or not isinstance(value, Real):
        raise ValidationError(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise ValidationError(f"{name} must be finite, got {value!r}")
    return value


def transport_reducer(state: TransportState, action: Action) -> TransportState:
    """
    Pure reducer for transport state.

    Raises:
        ValidationError: If a numeric payload is missing or not a finite number
    """
    kind = action.type

    if kind is ActionType.LOAD_SEQUENCE:
        if not isinstance(action.payload, Tab):
            raise ValidationError(f"LOAD_SEQUENCE needs a Tab, got {type(action.payload).__name__}")
        # New sequence always starts from the top
        return replace(state, sequence=action.payload, current_position=0)

    if kind is ActionType.PLAY:
        return replace(state, is_playing=True)

    if kind is ActionType.STOP:
        return replace(state, is_playing=False, current_position=0)

    if kind is ActionType.PAUSE:
        return replace(state, is_playing=False)

    if kind is ActionType.SET_TEMPO:
        return replace(state, tempo=float(clamp_tempo(_number(action.payload, "Tempo"))))

    if kind in (ActionType.SET_POSITION, ActionType.TRANSPORT_POSITION_UPDATE):
        position = _number(action.payload, "Position")
        return replace(state, current_position=max(0, int(position)))

    if kind is ActionType.SET_VOLUME:
        volume = _number(action.payload, "Volume")
        return replace(state, volume=float(max(0.0, min(1.0, volume))))

    if kind is ActionType.TOGGLE_LOOP:
        return replace(state, is_looping=not state.is_looping)

    if kind is ActionType.SET_LOOP_POINTS:
        try:
            start, end = action.payload
        except (TypeError, ValueError):
            raise ValidationError(f"Loop points must be (start, end), got {action.payload!r}") from None
        loop_start = max(0, int(_number(start, "Loop start")))
        loop_end = max(loop_start, int(_number(end, "Loop end")))
        return replace(state, loop_start=loop_start, loop_end=loop_end)

    return state


class TransportStore:
    """
    Thread-safe holder of the transport state.

    The UI dispatches actions; the playback thread reads `state` per stack
    and dispatches position updates.
    """

    def __init__(self, initial: TransportState = None):
        self._state = initial if initial is not None else TransportState()
        self._lock = threading.Lock()
        self._subscribers: List[Callable[[TransportState], None]] = []

    @property
    def state(self) -> TransportState:
        with self._lock:
            return self._state

    def dispatch(self, action: Action) -> bool:
        """
        Apply an action.

        Returns:
            False if the action was rejected (state unchanged)
        """
        with self._lock:
            try:
                new_state = transport_reducer(self._state, action)
            except ValidationError as e:
                logger.warning("[TRANSPORT] %s rejected: %s", action.type.value, e)
                return False
            changed = new_state is not self._state
            self._state = new_state
            subscribers = list(self._subscribers)

        if changed:
            for callback in subscribers:
                try:
                    callback(new_state)
                except Exception:
                    logger.exception("[TRANSPORT] Subscriber failed")
        return True

    def subscribe(self, callback: Callable[[TransportState], None]) -> Callable[[], None]:
        """Register a state listener; returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe
