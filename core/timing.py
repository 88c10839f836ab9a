"""
Tick arithmetic.

960 ticks make a quarter note, so a 4/4 measure is 3840 ticks and a
sixteenth is 240. The tab grid always uses 4/4 divisors; the time signature
only decides how many clicks the count-in plays.
"""
from enum import Enum
from typing import Tuple, Union

from core.errors import ValidationError

TICKS_PER_QUARTER = 960
TICKS_PER_MEASURE = 3840
TICKS_PER_SIXTEENTH = 240


class Duration(Enum):
    """Symbolic note durations."""
    WHOLE = "whole"
    HALF = "half"
    QUARTER = "quarter"
    EIGHTH = "eighth"
    SIXTEENTH = "sixteenth"

    @property
    def ticks(self) -> int:
        return DURATION_TICKS[self]

    @classmethod
    def parse(cls, value: Union["Duration", str]) -> "Duration":
        """Accept a Duration or its string value ("quarter")."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Unknown duration: {value!r}") from None


DURATION_TICKS = {
    Duration.WHOLE: 3840,
    Duration.HALF: 1920,
    Duration.QUARTER: 960,
    Duration.EIGHTH: 480,
    Duration.SIXTEENTH: 240,
}


def duration_ticks(duration: Union[Duration, str]) -> int:
    """
    Tick length of a symbolic duration.

    Example:
        >>> duration_ticks("quarter")
        960
    """
    return DURATION_TICKS[Duration.parse(duration)]


def _check_ticks(ticks: int):
    if isinstance(ticks, bool) or not isinstance(ticks, int) or ticks < 0:
        raise ValidationError(f"Tick position must be a non-negative integer, got {ticks!r}")


def ticks_to_measure_beat_sub(ticks: int) -> Tuple[int, int, int]:
    """
    Convert an absolute tick position to (measure, beat, subdivision).

    Positions between sixteenth grid lines are reported at the next grid
    line, so a note that starts just after a beat is shown on the
    subdivision it sounds in.

    Example:
        >>> ticks_to_measure_beat_sub(3840)
        (1, 0, 0)
        >>> ticks_to_measure_beat_sub(1000)
        (0, 1, 1)
    """
    _check_ticks(ticks)
    snapped = -(-ticks // TICKS_PER_SIXTEENTH) * TICKS_PER_SIXTEENTH
    measure = snapped // TICKS_PER_MEASURE
    beat = (snapped % TICKS_PER_MEASURE) // TICKS_PER_QUARTER
    subdivision = (snapped % TICKS_PER_QUARTER) // TICKS_PER_SIXTEENTH
    return measure, beat, subdivision


def measure_beat_sub_to_ticks(measure: int, beat: int, subdivision: int) -> int:
    """Inverse of ticks_to_measure_beat_sub for on-grid positions."""
    if measure < 0 or not 0 <= beat < 4 or not 0 <= subdivision < 4:
        raise ValidationError(f"Invalid position {measure}:{beat}:{subdivision}")
    return (measure * TICKS_PER_MEASURE
            + beat * TICKS_PER_QUARTER
            + subdivision * TICKS_PER_SIXTEENTH)


def quantize(tick: int) -> int:
    """Snap a raw pointer tick to the nearest quarter-note grid line."""
    half = TICKS_PER_QUARTER // 2
    return max(0, ((int(tick) + half) // TICKS_PER_QUARTER) * TICKS_PER_QUARTER)


def ticks_per_measure(numerator: int, denominator: int = 4) -> int:
    """Length of one measure of the given time signature in ticks."""
    if numerator <= 0 or denominator not in (1, 2, 4, 8, 16):
        raise ValidationError(f"Invalid time signature {numerator}/{denominator}")
    return numerator * TICKS_PER_QUARTER * 4 // denominator


def seconds_per_tick(tempo: float) -> float:
    """Wall-clock length of one tick at the given tempo (BPM)."""
    return 60.0 / (tempo * TICKS_PER_QUARTER)


def ticks_to_seconds(ticks: int, tempo: float) -> float:
    """
    Convert a tick count to seconds at the given tempo.

    Computed as a single division so whole beats come out exact
    (960 ticks at 120 BPM is exactly 0.5).
    """
    return ticks * 60.0 / (tempo * TICKS_PER_QUARTER)
