import pytest

from core.constants import (
    FRET_PITCH_TABLE,
    clamp_tempo,
    clamp_ui_tempo,
    pitch_of,
    pitch_to_frequency,
)
from core.errors import ValidationError


def test_open_strings():
    assert [pitch_of(0, v) for v in range(3)] == ["D3", "A4", "D4"]


@pytest.mark.parametrize("fret, voice, pitch", [
    (2, 2, "F#4"),
    (4, 2, "A4"),
    (6, 0, "C4"),
    (7, 1, "G#5"),
    (12, 0, "A4"),
    (12, 1, "E6"),
    (12, 2, "A5"),
])
def test_table_lookups(fret, voice, pitch):
    assert pitch_of(fret, voice) == pitch


def test_table_shape():
    assert len(FRET_PITCH_TABLE) == 13
    assert all(len(row) == 3 for row in FRET_PITCH_TABLE)


@pytest.mark.parametrize("fret, voice", [(13, 0), (-1, 0), (0, 3), (0, -1), (True, 0), (1.0, 0)])
def test_out_of_range_rejected(fret, voice):
    with pytest.raises(ValidationError):
        pitch_of(fret, voice)


def test_validation_error_is_value_error():
    with pytest.raises(ValueError):
        pitch_of(20, 0)


def test_tempo_clamps():
    assert clamp_tempo(10) == 60
    assert clamp_tempo(500) == 200
    assert clamp_tempo(90) == 90
    assert clamp_ui_tempo(10) == 30
    assert clamp_ui_tempo(500) == 400


def test_pitch_frequency():
    assert pitch_to_frequency("A4") == pytest.approx(440.0)
    assert pitch_to_frequency("D4") == pytest.approx(293.66, abs=0.01)
