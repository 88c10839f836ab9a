"""
Instrument constants and pitch utilities.

The strumstick is a three-string, diatonically fretted instrument tuned
Low D / A / Hi D. Frets follow a major scale with a flat seventh added
(fret 6) instead of chromatic semitones, so pitches come from a fixed
lookup table rather than a formula.
"""
import math
from typing import Tuple

from core.errors import ValidationError

# MIDI note number to name mapping
MIDI_NOTE_NAMES = [
    "C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"
]

VOICE_COUNT = 3
VOICE_NAMES = ("Low D", "A", "Hi D")
MIN_FRET = 0
MAX_FRET = 12

# Row index is the fret, column index is the voice (0=Low D, 1=A, 2=Hi D)
FRET_PITCH_TABLE: Tuple[Tuple[str, str, str], ...] = (
    ("D3", "A4", "D4"),     # open strings
    ("E3", "B4", "E4"),
    ("F#3", "C#5", "F#4"),
    ("G3", "D5", "G4"),
    ("A3", "E5", "A4"),
    ("B3", "F#5", "B4"),
    ("C4", "G5", "C5"),     # flat seventh
    ("C#4", "G#5", "C#5"),
    ("D4", "A5", "D5"),     # octave
    ("E4", "B5", "E5"),
    ("F#4", "C#6", "F#5"),
    ("G4", "D6", "G5"),
    ("A4", "E6", "A5"),
)

# Tempo ranges: programmatic changes vs. headroom at the UI control edge
TEMPO_MIN = 60
TEMPO_MAX = 200
UI_TEMPO_MIN = 30
UI_TEMPO_MAX = 400
TEMPO_DEFAULT = 120


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_voice(voice: int) -> int:
    """Return voice unchanged or raise ValidationError."""
    if not _is_int(voice) or not 0 <= voice < VOICE_COUNT:
        raise ValidationError(f"Voice must be 0-{VOICE_COUNT - 1}, got {voice!r}")
    return voice


def validate_fret(fret: int) -> int:
    """Return fret unchanged or raise ValidationError."""
    if not _is_int(fret) or not MIN_FRET <= fret <= MAX_FRET:
        raise ValidationError(f"Fret must be {MIN_FRET}-{MAX_FRET}, got {fret!r}")
    return fret


def pitch_of(fret: int, voice: int) -> str:
    """
    Map a fret on a voice to its pitch name.

    Args:
        fret: Fret number (0-12)
        voice: Voice/string index (0=Low D, 1=A, 2=Hi D)

    Returns:
        Pitch name (e.g., "F#4")

    Raises:
        ValidationError: If fret or voice is outside the instrument range

    Example:
        >>> pitch_of(0, 0)
        'D3'
        >>> pitch_of(2, 2)
        'F#4'
    """
    validate_voice(voice)
    validate_fret(fret)
    return FRET_PITCH_TABLE[fret][voice]


def clamp_tempo(bpm: float) -> float:
    """Clamp a programmatic tempo change to [60, 200] BPM."""
    return max(TEMPO_MIN, min(TEMPO_MAX, bpm))


def clamp_ui_tempo(bpm: float) -> float:
    """Clamp a tempo typed into the UI control to [30, 400] BPM."""
    return max(UI_TEMPO_MIN, min(UI_TEMPO_MAX, bpm))


def name_to_midi_note(note_name: str) -> int:
    """
    Convert note name to MIDI number.

    Args:
        note_name: Note name (e.g., "C4", "A#3")

    Returns:
        MIDI note number (0-127)

    Raises:
        ValueError: If note name is invalid

    Example:
        >>> name_to_midi_note("D3")
        50
    """
    note_name = note_name.strip().upper()

    # Extract octave number (last character)
    if not note_name or not note_name[-1].isdigit():
        raise ValueError(f"Invalid note name format: {note_name}")

    octave = int(note_name[-1])
    note = note_name[:-1]

    if note not in MIDI_NOTE_NAMES:
        raise ValueError(f"Invalid note name: {note}")

    midi_note = (octave + 1) * 12 + MIDI_NOTE_NAMES.index(note)

    if not 0 <= midi_note <= 127:
        raise ValueError(f"Note {note_name} is out of MIDI range (0-127)")

    return midi_note


def midi_to_frequency(note_number: int) -> float:
    """
    Convert MIDI note number to frequency in Hz.

    Example:
        >>> midi_to_frequency(69)  # A4
        440.0
    """
    if not 0 <= note_number <= 127:
        raise ValueError(f"MIDI note must be 0-127, got {note_number}")

    # Formula: frequency = 440 * 2^((note - 69) / 12)
    return 440.0 * math.pow(2.0, (note_number - 69) / 12.0)


def pitch_to_frequency(pitch: str) -> float:
    """Frequency in Hz of a pitch name produced by pitch_of."""
    return midi_to_frequency(name_to_midi_note(pitch))
