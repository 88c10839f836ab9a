"""
Immutable data models for strumtab.

All models are frozen dataclasses to support:
- Pure grid mutations with structural sharing of untouched stacks
- Undo/redo via the command pattern
- Handing a stable snapshot to the playback thread
"""
from bisect import bisect_left
from dataclasses import dataclass, field, replace
from typing import Tuple, Optional, Dict, Any, List, Union, Iterator

from core.constants import validate_fret, validate_voice, pitch_of
from core.errors import ValidationError
from core.timing import Duration

SNAPSHOT_VERSION = "1.0.0"


def _stack_number(stack_id: str) -> int:
    """Numeric suffix of a stack-<n> id, or -1 for ids from elsewhere."""
    prefix, _, number = stack_id.partition("-")
    if prefix == "stack" and number.isdigit():
        return int(number)
    return -1


@dataclass(frozen=True)
class Fretted:
    """Sounding content of a note: a fret on the note's voice."""
    fret: int

    def __post_init__(self):
        validate_fret(self.fret)


@dataclass(frozen=True)
class Rest:
    """Silent content of a note."""


REST = Rest()

Sound = Union[Fretted, Rest]


@dataclass(frozen=True)
class Note:
    """
    A note or rest on one voice.

    Attributes:
        voice: Voice/string index (0=Low D, 1=A, 2=Hi D)
        position: Tick position of the owning stack
        sound: Fretted(fret) or REST
        duration: Symbolic duration
        tied_to: Tick position of the note this one is tied into (None if untied)
    """
    voice: int
    position: int
    sound: Sound
    duration: Duration = Duration.QUARTER
    tied_to: Optional[int] = None

    def __post_init__(self):
        """Validate note values."""
        validate_voice(self.voice)
        if isinstance(self.position, bool) or not isinstance(self.position, int) or self.position < 0:
            raise ValidationError(f"Position must be a non-negative integer, got {self.position!r}")
        if not isinstance(self.sound, (Fretted, Rest)):
            raise ValidationError(f"Sound must be Fretted or Rest, got {self.sound!r}")
        # Use object.__setattr__ to normalise string durations on a frozen dataclass
        object.__setattr__(self, "duration", Duration.parse(self.duration))
        if self.tied_to is not None:
            if self.is_rest:
                raise ValidationError("A rest cannot be tied")
            if self.tied_to <= self.position:
                raise ValidationError(
                    f"Tie target {self.tied_to} must come after position {self.position}")

    @classmethod
    def fretted(cls, voice: int, position: int, fret: int,
                duration: Union[Duration, str] = Duration.QUARTER) -> "Note":
        return cls(voice=voice, position=position, sound=Fretted(fret), duration=duration)

    @classmethod
    def rest(cls, voice: int, position: int,
             duration: Union[Duration, str] = Duration.QUARTER) -> "Note":
        return cls(voice=voice, position=position, sound=REST, duration=duration)

    @property
    def is_rest(self) -> bool:
        return isinstance(self.sound, Rest)

    @property
    def fret(self) -> Optional[int]:
        """Fret number, or None for a rest."""
        return None if self.is_rest else self.sound.fret

    @property
    def is_tied(self) -> bool:
        return self.tied_to is not None

    @property
    def pitch(self) -> Optional[str]:
        return None if self.is_rest else pitch_of(self.sound.fret, self.voice)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization (position lives on the stack)."""
        return {
            "voice": self.voice,
            "fret": self.fret,
            "duration": self.duration.value,
            "tied_to": self.tied_to,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], position: int) -> "Note":
        """Create Note from dictionary."""
        fret = data.get("fret")
        return cls(
            voice=data["voice"],
            position=position,
            sound=REST if fret is None else Fretted(fret),
            duration=data.get("duration", Duration.QUARTER.value),
            tied_to=data.get("tied_to"),
        )


@dataclass(frozen=True)
class NoteStack:
    """
    All voices sounding (or resting) at one musical instant.

    Attributes:
        id: Unique, immutable identifier ("stack-<n>")
        position: Tick position (the addressing key)
        duration: Playback/rendering length of the stack
        notes: Notes ordered by voice, at most one per voice
    """
    id: str
    position: int
    duration: Duration
    notes: Tuple[Note, ...] = field(default_factory=tuple)

    def __post_init__(self):
        """Validate stack structure."""
        if not isinstance(self.id, str) or not self.id:
            raise ValidationError(f"Stack id must be a non-empty string, got {self.id!r}")
        object.__setattr__(self, "duration", Duration.parse(self.duration))
        if isinstance(self.position, bool) or not isinstance(self.position, int) or self.position < 0:
            raise ValidationError(f"Position must be a non-negative integer, got {self.position!r}")
        if not self.notes:
            raise ValidationError(f"Stack {self.id} has no notes")

        voices = [n.voice for n in self.notes]
        if voices != sorted(set(voices)):
            raise ValidationError(f"Stack {self.id} notes must be unique per voice and ordered by voice")
        for note in self.notes:
            if note.position != self.position:
                raise ValidationError(
                    f"Note at {note.position} does not belong to stack at {self.position}")

    def note_for(self, voice: int) -> Optional[Note]:
        """Get the note on a voice, or None."""
        for note in self.notes:
            if note.voice == voice:
                return note
        return None

    def with_note(self, note: Note) -> "NoteStack":
        """Return a copy holding note, replacing any note on the same voice."""
        others = [n for n in self.notes if n.voice != note.voice]
        notes = tuple(sorted(others + [note], key=lambda n: n.voice))
        return replace(self, notes=notes, duration=note.duration)

    def without_voice(self, voice: int) -> Optional["NoteStack"]:
        """Return a copy without the voice's note, or None if nothing remains."""
        notes = tuple(n for n in self.notes if n.voice != voice)
        if not notes:
            return None
        return replace(self, notes=notes)

    def playable_notes(self) -> Tuple[Note, ...]:
        """Notes that produce sound (rests filtered out)."""
        return tuple(n for n in self.notes if not n.is_rest)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "position": self.position,
            "duration": self.duration.value,
            "notes": [n.to_dict() for n in self.notes],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NoteStack":
        """Create NoteStack from dictionary."""
        position = data["position"]
        return cls(
            id=data["id"],
            position=position,
            duration=data.get("duration", Duration.QUARTER.value),
            notes=tuple(Note.from_dict(n, position) for n in data.get("notes", [])),
        )


@dataclass(frozen=True)
class Tab:
    """
    Tick-ordered collection of note stacks.

    Attributes:
        stacks: Stacks in strictly ascending position
        next_stack_id: Counter used to allocate ids for new stacks
    """
    stacks: Tuple[NoteStack, ...] = field(default_factory=tuple)
    next_stack_id: int = 0

    def __post_init__(self):
        """Validate ordering, position and id uniqueness, and the id counter."""
        for i in range(len(self.stacks) - 1):
            if self.stacks[i].position >= self.stacks[i + 1].position:
                raise ValidationError(
                    "Stacks must have unique positions in ascending order "
                    f"({self.stacks[i].position} before {self.stacks[i + 1].position})")

        seen = set()
        for stack in self.stacks:
            if stack.id in seen:
                raise ValidationError(f"Duplicate stack id: {stack.id}")
            seen.add(stack.id)

        # The counter must stay ahead of every allocated stack-<n> id
        floor = max((_stack_number(s.id) + 1 for s in self.stacks), default=0)
        if self.next_stack_id < floor:
            object.__setattr__(self, "next_stack_id", floor)

    def __iter__(self) -> Iterator[NoteStack]:
        return iter(self.stacks)

    def __len__(self) -> int:
        return len(self.stacks)

    @property
    def positions(self) -> List[int]:
        return [s.position for s in self.stacks]

    def index_of(self, position: int) -> int:
        """Index of the first stack at or after position."""
        return bisect_left(self.positions, position)

    def stack_at(self, position: int) -> Optional[NoteStack]:
        """Get the stack at an exact tick position."""
        index = self.index_of(position)
        if index < len(self.stacks) and self.stacks[index].position == position:
            return self.stacks[index]
        return None

    def to_snapshot(self) -> Dict[str, Any]:
        """Convert to a plain snapshot for persistence."""
        return {
            "version": SNAPSHOT_VERSION,
            "next_stack_id": self.next_stack_id,
            "stacks": [s.to_dict() for s in self.stacks],
        }

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "Tab":
        """Create Tab from a snapshot produced by to_snapshot."""
        version = data.get("version", SNAPSHOT_VERSION)
        if not str(version).startswith("1."):
            raise ValidationError(f"Incompatible tab snapshot version: {version}")
        return cls(
            stacks=tuple(NoteStack.from_dict(s) for s in data.get("stacks", [])),
            next_stack_id=data.get("next_stack_id", 0),
        )


@dataclass(frozen=True)
class Tie:
    """Derived link between two same-pitch notes on one voice."""
    from_slot: int
    to_slot: int
    voice: int
    fret: int


@dataclass(frozen=True)
class CursorPosition:
    """
    Transient edit/playback pointer (never stored in the Tab).

    Attributes:
        time_slot: Tick position
        voice: Voice/string index
    """
    time_slot: int = 0
    voice: int = 2

    def __post_init__(self):
        validate_voice(self.voice)
        if self.time_slot < 0:
            raise ValidationError(f"Cursor slot must be non-negative, got {self.time_slot}")
