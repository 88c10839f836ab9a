"""
Tab grid queries and pure mutation operations.

Every mutation returns a new Tab and leaves its input untouched. Stacks that
a mutation does not touch are shared between the old and new Tab. Each
mutation ends with repair_ties so no tie survives without both endpoints
holding the same fret.
"""
import logging
from dataclasses import replace
from typing import List, Optional, Union

from core.constants import validate_voice
from core.errors import TieConflictError, ValidationError
from core.models import Note, NoteStack, Tab, Tie
from core.timing import Duration, duration_ticks

logger = logging.getLogger(__name__)


# === Queries ===

def stack_at(tab: Tab, position: int) -> Optional[NoteStack]:
    """Find the stack at an exact tick position."""
    return tab.stack_at(position)


def notes_at(tab: Tab, position: int, voice: int) -> List[Note]:
    """
    Get the notes starting at an exact tick position on a voice.

    Returns:
        Single-element list, or empty list if the voice has no note there
    """
    stack = tab.stack_at(position)
    if stack is None:
        return []
    note = stack.note_for(voice)
    return [note] if note is not None else []


def all_ties(tab: Tab) -> List[Tie]:
    """Derive every tie by resolving the tied_to link of each note."""
    ties = []
    for stack in tab:
        for note in stack.notes:
            if note.tied_to is None:
                continue
            target = notes_at(tab, note.tied_to, note.voice)
            if target and target[0].fret == note.fret:
                ties.append(Tie(stack.position, note.tied_to, note.voice, note.fret))
    return ties


def next_available_slot(tab: Tab, from_position: int, voice: int,
                        duration: Union[Duration, str, None] = None) -> int:
    """
    Find the smallest tick >= from_position not covered by a note on voice.

    A note covers [position, position + duration). When a duration is given,
    the whole span starting at the returned tick must be free.
    """
    validate_voice(voice)
    span = duration_ticks(duration) if duration is not None else 1
    intervals = sorted(
        (s.position, s.position + n.duration.ticks)
        for s in tab for n in s.notes if n.voice == voice
    )

    candidate = max(0, from_position)
    moved = True
    while moved:
        moved = False
        for start, end in intervals:
            if start < candidate + span and candidate < end:
                candidate = end
                moved = True
    return candidate


def next_stack_position(tab: Tab, from_position: int) -> int:
    """
    Tab-key navigation.

    On an existing stack, jump forward by that stack's duration; elsewhere
    stay put.
    """
    stack = tab.stack_at(from_position)
    if stack is None:
        return from_position
    return from_position + stack.duration.ticks


def previous_stack_position(tab: Tab, from_position: int) -> int:
    """Shift+Tab navigation: closest stack before from_position, or stay put."""
    index = tab.index_of(from_position)
    if index == 0:
        return from_position
    return tab.stacks[index - 1].position


def stacks_in_range(tab: Tab, start: int, end: int) -> List[NoteStack]:
    """Stacks with start <= position < end."""
    return [s for s in tab if start <= s.position < end]


def sequence_length(tab: Tab) -> int:
    """End tick of the latest-ending stack (0 for an empty tab)."""
    return max((s.position + s.duration.ticks for s in tab), default=0)


def tied_duration_ticks(tab: Tab, position: int, voice: int) -> int:
    """
    Sounding length of the note at position followed through its tie chain.

    Measured from the note's start to the end of the last tied note, so a
    gap between tied stacks keeps sounding.
    """
    notes = notes_at(tab, position, voice)
    if not notes:
        return 0

    note = notes[0]
    while note.tied_to is not None:
        following = notes_at(tab, note.tied_to, voice)
        if not following or following[0].fret != note.fret:
            break
        note = following[0]
    return note.position + note.duration.ticks - position


def validate_tab(tab: Tab) -> List[str]:
    """
    Check the invariants the model cannot enforce locally.

    Returns:
        List of human-readable violations (empty when the tab is consistent)
    """
    errors = []

    for stack in tab:
        for note in stack.notes:
            if note.tied_to is None:
                continue
            target = notes_at(tab, note.tied_to, note.voice)
            if not target:
                errors.append(
                    f"Tie from {stack.position} on voice {note.voice} points to missing note at {note.tied_to}")
            elif target[0].fret != note.fret:
                errors.append(
                    f"Tie from {stack.position} on voice {note.voice} joins different frets")

    return errors


# === Mutations ===

def _with_stack(tab: Tab, index: int, stack: Optional[NoteStack]) -> Tab:
    """Replace (or drop, when stack is None) the stack at index."""
    stacks = list(tab.stacks)
    if stack is None:
        stacks.pop(index)
    else:
        stacks[index] = stack
    return replace(tab, stacks=tuple(stacks))


def _replace_note(stack: NoteStack, note: Note) -> NoteStack:
    """Swap a voice's note in place without touching the stack duration."""
    return replace(stack, notes=tuple(note if n.voice == note.voice else n for n in stack.notes))


def repair_ties(tab: Tab) -> Tab:
    """
    Drop every tie whose target is missing, a rest, or a different fret.

    Returns the same Tab object when nothing needed repair.
    """
    stacks = list(tab.stacks)
    changed = False

    for index, stack in enumerate(stacks):
        repaired = stack
        for note in stack.notes:
            if note.tied_to is None:
                continue
            target = notes_at(tab, note.tied_to, note.voice)
            if target and not target[0].is_rest and target[0].fret == note.fret:
                continue
            logger.debug("Dropping tie %d -> %d on voice %d", stack.position, note.tied_to, note.voice)
            repaired = _replace_note(repaired, replace(note, tied_to=None))
        if repaired is not stack:
            stacks[index] = repaired
            changed = True

    if not changed:
        return tab
    return replace(tab, stacks=tuple(stacks))


def insert_note(tab: Tab, note: Note) -> Tab:
    """
    Insert a note at its position, replacing any note on the same voice.

    If no stack exists at the position a new one is created holding only
    this note. The stack takes the inserted note's duration.
    """
    index = tab.index_of(note.position)
    existing = tab.stack_at(note.position)

    if existing is not None:
        new_tab = _with_stack(tab, index, existing.with_note(note))
    else:
        stack = NoteStack(
            id=f"stack-{tab.next_stack_id}",
            position=note.position,
            duration=note.duration,
            notes=(note,),
        )
        stacks = tab.stacks[:index] + (stack,) + tab.stacks[index:]
        new_tab = Tab(stacks=stacks, next_stack_id=tab.next_stack_id + 1)

    return repair_ties(new_tab)


def remove_note(tab: Tab, note: Note) -> Tab:
    """
    Remove the note on note.voice at note.position.

    An emptied stack is removed with it, and ties into the removed note are
    dropped. No-op when there is no such note.
    """
    existing = tab.stack_at(note.position)
    if existing is None or existing.note_for(note.voice) is None:
        return tab

    index = tab.index_of(note.position)
    new_tab = _with_stack(tab, index, existing.without_voice(note.voice))
    return repair_ties(new_tab)


def create_tie(tab: Tab, from_slot: int, to_slot: int, voice: int) -> Tab:
    """
    Tie the note at from_slot into the note at to_slot on voice.

    Raises:
        ValidationError: If voice is out of range
        TieConflictError: If the slots are out of order, either endpoint is
            missing or a rest, or the frets differ
    """
    validate_voice(voice)
    if from_slot >= to_slot:
        raise TieConflictError(f"Tie must go forward in time ({from_slot} -> {to_slot})")

    from_notes = notes_at(tab, from_slot, voice)
    to_notes = notes_at(tab, to_slot, voice)
    if not from_notes or not to_notes:
        raise TieConflictError(f"No note to tie on voice {voice} at {from_slot if not from_notes else to_slot}")

    from_note, to_note = from_notes[0], to_notes[0]
    if from_note.is_rest or to_note.is_rest:
        raise TieConflictError("Rests cannot be tied")
    if from_note.fret != to_note.fret:
        raise TieConflictError(
            f"Cannot tie fret {from_note.fret} to fret {to_note.fret} on voice {voice}")

    if from_note.tied_to == to_slot:
        return tab

    index = tab.index_of(from_slot)
    stack = tab.stacks[index]
    return _with_stack(tab, index, _replace_note(stack, replace(from_note, tied_to=to_slot)))


def remove_tie(tab: Tab, from_slot: int, to_slot: int, voice: int) -> Tab:
    """Clear the tie from_slot -> to_slot on voice; no-op if it does not exist."""
    from_notes = notes_at(tab, from_slot, voice)
    if not from_notes or from_notes[0].tied_to != to_slot:
        return tab

    index = tab.index_of(from_slot)
    stack = tab.stacks[index]
    return _with_stack(tab, index, _replace_note(stack, replace(from_notes[0], tied_to=None)))


def has_tie(tab: Tab, from_slot: int, to_slot: int, voice: int) -> bool:
    """Check whether a tie from_slot -> to_slot exists on voice."""
    return any(t.from_slot == from_slot and t.to_slot == to_slot and t.voice == voice
               for t in all_ties(tab))


def _find_stack_index(tab: Tab, stack_id: str) -> int:
    for index, stack in enumerate(tab.stacks):
        if stack.id == stack_id:
            return index
    raise ValidationError(f"No stack with id {stack_id}")


def update_stack_duration(tab: Tab, stack_id: str, duration: Union[Duration, str]) -> Tab:
    """Change the playback length of a stack and all of its notes."""
    duration = Duration.parse(duration)
    index = _find_stack_index(tab, stack_id)
    stack = tab.stacks[index]
    notes = tuple(replace(n, duration=duration) for n in stack.notes)
    return _with_stack(tab, index, replace(stack, duration=duration, notes=notes))


def remove_stack(tab: Tab, stack_id: str) -> Tab:
    """Remove a whole stack, dropping ties that pointed into it."""
    index = _find_stack_index(tab, stack_id)
    return repair_ties(_with_stack(tab, index, None))


def move_stack(tab: Tab, stack_id: str, new_position: int) -> Tab:
    """
    Move a stack to a new tick position.

    Raises:
        ValidationError: If another stack already occupies new_position
    """
    index = _find_stack_index(tab, stack_id)
    stack = tab.stacks[index]
    if new_position == stack.position:
        return tab

    occupant = tab.stack_at(new_position)
    if occupant is not None:
        raise ValidationError(f"Position {new_position} is already occupied by {occupant.id}")

    # Outgoing ties that would now point backwards are dropped
    notes = tuple(
        replace(n, position=new_position,
                tied_to=n.tied_to if n.tied_to is not None and n.tied_to > new_position else None)
        for n in stack.notes
    )
    moved = replace(stack, position=new_position, notes=notes)

    remaining = tab.stacks[:index] + tab.stacks[index + 1:]
    positions = [s.position for s in remaining]
    insert_at = sum(1 for p in positions if p < new_position)
    stacks = remaining[:insert_at] + (moved,) + remaining[insert_at:]
    return repair_ties(replace(tab, stacks=stacks))
