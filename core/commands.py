"""
Command pattern for undo/redo support.

All tab edits go through commands so the editing session can:
- Undo/redo any edit
- Report rejected edits without touching the working tab
- Hand an immutable snapshot to playback at any time
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional, List

from core.errors import StrumError
from core.models import CursorPosition, Note, Tab
from core.operations import (
    create_tie,
    has_tie,
    insert_note,
    next_stack_position,
    previous_stack_position,
    remove_note,
    remove_tie,
)

logger = logging.getLogger(__name__)


class EditSession:
    """
    Owner of the working tab and the edit cursor.

    Playback never reads the working tab directly: it receives snapshot(),
    so edits made during playback only take effect on the next run.
    """

    def __init__(self, tab: Optional[Tab] = None):
        """Initialize with an existing tab or an empty one."""
        self._tab: Tab = tab if tab is not None else Tab()
        self._cursor = CursorPosition()
        self._is_dirty = False

    @property
    def tab(self) -> Tab:
        return self._tab

    def set_tab(self, tab: Tab):
        self._tab = tab

    def snapshot(self) -> Tab:
        """Immutable view of the working tab for a playback run."""
        return self._tab

    @property
    def cursor(self) -> CursorPosition:
        return self._cursor

    def move_cursor(self, time_slot: int, voice: Optional[int] = None):
        """Place the cursor; time slots below zero are clamped to zero."""
        self._cursor = CursorPosition(
            time_slot=max(0, time_slot),
            voice=self._cursor.voice if voice is None else voice,
        )

    def advance_cursor(self):
        """Jump past the stack under the cursor (Tab key)."""
        self.move_cursor(next_stack_position(self._tab, self._cursor.time_slot))

    def retreat_cursor(self):
        """Jump back to the previous stack (Shift+Tab)."""
        self.move_cursor(previous_stack_position(self._tab, self._cursor.time_slot))

    def is_dirty(self) -> bool:
        """Check if the tab has unsaved changes."""
        return self._is_dirty

    def mark_dirty(self):
        self._is_dirty = True

    def mark_clean(self):
        self._is_dirty = False


class Command(ABC):
    """Base class for all commands."""

    def __init__(self):
        self._previous_tab: Optional[Tab] = None

    @abstractmethod
    def apply(self, tab: Tab) -> Tab:
        """
        Compute the edited tab.

        Raises:
            StrumError: If the edit is rejected
        """
        raise NotImplementedError()

    def execute(self, session: EditSession) -> EditSession:
        """Apply the command to the session, remembering the previous tab."""
        new_tab = self.apply(session.tab)
        self._previous_tab = session.tab
        session.set_tab(new_tab)
        session.mark_dirty()
        return session

    def undo(self, session: EditSession) -> EditSession:
        """Restore the tab from before execute."""
        if self._previous_tab is None:
            raise ValueError("Command has not been executed yet")

        session.set_tab(self._previous_tab)
        session.mark_dirty()
        return session

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable command description for UI."""
        raise NotImplementedError()


class InsertNoteCommand(Command):
    """Command to insert (or replace) a note at its position."""

    def __init__(self, note: Note):
        super().__init__()
        self.note = note

    def apply(self, tab: Tab) -> Tab:
        return insert_note(tab, self.note)

    @property
    def description(self) -> str:
        return "Add Rest" if self.note.is_rest else "Add Note"


class RemoveNoteCommand(Command):
    """Command to remove a note from its stack."""

    def __init__(self, note: Note):
        super().__init__()
        self.note = note

    def apply(self, tab: Tab) -> Tab:
        return remove_note(tab, self.note)

    @property
    def description(self) -> str:
        return "Delete Note"


class CreateTieCommand(Command):
    """Command to tie two same-pitch notes on one voice."""

    def __init__(self, from_slot: int, to_slot: int, voice: int):
        super().__init__()
        self.from_slot = from_slot
        self.to_slot = to_slot
        self.voice = voice

    def apply(self, tab: Tab) -> Tab:
        return create_tie(tab, self.from_slot, self.to_slot, self.voice)

    @property
    def description(self) -> str:
        return "Create Tie"


class RemoveTieCommand(Command):
    """Command to remove a tie between two notes."""

    def __init__(self, from_slot: int, to_slot: int, voice: int):
        super().__init__()
        self.from_slot = from_slot
        self.to_slot = to_slot
        self.voice = voice

    def apply(self, tab: Tab) -> Tab:
        return remove_tie(tab, self.from_slot, self.to_slot, self.voice)

    @property
    def description(self) -> str:
        return "Remove Tie"


class ToggleTieCommand(Command):
    """Command bound to the tie key: removes an existing tie, creates one otherwise."""

    def __init__(self, from_slot: int, to_slot: int, voice: int):
        super().__init__()
        self.from_slot = min(from_slot, to_slot)
        self.to_slot = max(from_slot, to_slot)
        self.voice = voice
        self._removed = False

    def apply(self, tab: Tab) -> Tab:
        self._removed = has_tie(tab, self.from_slot, self.to_slot, self.voice)
        if self._removed:
            return remove_tie(tab, self.from_slot, self.to_slot, self.voice)
        return create_tie(tab, self.from_slot, self.to_slot, self.voice)

    @property
    def description(self) -> str:
        return "Remove Tie" if self._removed else "Create Tie"


class CommandHistory:
    """Manages undo/redo command history."""

    def __init__(self, session: EditSession, max_history: int = 100):
        """
        Args:
            session: Editing session to operate on
            max_history: Maximum number of commands to keep
        """
        self.session = session
        self.max_history = max_history
        self._undo_stack: List[Command] = []
        self._redo_stack: List[Command] = []

    def execute(self, command: Command) -> bool:
        """
        Execute command and add to history.

        Returns:
            False if the edit was rejected (session left unchanged)
        """
        try:
            command.execute(self.session)
        except StrumError as e:
            logger.warning("[EDIT] %s rejected: %s", command.description, e)
            return False

        self._undo_stack.append(command)

        # Limit history size
        if len(self._undo_stack) > self.max_history:
            self._undo_stack.pop(0)

        # Clear redo stack when new command is executed
        self._redo_stack.clear()
        return True

    def undo(self) -> bool:
        """Undo last command. Returns True if successful."""
        if not self.can_undo():
            return False

        command = self._undo_stack.pop()
        command.undo(self.session)
        self._redo_stack.append(command)
        return True

    def redo(self) -> bool:
        """Redo last undone command. Returns True if successful."""
        if not self.can_redo():
            return False

        command = self._redo_stack.pop()
        try:
            command.execute(self.session)
        except StrumError as e:
            logger.warning("[EDIT] Redo of %s rejected: %s", command.description, e)
            return False
        self._undo_stack.append(command)
        return True

    def can_undo(self) -> bool:
        """Check if undo is available."""
        return len(self._undo_stack) > 0

    def can_redo(self) -> bool:
        """Check if redo is available."""
        return len(self._redo_stack) > 0

    def clear(self):
        """Clear all command history."""
        self._undo_stack.clear()
        self._redo_stack.clear()

    def get_undo_description(self) -> Optional[str]:
        """Get description of command that would be undone."""
        if self.can_undo():
            return self._undo_stack[-1].description
        return None

    def get_redo_description(self) -> Optional[str]:
        """Get description of command that would be redone."""
        if self.can_redo():
            return self._redo_stack[-1].description
        return None
