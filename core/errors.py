"""
Error taxonomy for strumtab.

None of these are fatal to the process. Callers at the edit, transport and
playback boundaries catch them and report "this operation did not happen".
"""


class StrumError(Exception):
    """Base class for all strumtab errors."""


class ValidationError(StrumError, ValueError):
    """Out-of-range fret, voice, duration, tempo or position."""


class TieConflictError(StrumError):
    """A tie request whose endpoints do not share voice and pitch."""


class SynthTriggerError(StrumError):
    """The audio output collaborator failed to trigger a single note."""


class SchedulerStateError(StrumError):
    """Playback requested while another run was active."""
