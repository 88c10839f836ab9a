"""
Playback scheduler.

Walks a tab snapshot from the cursor and turns each note stack into trigger
requests carrying absolute times on a monotonic clock. Requests are issued a
short look-ahead before they are due, and every time is computed from a
fixed anchor (tick, wall time) instead of accumulating note-to-note, so long
sequences do not drift.

Lifecycle: IDLE -> (COUNTING_IN ->) PLAYING -> IDLE, on natural completion
or stop(). Only one run is active at a time.
"""
import logging
import queue
import threading
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from core.constants import pitch_of
from core.errors import SchedulerStateError, StrumError, SynthTriggerError
from core.models import CursorPosition, Note, NoteStack, Tab
from core.operations import all_ties, tied_duration_ticks
from core.settings import PlaybackConfig
from core.timing import ticks_to_seconds
from audio import transport as actions
from audio.clock import Clock, MonotonicClock
from audio.output import AudioOutput, PlaybackListener
from audio.transport import TransportStore

logger = logging.getLogger(__name__)


class PlaybackState(Enum):
    """Scheduler run states."""
    IDLE = "idle"
    COUNTING_IN = "counting_in"
    PLAYING = "playing"


class PlaybackScheduler:
    """
    Tick-to-wall-clock scheduler for one tab snapshot at a time.

    The scheduler never mutates the tab it is given and never keeps its own
    tempo: it samples the transport store before each stack. A tempo change
    only affects stacks not yet issued.
    """

    def __init__(self, output: AudioOutput,
                 listener: Optional[PlaybackListener] = None,
                 transport: Optional[TransportStore] = None,
                 clock: Optional[Clock] = None,
                 config: Optional[PlaybackConfig] = None):
        """
        Args:
            output: Audio output collaborator receiving trigger requests
            listener: UI notifications (defaults to no-ops)
            transport: Transport store supplying tempo and loop points
            clock: Time source (defaults to the monotonic clock)
            config: Look-ahead, preview and count-in defaults
        """
        self.output = output
        self.listener = listener if listener is not None else PlaybackListener()
        self.transport = transport if transport is not None else TransportStore()
        self.clock = clock if clock is not None else MonotonicClock()
        self.config = config if config is not None else PlaybackConfig()

        self._state = PlaybackState.IDLE
        self._state_lock = threading.Lock()
        # Serialises play_from and stop so the check-stop-start sequence is atomic
        self._control_lock = threading.RLock()
        self._cancel = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._preview_timer: Optional[threading.Timer] = None

        # One notifier thread keeps UI callbacks ordered and off the playback thread
        self._notifications: queue.Queue = queue.Queue()
        self._closed = False
        self._notifier = threading.Thread(target=self._notification_loop,
                                          name="playback-notify", daemon=True)
        self._notifier.start()

    # === Public API ===

    @property
    def state(self) -> PlaybackState:
        with self._state_lock:
            return self._state

    @property
    def is_playing(self) -> bool:
        return self.state is not PlaybackState.IDLE

    def play(self, tab: Tab, **kwargs):
        """Start playback from tick 0."""
        self.play_from(tab, CursorPosition(time_slot=0), **kwargs)

    def play_from(self, tab: Tab, cursor: Optional[CursorPosition] = None,
                  tempo: Optional[float] = None,
                  count_in_enabled: Optional[bool] = None,
                  time_signature_numerator: Optional[int] = None):
        """
        Start playback of tab from the cursor.

        Args:
            tab: Tab snapshot (borrowed, never mutated)
            cursor: Start position (defaults to tick 0)
            tempo: Tempo to set on the transport before starting
            count_in_enabled: Play one measure of clicks first
            time_signature_numerator: Clicks in the count-in
        """
        with self._control_lock:
            self._start(tab, cursor, tempo, count_in_enabled, time_signature_numerator)

    def _start(self, tab, cursor, tempo, count_in_enabled, time_signature_numerator):
        if self.is_playing:
            condition = SchedulerStateError("Playback requested while already playing")
            logger.warning("[PLAYBACK] %s; stopping previous run", condition)
            self._stop(clear_visual_feedback=False)

        if count_in_enabled is None:
            count_in_enabled = self.config.count_in_enabled
        if time_signature_numerator is None:
            time_signature_numerator = self.config.time_signature[0]

        start_tick = cursor.time_slot if cursor is not None else 0

        if tempo is not None:
            self.transport.dispatch(actions.set_tempo(tempo))
        self.transport.dispatch(actions.load_sequence(tab))
        self.transport.dispatch(actions.set_position(start_tick))
        self.transport.dispatch(actions.play())

        cancel = threading.Event()
        with self._state_lock:
            self._cancel = cancel
            self._state = PlaybackState.COUNTING_IN if count_in_enabled else PlaybackState.PLAYING

        logger.info("[PLAYBACK] Starting from tick %d at %.1f BPM",
                    start_tick, self.transport.state.tempo)
        self._notify(self.listener.on_playback_state_change, True)

        anchor_time = self.clock.now()
        self._thread = threading.Thread(
            target=self._run,
            args=(tab, start_tick, anchor_time, count_in_enabled, time_signature_numerator, cancel),
            name="playback-worker",
            daemon=True,
        )
        self._thread.start()

    def stop(self, clear_visual_feedback: bool = True):
        """
        Stop playback, cancelling every request not yet fired.

        Args:
            clear_visual_feedback: Also clear note highlights and the playhead
        """
        if threading.current_thread() is self._thread:
            # A worker stopping itself must not block on a play_from that is joining it
            self._stop(clear_visual_feedback)
            return
        with self._control_lock:
            self._stop(clear_visual_feedback)

    def _stop(self, clear_visual_feedback: bool):
        with self._state_lock:
            was_active = self._state is not PlaybackState.IDLE
            self._cancel.set()
            self._state = PlaybackState.IDLE
            thread = self._thread

        try:
            self.output.stop_all()
        except Exception:
            logger.exception("[PLAYBACK] Output failed to stop")

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)

        self.transport.dispatch(actions.stop())

        if was_active:
            logger.info("[PLAYBACK] Stopped")
            self._notify(self.listener.on_playback_state_change, False)
        if clear_visual_feedback:
            self._notify(self.listener.on_notes_playing, [])
            self._notify(self.listener.on_playhead_position_change, None)

    def preview_note(self, fret: int, voice: int, duration: Optional[float] = None) -> bool:
        """
        Sound a single note immediately (cursor preview).

        Returns:
            False if the note could not be previewed
        """
        duration = duration if duration is not None else self.config.preview_duration
        try:
            pitch = pitch_of(fret, voice)
            self.output.trigger_note(pitch, duration, self.clock.now(), voice)
        except StrumError as e:
            logger.warning("[PREVIEW] fret %s voice %s rejected: %s", fret, voice, e)
            return False
        except Exception as e:
            logger.error("[PREVIEW] %s", SynthTriggerError(f"Failed to preview {fret}/{voice}: {e}"))
            return False

        self._notify(self.listener.on_notes_playing, [(fret, voice)])
        if self._preview_timer is not None:
            self._preview_timer.cancel()
        self._preview_timer = threading.Timer(duration, self._end_preview)
        self._preview_timer.daemon = True
        self._preview_timer.start()
        return True

    def _end_preview(self):
        """Clear the preview highlight unless a run now owns note feedback."""
        if not self.is_playing:
            self._notify(self.listener.on_notes_playing, [])

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the current run to end and pending notifications to flush.

        Returns:
            True if the run finished within timeout
        """
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            if thread.is_alive():
                return False
        if self._closed:
            return True
        flushed = threading.Event()
        self._notifications.put((flushed.set, ()))
        return flushed.wait(timeout)

    def close(self):
        """Stop playback and release the notification worker."""
        if self._preview_timer is not None:
            self._preview_timer.cancel()
        self.stop(clear_visual_feedback=False)
        self._closed = True
        self._notifications.put(None)
        self._notifier.join(timeout=1.0)

    # === Worker ===

    def _run(self, tab: Tab, start_tick: int, anchor_time: float,
             count_in_enabled: bool, numerator: int, cancel: threading.Event):
        try:
            if count_in_enabled:
                anchor_time = self._count_in(anchor_time, numerator, cancel)
                if anchor_time is None:
                    return
                with self._state_lock:
                    if cancel.is_set():
                        return
                    self._state = PlaybackState.PLAYING

            if self._play_sequence(tab, start_tick, anchor_time, cancel):
                self._finish(cancel)
        except Exception:
            logger.exception("[PLAYBACK] Worker failed")
            self._finish(cancel)

    def _count_in(self, start_time: float, numerator: int,
                  cancel: threading.Event) -> Optional[float]:
        """
        Issue one measure of clicks, accenting the first.

        Returns:
            Wall time the main sequence starts at, or None if cancelled
        """
        seconds_per_beat = 60.0 / self.transport.state.tempo

        for beat in range(numerator):
            at = start_time + beat * seconds_per_beat
            try:
                self.output.trigger_metronome_click(beat == 0, at)
            except Exception as e:
                logger.error("[COUNT-IN] %s", SynthTriggerError(f"Click {beat} failed: {e}"))

        for beat in range(numerator):
            if not self.clock.wait_until(start_time + beat * seconds_per_beat, cancel):
                return None
            self._notify(self.listener.on_count_in_beat, beat, numerator)

        end_time = start_time + numerator * seconds_per_beat
        if not self.clock.wait_until(end_time, cancel):
            return None
        return end_time

    def _loop_bounds(self) -> Optional[Tuple[int, int]]:
        state = self.transport.state
        if state.has_loop:
            return state.loop_start, state.loop_end
        return None

    def _play_sequence(self, tab: Tab, start_tick: int, anchor_time: float,
                       cancel: threading.Event) -> bool:
        """
        Issue every stack from start_tick on.

        Returns:
            True on natural completion, False if cancelled
        """
        lookahead = self.config.lookahead_seconds
        tie_sources: Dict[Tuple[int, int], int] = {
            (t.to_slot, t.voice): t.from_slot for t in all_ties(tab)
        }

        anchor_tick = start_tick
        tempo = self.transport.state.tempo
        segment_start = start_tick

        while True:
            loop = self._loop_bounds()
            segment_end = loop[1] if loop is not None and segment_start < loop[1] else None
            stacks = [s for s in tab
                      if s.position >= segment_start
                      and (segment_end is None or s.position < segment_end)]

            previous_tick = anchor_tick
            end_time = anchor_time
            for stack in stacks:
                sampled = self.transport.state.tempo
                if sampled != tempo:
                    # Re-anchor at the last issued stack; issued requests keep their times
                    anchor_time += ticks_to_seconds(previous_tick - anchor_tick, tempo)
                    anchor_tick = previous_tick
                    tempo = sampled
                    logger.debug("[PLAYBACK] Tempo now %.1f BPM from tick %d", tempo, anchor_tick)

                at = anchor_time + ticks_to_seconds(stack.position - anchor_tick, tempo)
                if not self.clock.wait_until(at - lookahead, cancel):
                    return False

                self._issue_stack(tab, stack, at, tempo, segment_start, tie_sources, cancel)
                previous_tick = stack.position
                end_time = max(end_time, at + ticks_to_seconds(stack.duration.ticks, tempo))

            if segment_end is None:
                return self.clock.wait_until(end_time, cancel)

            # Jump back to the loop start at the loop end's wall time
            anchor_time += ticks_to_seconds(segment_end - anchor_tick, tempo)
            anchor_tick = loop[0]
            segment_start = loop[0]
            if not self.clock.wait_until(anchor_time - lookahead, cancel):
                return False
            logger.debug("[LOOP] Looping back to tick %d", anchor_tick)

    def _issue_stack(self, tab: Tab, stack: NoteStack, at: float, tempo: float,
                     segment_start: int, tie_sources: Dict[Tuple[int, int], int],
                     cancel: threading.Event):
        if cancel.is_set():
            return

        self._notify(self.listener.on_playhead_position_change, stack.position)
        self.transport.dispatch(actions.transport_position_update(stack.position))

        sounding = []
        for note in stack.playable_notes():
            if cancel.is_set():
                return
            sounding.append((note.fret, note.voice))

            # Tied continuations keep sounding from the tie start
            source = tie_sources.get((stack.position, note.voice))
            if source is not None and source >= segment_start:
                continue

            ticks = tied_duration_ticks(tab, stack.position, note.voice)
            self._trigger(note, ticks_to_seconds(ticks, tempo), at)

        self._notify(self.listener.on_notes_playing, sounding)

    def _trigger(self, note: Note, duration_seconds: float, at: float):
        """Send one trigger request; a failure is logged and never aborts the run."""
        try:
            self.output.trigger_note(note.pitch, duration_seconds, at, note.voice)
        except Exception as e:
            error = SynthTriggerError(
                f"Failed to trigger {note.pitch} on voice {note.voice} at tick {note.position}: {e}")
            logger.error("[PLAYBACK] %s", error)

    def _finish(self, cancel: threading.Event):
        with self._state_lock:
            if cancel.is_set():
                # stop() already handled the transition
                return
            cancel.set()
            self._state = PlaybackState.IDLE

        self.transport.dispatch(actions.stop())
        logger.info("[PLAYBACK] Finished")
        self._notify(self.listener.on_playhead_position_change, None)
        self._notify(self.listener.on_notes_playing, [])
        self._notify(self.listener.on_playback_state_change, False)

    def _notify(self, callback: Callable, *args):
        """Queue a UI notification for the notifier thread."""
        if not self._closed:
            self._notifications.put((callback, args))

    def _notification_loop(self):
        while True:
            item = self._notifications.get()
            if item is None:
                break
            callback, args = item
            try:
                callback(*args)
            except Exception:
                logger.exception("[PLAYBACK] Listener %s failed", getattr(callback, "__name__", callback))
