import logging
import threading

import pytest

from audio import transport as actions
from audio.output import RecordingOutput
from audio.scheduler import PlaybackScheduler, PlaybackState
from audio.transport import TransportStore
from core.models import CursorPosition, Note, Tab
from core.operations import create_tie

from conftest import GatedClock, build_tab, wait_for


def offsets(requests, start):
    return [r.at_wall_time - start for r in requests]


def test_notes_scheduled_at_tick_times(scale_tab, output, listener, clock):
    scheduler = PlaybackScheduler(output, listener, clock=clock)
    start = clock.now()

    scheduler.play_from(scale_tab, CursorPosition(0), tempo=120)
    assert scheduler.wait(timeout=5)

    assert [n.pitch for n in output.notes] == ["D4", "F#4", "A4"]
    assert offsets(output.notes, start) == pytest.approx([0.0, 0.5, 1.0])
    assert [n.duration_seconds for n in output.notes] == pytest.approx([0.5, 0.5, 0.5])
    assert [n.voice_channel for n in output.notes] == [2, 2, 2]
    assert output.clicks == []

    assert listener.of("playhead") == [0, 960, 1920, None]
    assert listener.of("state") == [True, False]
    assert listener.of("notes")[:3] == [[(0, 2)], [(2, 2)], [(4, 2)]]
    assert listener.of("notes")[-1] == []

    assert scheduler.state is PlaybackState.IDLE
    assert clock.now() - start == pytest.approx(1.5)


def test_play_from_cursor_skips_earlier_stacks(scale_tab, output, listener, clock):
    scheduler = PlaybackScheduler(output, listener, clock=clock)
    start = clock.now()

    scheduler.play_from(scale_tab, CursorPosition(960))
    scheduler.wait(timeout=5)

    assert [n.pitch for n in output.notes] == ["F#4", "A4"]
    assert offsets(output.notes, start) == pytest.approx([0.0, 0.5])


def test_count_in_precedes_sequence(scale_tab, output, listener, clock):
    scheduler = PlaybackScheduler(output, listener, clock=clock)
    start = clock.now()

    scheduler.play_from(scale_tab, tempo=120, count_in_enabled=True, time_signature_numerator=4)
    scheduler.wait(timeout=5)

    assert offsets(output.clicks, start) == pytest.approx([0.0, 0.5, 1.0, 1.5])
    assert [c.accented for c in output.clicks] == [True, False, False, False]
    assert offsets(output.notes, start) == pytest.approx([2.0, 2.5, 3.0])

    assert listener.of("count_in") == [(0, 4), (1, 4), (2, 4), (3, 4)]
    kinds = [kind for kind, _ in listener.events]
    last_beat = len(kinds) - 1 - kinds[::-1].index("count_in")
    assert last_beat < kinds.index("playhead")


def test_count_in_follows_time_signature(scale_tab, output, clock):
    scheduler = PlaybackScheduler(output, clock=clock)
    scheduler.play_from(scale_tab, tempo=60, count_in_enabled=True, time_signature_numerator=3)
    scheduler.wait(timeout=5)

    assert len(output.clicks) == 3
    assert output.notes[0].at_wall_time - output.clicks[0].at_wall_time == pytest.approx(3.0)


def test_rests_advance_playhead_silently(output, listener, clock):
    tab = build_tab(Note.rest(0, 0), Note.fretted(0, 960, 2))
    scheduler = PlaybackScheduler(output, listener, clock=clock)
    start = clock.now()

    scheduler.play_from(tab)
    scheduler.wait(timeout=5)

    assert [n.pitch for n in output.notes] == ["F#3"]
    assert offsets(output.notes, start) == pytest.approx([0.5])
    assert listener.of("playhead") == [0, 960, None]
    assert listener.of("notes")[0] == []


def test_chords_trigger_every_voice(output, clock):
    tab = build_tab(Note.fretted(0, 0, 0), Note.fretted(1, 0, 0), Note.fretted(2, 0, 0))
    scheduler = PlaybackScheduler(output, clock=clock)
    scheduler.play_from(tab)
    scheduler.wait(timeout=5)

    assert sorted((n.voice_channel, n.pitch) for n in output.notes) == [
        (0, "D3"), (1, "A4"), (2, "D4")]
    assert len({n.at_wall_time for n in output.notes}) == 1


def test_tied_notes_sound_once(output, listener, clock):
    tab = build_tab(Note.fretted(1, 0, 3), Note.fretted(1, 960, 3), Note.fretted(1, 1920, 4))
    tab = create_tie(tab, 0, 960, 1)
    scheduler = PlaybackScheduler(output, listener, clock=clock)

    scheduler.play_from(tab)
    scheduler.wait(timeout=5)

    assert [n.pitch for n in output.notes] == ["D5", "E5"]
    assert [n.duration_seconds for n in output.notes] == pytest.approx([1.0, 0.5])
    assert listener.of("notes")[1] == [(3, 1)]


def test_starting_inside_a_tie_sounds_the_continuation(output, clock):
    tab = create_tie(build_tab(Note.fretted(1, 0, 3), Note.fretted(1, 960, 3)), 0, 960, 1)
    scheduler = PlaybackScheduler(output, clock=clock)

    scheduler.play_from(tab, CursorPosition(960))
    scheduler.wait(timeout=5)

    assert [n.pitch for n in output.notes] == ["D5"]


def test_tie_across_a_gap_sounds_until_the_tied_note_ends(output, clock):
    tab = build_tab(Note.fretted(1, 0, 3), Note.fretted(1, 1920, 3), Note.fretted(0, 960, 0))
    tab = create_tie(tab, 0, 1920, 1)
    scheduler = PlaybackScheduler(output, clock=clock)

    start = clock.now()
    scheduler.play_from(tab)
    scheduler.wait(timeout=5)

    d5 = [n for n in output.notes if n.pitch == "D5"]
    assert len(d5) == 1
    assert d5[0].at_wall_time - start == pytest.approx(0.0)
    assert d5[0].duration_seconds == pytest.approx(1.5)


def test_trigger_failure_does_not_abort_run(scale_tab, clock, caplog):
    class FlakyOutput(RecordingOutput):
        def trigger_note(self, pitch, duration_seconds, at_wall_time, voice_channel):
            if pitch == "F#4":
                raise RuntimeError("synth fell over")
            super().trigger_note(pitch, duration_seconds, at_wall_time, voice_channel)

    output = FlakyOutput()
    scheduler = PlaybackScheduler(output, clock=clock)

    with caplog.at_level(logging.ERROR):
        scheduler.play_from(scale_tab)
        scheduler.wait(timeout=5)

    assert [n.pitch for n in output.notes] == ["D4", "A4"]
    assert any("F#4" in r.getMessage() for r in caplog.records if r.levelno == logging.ERROR)
    assert scheduler.state is PlaybackState.IDLE


def test_stop_cancels_pending_notes(scale_tab, output, listener):
    clock = GatedClock(limit=100.3)
    scheduler = PlaybackScheduler(output, listener, clock=clock)

    scheduler.play_from(scale_tab)
    wait_for(lambda: len(output.notes) == 1)
    scheduler.stop()
    scheduler.wait(timeout=5)

    assert [n.pitch for n in output.notes] == ["D4"]
    assert output.stop_count == 1
    assert scheduler.state is PlaybackState.IDLE
    assert listener.of("state") == [True, False]
    assert listener.of("notes")[-1] == []
    assert listener.of("playhead")[-1] is None


def test_stop_keeping_visual_feedback(scale_tab, output, listener):
    clock = GatedClock(limit=100.3)
    scheduler = PlaybackScheduler(output, listener, clock=clock)

    scheduler.play_from(scale_tab)
    wait_for(lambda: len(output.notes) == 1)
    scheduler.stop(clear_visual_feedback=False)
    scheduler.wait(timeout=5)

    assert listener.of("playhead") == [0]
    assert listener.of("notes") == [[(0, 2)]]


def test_stop_during_count_in(scale_tab, output, listener):
    clock = GatedClock(limit=100.6)
    scheduler = PlaybackScheduler(output, listener, clock=clock)

    scheduler.play_from(scale_tab, count_in_enabled=True)
    wait_for(lambda: scheduler.state is PlaybackState.COUNTING_IN and len(output.clicks) == 4)
    scheduler.stop()
    scheduler.wait(timeout=5)

    assert output.notes == []
    assert len(listener.of("count_in")) <= 2
    assert scheduler.state is PlaybackState.IDLE


def test_restart_replaces_active_run(scale_tab, output, listener):
    clock = GatedClock(limit=100.3)
    scheduler = PlaybackScheduler(output, listener, clock=clock)

    scheduler.play_from(scale_tab)
    wait_for(lambda: len(output.notes) == 1)

    clock.limit = float("inf")
    scheduler.play_from(build_tab(Note.fretted(0, 0, 0)))
    scheduler.wait(timeout=5)

    assert [n.pitch for n in output.notes] == ["D4", "D3"]
    assert output.stop_count == 1
    assert listener.of("state") == [True, False, True, False]


def test_concurrent_play_from_leaves_one_worker(scale_tab, output, listener):
    clock = GatedClock(limit=100.3)
    scheduler = PlaybackScheduler(output, listener, clock=clock)
    barrier = threading.Barrier(2)

    def start():
        barrier.wait()
        scheduler.play_from(scale_tab)

    callers = [threading.Thread(target=start) for _ in range(2)]
    for caller in callers:
        caller.start()
    for caller in callers:
        caller.join(timeout=5)

    workers = [t for t in threading.enumerate() if t.name == "playback-worker" and t.is_alive()]
    assert workers == [scheduler._thread]

    scheduler.stop()
    scheduler.wait(timeout=5)
    assert not scheduler._thread.is_alive()
    assert listener.of("state") == [True, False, True, False]


def test_tempo_change_is_not_retroactive(clock):
    transport = TransportStore()

    class TempoChangingOutput(RecordingOutput):
        def trigger_note(self, pitch, duration_seconds, at_wall_time, voice_channel):
            super().trigger_note(pitch, duration_seconds, at_wall_time, voice_channel)
            if len(self.notes) == 2:
                transport.dispatch(actions.set_tempo(60))

    output = TempoChangingOutput()
    tab = build_tab(*(Note.fretted(2, i * 960, 0) for i in range(4)))
    scheduler = PlaybackScheduler(output, transport=transport, clock=clock)
    start = clock.now()

    scheduler.play_from(tab, tempo=120)
    scheduler.wait(timeout=5)

    assert offsets(output.notes, start) == pytest.approx([0.0, 0.5, 1.5, 2.5])
    assert [n.duration_seconds for n in output.notes] == pytest.approx([0.5, 0.5, 1.0, 1.0])


def test_invalid_tempo_keeps_transport_tempo(scale_tab, output, clock):
    scheduler = PlaybackScheduler(output, clock=clock)
    start = clock.now()

    scheduler.play_from(scale_tab, tempo=float("nan"))
    scheduler.wait(timeout=5)

    assert scheduler.transport.state.tempo == 120
    assert offsets(output.notes, start) == pytest.approx([0.0, 0.5, 1.0])


def test_out_of_range_tempo_is_clamped(scale_tab, output, clock):
    scheduler = PlaybackScheduler(output, clock=clock)
    start = clock.now()

    scheduler.play_from(scale_tab, tempo=400)
    scheduler.wait(timeout=5)

    assert offsets(output.notes, start) == pytest.approx([0.0, 0.3, 0.6])


def test_loop_region_repeats(scale_tab, clock):
    class StopAfter(RecordingOutput):
        scheduler = None

        def trigger_note(self, pitch, duration_seconds, at_wall_time, voice_channel):
            super().trigger_note(pitch, duration_seconds, at_wall_time, voice_channel)
            if len(self.notes) == 5:
                self.scheduler.stop()

    transport = TransportStore()
    transport.dispatch(actions.set_loop_points(0, 1920))
    transport.dispatch(actions.toggle_loop())

    output = StopAfter()
    scheduler = PlaybackScheduler(output, transport=transport, clock=clock)
    output.scheduler = scheduler
    start = clock.now()

    scheduler.play_from(scale_tab)
    scheduler.wait(timeout=5)

    assert [n.pitch for n in output.notes] == ["D4", "F#4", "D4", "F#4", "D4"]
    assert offsets(output.notes, start) == pytest.approx([0.0, 0.5, 1.0, 1.5, 2.0])
    assert scheduler.state is PlaybackState.IDLE


def test_transport_tracks_run(scale_tab, output, clock):
    transport = TransportStore()
    positions = []
    transport.subscribe(lambda state: positions.append(state.current_position))
    scheduler = PlaybackScheduler(output, transport=transport, clock=clock)

    scheduler.play_from(scale_tab)
    scheduler.wait(timeout=5)

    assert 1920 in positions
    assert not transport.state.is_playing
    assert transport.state.sequence is scale_tab


def test_empty_tab_finishes_immediately(output, listener, clock):
    scheduler = PlaybackScheduler(output, listener, clock=clock)
    scheduler.play_from(Tab())
    scheduler.wait(timeout=5)

    assert output.notes == []
    assert listener.of("state") == [True, False]


def test_tab_is_not_mutated(scale_tab, output, clock):
    before = scale_tab.to_snapshot()
    scheduler = PlaybackScheduler(output, clock=clock)
    scheduler.play_from(scale_tab)
    scheduler.wait(timeout=5)
    assert scale_tab.to_snapshot() == before


def test_preview_note(output, listener, clock):
    scheduler = PlaybackScheduler(output, listener, clock=clock)

    assert scheduler.preview_note(2, 2)
    scheduler.wait(timeout=5)

    assert output.notes[0].pitch == "F#4"
    assert output.notes[0].duration_seconds == pytest.approx(0.8)
    assert output.notes[0].at_wall_time == clock.now()
    assert listener.of("notes")[0] == [(2, 2)]

    assert not scheduler.preview_note(13, 0)
    assert len(output.notes) == 1
    scheduler.close()


def test_preview_expiry_keeps_playback_highlights(scale_tab, output, listener):
    clock = GatedClock(limit=100.3)
    scheduler = PlaybackScheduler(output, listener, clock=clock)

    assert scheduler.preview_note(0, 0, duration=0.2)
    scheduler.play_from(scale_tab)
    wait_for(lambda: len(output.notes) == 2)
    scheduler._preview_timer.join(timeout=5)

    scheduler.stop(clear_visual_feedback=False)
    scheduler.wait(timeout=5)
    assert listener.of("notes") == [[(0, 0)], [(0, 2)]]
    scheduler.close()


def test_preview_expiry_clears_highlight_when_idle(output, listener, clock):
    scheduler = PlaybackScheduler(output, listener, clock=clock)

    assert scheduler.preview_note(2, 2, duration=0.01)
    scheduler._preview_timer.join(timeout=5)
    scheduler.wait(timeout=5)

    assert listener.of("notes") == [[(2, 2)], []]
    scheduler.close()
