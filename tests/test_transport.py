import pytest

from audio import transport as actions
from audio.transport import TransportState, TransportStore, transport_reducer
from core.errors import ValidationError
from core.models import Note

from conftest import build_tab


def test_tempo_clamped():
    state = TransportState()
    assert transport_reducer(state, actions.set_tempo(250)).tempo == 200
    assert transport_reducer(state, actions.set_tempo(30)).tempo == 60
    assert transport_reducer(state, actions.set_tempo(90)).tempo == 90


@pytest.mark.parametrize("bad", [None, "fast", float("nan"), float("inf"), True])
def test_invalid_tempo_rejected(bad):
    with pytest.raises(ValidationError):
        transport_reducer(TransportState(), actions.set_tempo(bad))


def test_volume_clamped():
    state = TransportState()
    assert transport_reducer(state, actions.set_volume(1.5)).volume == 1.0
    assert transport_reducer(state, actions.set_volume(-1)).volume == 0.0


def test_stop_resets_position_pause_does_not():
    state = transport_reducer(TransportState(), actions.play())
    state = transport_reducer(state, actions.set_position(1920))
    paused = transport_reducer(state, actions.pause())
    assert not paused.is_playing
    assert paused.current_position == 1920

    stopped = transport_reducer(state, actions.stop())
    assert not stopped.is_playing
    assert stopped.current_position == 0


def test_load_sequence_resets_position():
    tab = build_tab(Note.fretted(0, 0, 0))
    state = transport_reducer(TransportState(current_position=960), actions.load_sequence(tab))
    assert state.sequence is tab
    assert state.current_position == 0


def test_position_never_negative():
    state = transport_reducer(TransportState(), actions.transport_position_update(-10))
    assert state.current_position == 0


def test_loop_points():
    state = transport_reducer(TransportState(), actions.set_loop_points(3840, 960))
    assert (state.loop_start, state.loop_end) == (3840, 3840)
    assert not state.has_loop

    state = transport_reducer(state, actions.set_loop_points(0, 3840))
    state = transport_reducer(state, actions.toggle_loop())
    assert state.has_loop


def test_reducer_does_not_mutate_input():
    state = TransportState()
    transport_reducer(state, actions.set_tempo(150))
    assert state.tempo == 120


def test_store_rejects_without_changing_state():
    store = TransportStore()
    seen = []
    store.subscribe(seen.append)

    assert not store.dispatch(actions.set_tempo(None))
    assert store.state.tempo == 120
    assert seen == []

    assert store.dispatch(actions.set_tempo(140))
    assert seen[-1].tempo == 140


def test_unsubscribe():
    store = TransportStore()
    seen = []
    unsubscribe = store.subscribe(seen.append)
    unsubscribe()
    store.dispatch(actions.play())
    assert seen == []
