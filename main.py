"""
strumtab - three-string strumstick tab player
Main entry point
"""
import argparse
import logging
import sys
from pathlib import Path

from core.constants import VOICE_NAMES
from core.logger import setup_logger
from core.models import CursorPosition
from core.persistence import ProjectFile
from core.settings import PlaybackConfig, load_settings
from core.timing import ticks_to_measure_beat_sub
from audio import transport as actions
from audio.device import SoundDeviceOutput
from audio.output import PlaybackListener
from audio.scheduler import PlaybackScheduler
from audio.transport import TransportStore

logger = logging.getLogger(__name__)


class ConsoleListener(PlaybackListener):
    """Logs playback progress instead of drawing it."""

    def on_playhead_position_change(self, ticks):
        if ticks is None:
            return
        measure, beat, sub = ticks_to_measure_beat_sub(ticks)
        logger.info("[PLAYHEAD] %d:%d:%d (tick %d)", measure + 1, beat + 1, sub + 1, ticks)

    def on_notes_playing(self, notes):
        if notes:
            logger.debug("[NOTES] %s", ", ".join(f"fret {f} on {VOICE_NAMES[v]}" for f, v in notes))

    def on_count_in_beat(self, beat_index, total_beats):
        logger.info("[COUNT-IN] %d/%d", beat_index + 1, total_beats)

    def on_playback_state_change(self, is_playing):
        logger.info("[PLAYBACK] %s", "playing" if is_playing else "stopped")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Play a strumstick tab project.")
    parser.add_argument("project", type=Path, help="Project file (.stab)")
    parser.add_argument("--tempo", type=float, default=None,
                        help="Tempo in BPM (defaults to the project's tempo)")
    parser.add_argument("--count-in", action="store_true",
                        help="Play one measure of clicks before the tab")
    parser.add_argument("--from-tick", type=int, default=0,
                        help="Start position in ticks")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Load a project and play it to the end (Ctrl+C stops)."""
    args = parse_args(argv)
    setup_logger(logging.DEBUG if args.debug else logging.INFO)

    try:
        project = ProjectFile.load(args.project)
    except (IOError, ValueError) as e:
        logger.error("Could not open %s: %s", args.project, e)
        return 1

    logger.info("=== %s ===", project.title)
    config = PlaybackConfig.from_settings(load_settings())

    transport = TransportStore()
    transport.dispatch(actions.set_volume(config.volume))
    if project.loop_enabled:
        transport.dispatch(actions.set_loop_points(project.loop_start, project.loop_end))
        transport.dispatch(actions.toggle_loop())

    output = SoundDeviceOutput(config=config, transport=transport)
    scheduler = PlaybackScheduler(output, listener=ConsoleListener(), transport=transport,
                                  clock=output.clock, config=config)

    try:
        output.start()
    except Exception as e:
        logger.error("Could not open audio output: %s", e)
        return 1

    try:
        scheduler.play_from(
            project.tab,
            CursorPosition(time_slot=max(0, args.from_tick)),
            tempo=args.tempo if args.tempo is not None else project.tempo,
            count_in_enabled=args.count_in or project.count_in_enabled,
            time_signature_numerator=project.time_signature[0],
        )
        while not scheduler.wait(timeout=0.25):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        scheduler.close()
        output.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
