"""
Default audio output: a sounddevice stream mixing scheduled buffers.

Trigger requests are rendered to numpy buffers right away and queued with
their start sample. The stream callback mixes whatever overlaps the block
it is asked for, so a note starts on the sample its wall time maps to.
"""
import logging
import threading
from typing import List, Optional

import numpy as np
import sounddevice as sd

from core.constants import pitch_to_frequency
from core.settings import PlaybackConfig
from audio.clock import Clock, MonotonicClock
from audio.dsp import clip_audio, render_click, render_pluck, stereo_from_mono
from audio.output import AudioOutput
from audio.transport import TransportState, TransportStore

logger = logging.getLogger(__name__)


class _ScheduledBuffer:
    """A rendered note or click waiting for, or in the middle of, playback."""

    __slots__ = ("start_sample", "buffer", "position")

    def __init__(self, start_sample: int, buffer: np.ndarray):
        self.start_sample = start_sample
        self.buffer = buffer
        self.position = 0


class SoundDeviceOutput(AudioOutput):
    """
    Stereo sounddevice output.

    Times passed to trigger_note() are on `clock`; hand the same clock to
    the scheduler. Buffers are rendered at full scale and the master volume
    is applied while mixing, so volume changes reach notes already queued.
    """

    def __init__(self, config: Optional[PlaybackConfig] = None,
                 clock: Optional[Clock] = None,
                 transport: Optional[TransportStore] = None):
        """
        Args:
            config: Sample rate, buffer size and volume
            clock: Clock the scheduler uses for trigger times
            transport: Transport store whose volume drives the master gain
        """
        self.config = config if config is not None else PlaybackConfig()
        self.clock = clock if clock is not None else MonotonicClock()
        self.sample_rate = self.config.sample_rate
        self.volume = self.config.volume
        self._unsubscribe = None
        if transport is not None:
            self.volume = transport.state.volume
            self._unsubscribe = transport.subscribe(self._on_transport_change)

        self._lock = threading.Lock()
        self._voices: List[_ScheduledBuffer] = []
        self._stream: Optional[sd.OutputStream] = None
        self._stream_start_time = 0.0
        self._frames_played = 0

    @property
    def is_running(self) -> bool:
        return self._stream is not None

    def start(self):
        """Open and start the output stream."""
        if self._stream is not None:
            return

        self._stream = sd.OutputStream(
            samplerate=self.sample_rate,
            blocksize=self.config.buffer_size,
            channels=2,
            dtype='float32',
            latency='low',
            callback=self._audio_callback,
        )
        with self._lock:
            self._frames_played = 0
            self._stream_start_time = self.clock.now()
        self._stream.start()
        logger.info("[AUDIO] Output started at %d Hz, block %d", self.sample_rate, self.config.buffer_size)

    def close(self):
        """Stop and close the output stream."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._stream is None:
            return
        try:
            self._stream.stop()
            self._stream.close()
        finally:
            self._stream = None
            self.stop_all()
            logger.info("[AUDIO] Output closed")

    # === AudioOutput ===

    def trigger_note(self, pitch, duration_seconds, at_wall_time, voice_channel):
        buffer = render_pluck(pitch_to_frequency(pitch), duration_seconds,
                              self.sample_rate, volume=1.0)
        self._schedule(buffer, at_wall_time)

    def trigger_metronome_click(self, accented, at_wall_time):
        self._schedule(render_click(accented, self.sample_rate, volume=1.0), at_wall_time)

    def stop_all(self):
        with self._lock:
            self._voices = []

    # === Stream side ===

    def _on_transport_change(self, state: TransportState):
        self.volume = state.volume

    def _schedule(self, buffer: np.ndarray, at_wall_time: float):
        if len(buffer) == 0:
            return
        with self._lock:
            start_sample = int(round((at_wall_time - self._stream_start_time) * self.sample_rate))
            # Late requests play at the next block instead of being dropped
            start_sample = max(start_sample, self._frames_played)
            self._voices.append(_ScheduledBuffer(start_sample, buffer))

    def _audio_callback(self, outdata, frames, time_info, status):
        """Called by sounddevice for each audio chunk."""
        if status:
            logger.debug("[AUDIO] Stream status: %s", status)

        mix = np.zeros(frames, dtype=np.float32)

        with self._lock:
            block_start = self._frames_played
            block_end = block_start + frames
            active = []

            for voice in self._voices:
                if voice.start_sample >= block_end:
                    active.append(voice)
                    continue

                offset = max(0, voice.start_sample - block_start)
                count = min(frames - offset, len(voice.buffer) - voice.position)
                mix[offset:offset + count] += voice.buffer[voice.position:voice.position + count]
                voice.position += count

                if voice.position < len(voice.buffer):
                    active.append(voice)

            self._voices = active
            self._frames_played = block_end

        mix *= self.volume
        outdata[:] = stereo_from_mono(clip_audio(mix))
