"""
DSP utilities and building blocks.

Plucked-string and metronome click synthesis for the default output, plus
small buffer helpers.
"""
import numpy as np

# Relative amplitudes of the first harmonics of a plucked string
PLUCK_HARMONICS = (1.0, 0.5, 0.3, 0.15, 0.08)

CLICK_DURATION = 0.03
CLICK_FREQ_ACCENT = 1500.0
CLICK_FREQ_NORMAL = 1000.0


def apply_adsr_envelope(buffer: np.ndarray,
                        attack: float,
                        decay: float,
                        sustain: float,
                        release: float,
                        sample_rate: int) -> np.ndarray:
    """
    Apply an ADSR envelope to a whole note buffer.

    The release segment occupies the end of the buffer, so the note is
    silent at its last sample.

    Args:
        buffer: Audio buffer to process
        attack: Attack time (seconds)
        decay: Decay time (seconds)
        sustain: Sustain level (0.0-1.0)
        release: Release time (seconds)
        sample_rate: Audio sample rate

    Returns:
        Enveloped audio
    """
    num_samples = len(buffer)
    if num_samples == 0:
        return buffer.copy()

    attack_samples = max(1, int(attack * sample_rate))
    decay_samples = max(1, int(decay * sample_rate))
    release_samples = min(num_samples, max(1, int(release * sample_rate)))

    i = np.arange(num_samples, dtype=np.float32)
    env = np.full(num_samples, sustain, dtype=np.float32)

    in_attack = i < attack_samples
    env[in_attack] = i[in_attack] / attack_samples

    in_decay = (i >= attack_samples) & (i < attack_samples + decay_samples)
    progress = (i[in_decay] - attack_samples) / decay_samples
    env[in_decay] = 1.0 - progress * (1.0 - sustain)

    # Release ramps from wherever the envelope is down to zero
    release_start = num_samples - release_samples
    start_level = env[release_start]
    env[release_start:] = start_level * np.linspace(1.0, 0.0, release_samples, dtype=np.float32)

    return (buffer * env).astype(np.float32)


def render_pluck(frequency: float, duration: float, sample_rate: int,
                 volume: float = 0.7) -> np.ndarray:
    """
    Render a plucked-string note.

    Args:
        frequency: Fundamental in Hz
        duration: Length in seconds
        sample_rate: Audio sample rate
        volume: Peak amplitude (0.0-1.0)

    Returns:
        Mono float32 buffer
    """
    num_samples = int(duration * sample_rate)
    if num_samples <= 0:
        return np.zeros(0, dtype=np.float32)

    t = np.arange(num_samples, dtype=np.float32) / sample_rate
    nyquist = sample_rate / 2.0

    signal = np.zeros(num_samples, dtype=np.float32)
    for harmonic, amplitude in enumerate(PLUCK_HARMONICS, start=1):
        partial = frequency * harmonic
        if partial >= nyquist:
            break
        # Higher partials die away faster
        decay = np.exp(-t * (2.0 + harmonic * 1.5))
        signal += amplitude * decay * np.sin(2.0 * np.pi * partial * t)

    signal /= sum(PLUCK_HARMONICS)
    signal = apply_adsr_envelope(signal, 0.002, 0.05, 0.8,
                                 min(0.05, duration / 4.0), sample_rate)
    return (signal * volume).astype(np.float32)


def render_click(accented: bool, sample_rate: int, volume: float = 0.7) -> np.ndarray:
    """
    Render one metronome click; the accented click is higher and louder.

    Args:
        accented: First beat of the count-in
        sample_rate: Audio sample rate
        volume: Peak amplitude (0.0-1.0)

    Returns:
        Mono float32 buffer
    """
    num_samples = int(CLICK_DURATION * sample_rate)
    t = np.arange(num_samples, dtype=np.float32) / sample_rate
    freq = CLICK_FREQ_ACCENT if accented else CLICK_FREQ_NORMAL
    gain = 1.0 if accented else 0.6
    click = np.sin(2.0 * np.pi * freq * t) * np.exp(-t * 150.0)
    return (click * gain * volume).astype(np.float32)


def peak_level(buffer: np.ndarray) -> float:
    """Peak absolute level of a buffer (0.0 when empty)."""
    if len(buffer) == 0:
        return 0.0
    return float(np.max(np.abs(buffer)))


def stereo_from_mono(buffer_mono: np.ndarray) -> np.ndarray:
    """
    Convert mono buffer to stereo by duplicating channels.

    Args:
        buffer_mono: Mono audio buffer (1D array)

    Returns:
        Stereo audio buffer (frames x 2)
    """
    return np.stack([buffer_mono, buffer_mono], axis=-1)


def clip_audio(buffer: np.ndarray, threshold: float = 1.0) -> np.ndarray:
    """
    Hard clip audio to prevent overflow.

    Args:
        buffer: Audio buffer
        threshold: Clipping threshold

    Returns:
        Clipped audio
    """
    return np.clip(buffer, -threshold, threshold)
