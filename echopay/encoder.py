"""
EchoPay Encoder - Renders bit frames as near-ultrasonic FSK tone bursts.
"""

import logging
import threading
import time
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import soundfile as sf

from . import (
    AMPLITUDE,
    BIT_DURATION,
    GAP_DURATION,
    LEAD_TIME,
    MARK_FREQ,
    MAX_RAMP,
    SAFETY_MARGIN,
    SAMPLE_RATE,
    SPACE_FREQ,
)
from .audio import AudioContext

# Module-level logger
_logger = logging.getLogger(__name__)


class ToneEncoder:
    """
    FSK encoder for EchoPay frames.

    Every bit is a separate burst with linear fade in/out, followed by a
    short silence. Bursts do not share phase; the gaps and ramps keep the
    transitions click-free.
    """

    def __init__(
        self,
        sample_rate: int = SAMPLE_RATE,
        bit_duration: float = BIT_DURATION,
        gap_duration: float = GAP_DURATION,
        mark_freq: float = MARK_FREQ,
        space_freq: float = SPACE_FREQ,
        amplitude: float = AMPLITUDE,
        lead_time: float = LEAD_TIME,
    ):
        """
        Initialize encoder.

        Args:
            sample_rate: Output audio sample rate (Hz)
            bit_duration: Tone length per bit (seconds)
            gap_duration: Silence between tones (seconds)
            mark_freq: Frequency for logic 1 (Hz)
            space_freq: Frequency for logic 0 (Hz)
            amplitude: Peak gain of each burst (0.0 to 1.0)
            lead_time: Silence before the first burst (seconds)
        """
        if bit_duration <= 0:
            raise ValueError("bit_duration must be positive")
        if gap_duration < 0:
            raise ValueError("gap_duration must not be negative")
        if not 0.0 <= amplitude <= 1.0:
            raise ValueError("amplitude must be between 0.0 and 1.0")

        self.sample_rate = sample_rate
        self.bit_duration = bit_duration
        self.gap_duration = gap_duration
        self.mark_freq = mark_freq
        self.space_freq = space_freq
        self.amplitude = amplitude
        self.lead_time = lead_time

        self.ramp_duration = min(MAX_RAMP, bit_duration / 4)

        # Transmits share one playback schedule
        self._lock = threading.Lock()

    @property
    def symbol_period(self) -> float:
        """Seconds from one burst start to the next."""
        return self.bit_duration + self.gap_duration

    def total_duration(self, num_bits: int) -> float:
        """Scheduled length of `num_bits` bursts, excluding lead time."""
        return num_bits * self.symbol_period

    def _envelope(self, num_samples: int, sample_rate: int) -> np.ndarray:
        """Trapezoid gain: linear ramp up, hold, linear ramp down."""
        ramp = min(int(round(self.ramp_duration * sample_rate)), num_samples // 2)
        env = np.full(num_samples, self.amplitude, dtype=np.float64)
        if ramp > 0:
            edge = np.linspace(0.0, self.amplitude, ramp, endpoint=False)
            env[:ramp] = edge
            env[num_samples - ramp:] = edge[::-1]
        return env

    def _generate_bit(self, bit: int, sample_rate: Optional[int] = None) -> np.ndarray:
        """
        Generate one tone burst.

        Args:
            bit: 0 or 1
            sample_rate: Rate to render at (None = encoder rate)

        Returns:
            Array of audio samples (-amplitude to amplitude)
        """
        sample_rate = sample_rate or self.sample_rate
        freq = self.mark_freq if bit else self.space_freq
        num_samples = int(round(self.bit_duration * sample_rate))
        t = np.arange(num_samples) / sample_rate
        return np.sin(2 * np.pi * freq * t) * self._envelope(num_samples, sample_rate)

    def render(self, bits: Sequence[int], sample_rate: Optional[int] = None) -> np.ndarray:
        """
        Render a bit sequence to audio.

        Burst i starts at lead_time + i * symbol_period.

        Args:
            bits: Bits to send (0 or 1)
            sample_rate: Rate to render at (None = encoder rate)

        Returns:
            float32 samples: lead-in silence, then bursts separated by gaps
        """
        sample_rate = sample_rate or self.sample_rate
        lead = int(round(self.lead_time * sample_rate))
        period = int(round(self.symbol_period * sample_rate))
        burst_len = int(round(self.bit_duration * sample_rate))

        # Trailing gap is kept so the schedule length matches total_duration()
        result = np.zeros(lead + len(bits) * period, dtype=np.float32)

        tones = {0: self._generate_bit(0, sample_rate), 1: self._generate_bit(1, sample_rate)}
        for i, bit in enumerate(bits):
            start = lead + i * period
            result[start:start + burst_len] = tones[1 if bit else 0]

        return result

    def transmit(self, bits: Sequence[int], context: AudioContext):
        """
        Play bits through an audio context and wait until they are done.

        Completion is timer based: this returns once lead time, the full
        schedule and a safety margin have elapsed. There is no way to cancel
        a transmit once the samples are queued. Samples are rendered at the
        context's playback rate.

        Raises:
            DeviceError: If the playback device cannot be opened
        """
        samples = self.render(bits, context.sample_rate)
        with self._lock:
            context.schedule(samples)
            wait = self.lead_time + self.total_duration(len(bits)) + SAFETY_MARGIN
            _logger.debug(f"Scheduled {len(bits)} bits, waiting {wait:.3f}s")
            time.sleep(wait)

    def render_to_file(self, output_path: str | Path, bits: Sequence[int]):
        """
        Render bits and save them to an audio file.

        Args:
            output_path: Output WAV file path
            bits: Bits to send
        """
        samples = self.render(bits)
        sf.write(
            str(output_path),
            samples,
            self.sample_rate,
            subtype='PCM_16'
        )
