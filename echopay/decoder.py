"""
EchoPay Decoder - Recovers candidate packets from FSK audio.

Live decoding samples the microphone spectrum once per bit period, turns
the dominant frequency into a bit and searches the growing bit buffer for
the preamble. Offline decoding (decode_samples/decode_file) runs the same
classifier and synchronizer over recorded audio.
"""

import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Sequence

import numpy as np
import soundfile as sf
from scipy import signal

from . import (
    BIT_DURATION,
    FFT_SIZE,
    GAP_DURATION,
    MARK_FREQ,
    PACKET_BITS,
    PREAMBLE_BITS,
    SMOOTHING,
    SPACE_FREQ,
    THRESHOLD_FREQ,
)
from .audio import AudioContext
from .packet import bytes_from_bits

# Module-level logger
_logger = logging.getLogger(__name__)

POLICIES = ("peak", "carrier")


def magnitude_spectrum(samples: np.ndarray, sample_rate: int) -> tuple[np.ndarray, float]:
    """
    Blackman-windowed magnitude spectrum of a block of samples.

    Returns:
        Tuple of (magnitudes, bin_size_hz)
    """
    n = len(samples)
    window = signal.get_window("blackman", n)
    magnitudes = np.abs(np.fft.rfft(samples * window)) / n
    return magnitudes, sample_rate / n


class SymbolClassifier:
    """
    Maps a spectrum to a bit.

    Policies:
    - "peak": take the strongest bin; above the threshold frequency is 1.
    - "carrier": compare the bins nearest the two carriers; stronger wins.
    """

    def __init__(
        self,
        policy: str = "peak",
        threshold_freq: float = THRESHOLD_FREQ,
        mark_freq: float = MARK_FREQ,
        space_freq: float = SPACE_FREQ,
    ):
        if policy not in POLICIES:
            raise ValueError(f"policy must be one of {POLICIES}, got {policy!r}")
        self.policy = policy
        self.threshold_freq = threshold_freq
        self.mark_freq = mark_freq
        self.space_freq = space_freq

    def dominant_frequency(self, magnitudes: np.ndarray, bin_size: float) -> float:
        return float(np.argmax(magnitudes)) * bin_size

    def classify(self, magnitudes: np.ndarray, bin_size: float) -> int:
        if self.policy == "carrier":
            mark_bin = min(int(round(self.mark_freq / bin_size)), len(magnitudes) - 1)
            space_bin = min(int(round(self.space_freq / bin_size)), len(magnitudes) - 1)
            return 1 if magnitudes[mark_bin] > magnitudes[space_bin] else 0

        return 1 if self.dominant_frequency(magnitudes, bin_size) > self.threshold_freq else 0


class SpectrumAnalyser:
    """
    Rolling spectrum of the most recent `fft_size` input samples.

    Magnitudes are smoothed across snapshots with
    X[k] = smoothing * X_prev[k] + (1 - smoothing) * |X[k]|.
    """

    def __init__(
        self,
        sample_rate: int,
        fft_size: int = FFT_SIZE,
        smoothing: float = SMOOTHING,
    ):
        if not 0.0 <= smoothing < 1.0:
            raise ValueError("smoothing must be in [0.0, 1.0)")
        self.sample_rate = sample_rate
        self.fft_size = fft_size
        self.smoothing = smoothing

        self._window = signal.get_window("blackman", fft_size)
        self._buffer = np.zeros(fft_size, dtype=np.float32)
        self._smoothed = np.zeros(fft_size // 2)
        self._lock = threading.Lock()

    @property
    def bin_size(self) -> float:
        return self.sample_rate / self.fft_size

    def reset(self):
        with self._lock:
            self._buffer[:] = 0.0
            self._smoothed[:] = 0.0

    def push(self, samples: np.ndarray):
        """Append captured samples, keeping only the newest fft_size."""
        samples = np.asarray(samples, dtype=np.float32).ravel()
        if len(samples) == 0:
            return
        with self._lock:
            if len(samples) >= self.fft_size:
                self._buffer[:] = samples[-self.fft_size:]
            else:
                self._buffer = np.roll(self._buffer, -len(samples))
                self._buffer[-len(samples):] = samples

    def magnitudes(self) -> np.ndarray:
        """Take a smoothed magnitude snapshot (fft_size // 2 bins)."""
        with self._lock:
            block = self._buffer.copy()
        current = np.abs(np.fft.rfft(block * self._window))[:self.fft_size // 2] / self.fft_size
        self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * current
        return self._smoothed.copy()

    def frequency_data(self) -> np.ndarray:
        """Smoothed snapshot in decibels."""
        return 20.0 * np.log10(np.maximum(self.magnitudes(), 1e-12))


class FrameSynchronizer:
    """
    Finds preamble + packet windows in a bit stream.

    The buffer is capped at twice the frame length; older bits are dropped
    when nothing matched.
    """

    def __init__(
        self,
        preamble: Sequence[int] = PREAMBLE_BITS,
        packet_bits: int = PACKET_BITS,
    ):
        self.preamble = list(preamble)
        self.packet_bits = packet_bits
        self.frame_bits = len(self.preamble) + packet_bits
        self.max_bits = self.frame_bits * 2

        self.bit_buffer: list[int] = []

    def reset(self):
        """Clear the bit buffer."""
        self.bit_buffer.clear()

    def _find_preamble(self) -> Optional[int]:
        """
        Find the first preamble in the bit buffer.

        Returns:
            Index of the first preamble bit, or None
        """
        bits = self.bit_buffer
        width = len(self.preamble)
        for i in range(len(bits) - width + 1):
            if bits[i:i + width] == self.preamble:
                return i
        return None

    def feed_bit(self, bit: int) -> Optional[bytes]:
        """
        Append a bit and search for a complete frame.

        Returns:
            Candidate packet bytes if a full frame is available, else None
        """
        self.bit_buffer.append(1 if bit else 0)

        if len(self.bit_buffer) >= self.frame_bits:
            start = self._find_preamble()
            if start is not None:
                packet_start = start + len(self.preamble)
                packet_bits = self.bit_buffer[packet_start:packet_start + self.packet_bits]
                # A short window means the packet is still arriving
                if len(packet_bits) == self.packet_bits:
                    _logger.debug(f"Preamble matched at bit {start}")
                    self.reset()
                    return bytes_from_bits(packet_bits)

        if len(self.bit_buffer) > self.max_bits:
            del self.bit_buffer[:len(self.bit_buffer) - self.max_bits]

        return None

    def feed_bits(self, bits: Sequence[int]) -> list[bytes]:
        """
        Feed bits and return every candidate packet found.
        """
        packets = []
        for bit in bits:
            packet = self.feed_bit(bit)
            if packet is not None:
                packets.append(packet)
        return packets


class DecoderState(Enum):
    IDLE = "idle"
    LISTENING = "listening"
    SCANNING = "scanning"
    MATCH_FOUND = "match_found"
    STOPPED = "stopped"


class ModemDecoder:
    """
    Real-time decoder from audio input.

    A worker thread samples the spectrum every `sample_interval` seconds and
    owns the bit buffer; the audio callback only feeds the analyser. On the
    first candidate the decoder releases the microphone and clears its
    buffer before handing the bytes to `on_candidate`; call start() again to
    keep listening.
    """

    def __init__(
        self,
        context: AudioContext,
        on_candidate: Optional[Callable[[bytes], None]] = None,
        on_bit: Optional[Callable[[int], None]] = None,
        bit_duration: float = BIT_DURATION,
        sample_interval: Optional[float] = None,
        policy: str = "peak",
        fft_size: int = FFT_SIZE,
        smoothing: float = SMOOTHING,
    ):
        """
        Initialize decoder.

        Args:
            context: Audio context providing the capture stream
            on_candidate: Called with 26 candidate packet bytes
            on_bit: Called with every classified bit
            bit_duration: Tone length per bit (seconds)
            sample_interval: Sampling cadence (seconds) - None for bit_duration
            policy: Symbol classification policy ("peak" or "carrier")
            fft_size: Analyser window length in samples
            smoothing: Analyser smoothing constant
        """
        self.context = context
        self.on_candidate = on_candidate
        self.on_bit = on_bit
        self.bit_duration = bit_duration
        self.sample_interval = sample_interval if sample_interval is not None else bit_duration

        self.classifier = SymbolClassifier(policy)
        self.synchronizer = FrameSynchronizer()
        self._fft_size = fft_size
        self._smoothing = smoothing
        self.analyser: Optional[SpectrumAnalyser] = None

        self.state = DecoderState.IDLE
        self._lock = threading.RLock()
        self._stream = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

        # Statistics
        self.bits_received = 0
        self.candidates_found = 0

    @property
    def listening(self) -> bool:
        return self.state in (DecoderState.LISTENING, DecoderState.SCANNING)

    def _audio_callback(self, indata: np.ndarray, frames, time_info, status):
        """Called by sounddevice for each audio block."""
        if status:
            _logger.warning(f"Audio status: {status}")

        analyser = self.analyser
        if analyser is not None:
            analyser.push(indata[:, 0])

    def start(self):
        """
        Start listening.

        Raises:
            DeviceError: If the microphone cannot be opened
        """
        with self._lock:
            if self.listening:
                return  # Already running

            self.analyser = SpectrumAnalyser(
                self.context.input_sample_rate, self._fft_size, self._smoothing
            )
            self.synchronizer.reset()
            self._stream = self.context.open_input(self._audio_callback)

            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name="echopay-decoder",
                daemon=True,
            )
            self.state = DecoderState.LISTENING
            self._thread.start()
            _logger.debug(f"Listening, sampling every {self.sample_interval * 1000:.1f} ms")

    def _run(self, stop_event: threading.Event):
        while not stop_event.wait(self.sample_interval):
            self.sample()

    def sample(self) -> Optional[int]:
        """
        Run one sampling cycle.

        Returns:
            The classified bit, or None if the decoder is not listening
        """
        with self._lock:
            if self.state is not DecoderState.LISTENING:
                return None

            magnitudes = self.analyser.magnitudes()
            bit = self.classifier.classify(magnitudes, self.analyser.bin_size)
            self.bits_received += 1

            self.state = DecoderState.SCANNING
            packet = self.synchronizer.feed_bit(bit)
            if packet is None:
                self.state = DecoderState.LISTENING
            else:
                self.state = DecoderState.MATCH_FOUND
                self.candidates_found += 1
                self._release()

        if self.on_bit:
            self.on_bit(bit)

        if packet is not None:
            _logger.info(f"Candidate packet found: {packet.hex()}")
            if self.on_candidate:
                self.on_candidate(packet)
            with self._lock:
                # on_candidate may already have restarted listening
                if self.state is DecoderState.MATCH_FOUND:
                    self.state = DecoderState.STOPPED

        return bit

    def _release(self):
        """Stop sampling, close the capture stream and clear the buffer."""
        self._stop_event.set()
        stream, self._stream = self._stream, None
        self._thread = None
        self.synchronizer.reset()
        if stream is not None:
            try:
                stream.stop()
            finally:
                stream.close()

    def stop(self):
        """Stop listening. Safe to call at any time and more than once."""
        with self._lock:
            thread = self._thread
            self._release()
            self.state = DecoderState.STOPPED

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(1.0, self.sample_interval * 2))

    def __enter__(self) -> "ModemDecoder":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()

    def get_statistics(self) -> dict:
        return {
            "state": self.state.value,
            "bits_received": self.bits_received,
            "candidates_found": self.candidates_found,
            "buffered_bits": len(self.synchronizer.bit_buffer),
        }


def _find_onset(samples: np.ndarray, threshold: float = 0.1) -> Optional[int]:
    """Index of the first sample above `threshold` of the peak level."""
    peak = np.max(np.abs(samples)) if len(samples) else 0.0
    if peak <= 0.0:
        return None
    return int(np.argmax(np.abs(samples) > peak * threshold))


def decode_samples(
    samples: np.ndarray,
    sample_rate: int,
    bit_duration: float = BIT_DURATION,
    gap_duration: float = GAP_DURATION,
    policy: str = "peak",
) -> list[bytes]:
    """
    Decode candidate packets from recorded audio.

    Symbols are read one burst at a time, starting at the first audible
    sample and stepping by bit_duration + gap_duration.

    Args:
        samples: Mono audio samples
        sample_rate: Sample rate of `samples` (Hz)
        bit_duration: Tone length per bit (seconds)
        gap_duration: Silence between tones (seconds)
        policy: Symbol classification policy

    Returns:
        List of 26-byte candidate packets (not yet validated)
    """
    samples = np.asarray(samples, dtype=np.float64)
    onset = _find_onset(samples)
    if onset is None:
        return []

    period = int(round((bit_duration + gap_duration) * sample_rate))
    burst = int(round(bit_duration * sample_rate))

    classifier = SymbolClassifier(policy)
    synchronizer = FrameSynchronizer()

    packets = []
    position = onset
    while position + burst <= len(samples):
        magnitudes, bin_size = magnitude_spectrum(samples[position:position + burst], sample_rate)
        packet = synchronizer.feed_bit(classifier.classify(magnitudes, bin_size))
        if packet is not None:
            packets.append(packet)
        position += period

    _logger.debug(f"Decoded {len(packets)} candidate(s) from {len(samples) / sample_rate:.2f}s of audio")
    return packets


def decode_file(
    file_path: str | Path,
    sample_rate: Optional[int] = None,
    **kwargs,
) -> list[bytes]:
    """
    Decode candidate packets from an audio file.

    Args:
        file_path: Path to audio file
        sample_rate: Rate to resample to before decoding (None = file's rate)
        **kwargs: Passed to decode_samples()

    Returns:
        List of 26-byte candidate packets (not yet validated)
    """
    samples, sr = sf.read(str(file_path))

    # Use first channel if stereo
    if len(samples.shape) > 1:
        samples = samples[:, 0]

    if sample_rate is not None and sr != sample_rate:
        samples = signal.resample(samples, int(len(samples) * sample_rate / sr))
        sr = sample_rate

    return decode_samples(samples, sr, **kwargs)
