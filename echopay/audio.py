"""
Audio device handle shared by the modem encoder and decoder.

An AudioContext is created by the caller and passed in explicitly. The
playback stream is opened lazily on first use and stays open until
close(); tone schedules are queued onto it and rendered from the
sounddevice callback.
"""

import logging
import threading
from typing import Callable, Optional

import numpy as np

from . import SAMPLE_RATE
from .errors import DeviceError

# Module-level logger
_logger = logging.getLogger(__name__)


def _sounddevice():
    """
    Import sounddevice on first use.

    The import fails when the PortAudio library is missing, which is a
    device problem for callers, not an import problem for the package.
    """
    try:
        import sounddevice as sd
    except OSError as e:
        raise DeviceError(f"PortAudio is not available: {e}") from e
    return sd


def list_devices() -> list[tuple[int, str, int, int]]:
    """
    List audio devices.

    Returns:
        List of (index, name, max_input_channels, max_output_channels)
    """
    sd = _sounddevice()
    try:
        devices = sd.query_devices()
    except sd.PortAudioError as e:
        raise DeviceError(f"Could not query audio devices: {e}") from e
    return [
        (i, dev['name'], dev['max_input_channels'], dev['max_output_channels'])
        for i, dev in enumerate(devices)
    ]


class AudioContext:
    """
    Owned playback/capture resource.

    States: "closed" -> open() -> "running" <-> "suspended" -> close() -> "closed".
    """

    def __init__(
        self,
        sample_rate: Optional[int] = None,
        device: Optional[int] = None,
        input_device: Optional[int] = None,
    ):
        """
        Initialize context. No device is touched until open().

        Args:
            sample_rate: Sample rate (Hz) - None to auto-detect from device
            device: Output device (None = default)
            input_device: Input device (None = default)
        """
        self._sample_rate = sample_rate
        self._output_sample_rate: Optional[int] = None
        self._input_sample_rate: Optional[int] = None
        self.device = device
        self.input_device = input_device

        self._stream = None
        self._lock = threading.Lock()
        self._pending = np.zeros(0, dtype=np.float32)
        self._frames_rendered = 0
        self.state = "closed"

    @property
    def sample_rate(self) -> int:
        """Playback rate: the explicit rate, else the output device default."""
        if self._sample_rate is not None:
            return self._sample_rate
        if self._output_sample_rate is None:
            self._output_sample_rate = self._get_device_sample_rate(self.device, "output")
        return self._output_sample_rate

    @property
    def input_sample_rate(self) -> int:
        """Capture rate: the explicit rate, else the input device default."""
        if self._sample_rate is not None:
            return self._sample_rate
        if self._input_sample_rate is None:
            self._input_sample_rate = self._get_device_sample_rate(self.input_device, "input")
        return self._input_sample_rate

    def _get_device_sample_rate(self, device: Optional[int], kind: str) -> int:
        try:
            sd = _sounddevice()
            device_info = sd.query_devices(device, kind)
            sr = device_info['default_samplerate']
            _logger.info(f"Auto-detected sample rate: {sr} Hz from device: {device_info['name']}")
            return int(sr)
        except Exception as e:
            _logger.warning(f"Could not auto-detect sample rate, using default {SAMPLE_RATE} Hz: {e}")
            return SAMPLE_RATE

    @property
    def current_time(self) -> float:
        """Seconds of audio rendered since the context was opened."""
        return self._frames_rendered / self.sample_rate

    def _output_callback(self, outdata: np.ndarray, frames, time_info, status):
        if status:
            _logger.warning(f"Playback status: {status}")

        with self._lock:
            count = min(frames, len(self._pending))
            outdata[:count, 0] = self._pending[:count]
            outdata[count:, 0] = 0.0
            self._pending = self._pending[count:]
            self._frames_rendered += frames

    def open(self) -> "AudioContext":
        """Open the playback stream if needed and make sure it is running."""
        sd = _sounddevice()
        if self._stream is None:
            try:
                self._stream = sd.OutputStream(
                    device=self.device,
                    channels=1,
                    samplerate=self.sample_rate,
                    dtype='float32',
                    callback=self._output_callback,
                )
            except sd.PortAudioError as e:
                raise DeviceError(f"Could not open audio output: {e}") from e
            self._frames_rendered = 0
            _logger.debug(f"Opened output stream at {self.sample_rate} Hz")
        self.resume()
        return self

    def resume(self):
        """Restart a suspended playback stream."""
        if self._stream is None:
            raise DeviceError("Audio context is closed")
        if not self._stream.active:
            sd = _sounddevice()
            try:
                self._stream.start()
            except sd.PortAudioError as e:
                raise DeviceError(f"Could not start audio output: {e}") from e
        self.state = "running"

    def suspend(self):
        """Pause playback without releasing the device."""
        if self._stream is not None and self._stream.active:
            self._stream.stop()
            self.state = "suspended"

    def close(self):
        """Release the playback device. Safe to call more than once."""
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop()
            finally:
                stream.close()
        with self._lock:
            self._pending = np.zeros(0, dtype=np.float32)
        self.state = "closed"

    def schedule(self, samples: np.ndarray) -> float:
        """
        Queue samples for playback after anything already queued.

        Returns:
            Seconds until the queued samples finish playing
        """
        self.open()
        with self._lock:
            self._pending = np.concatenate(
                [self._pending, np.asarray(samples, dtype=np.float32)]
            )
            remaining = len(self._pending)
        return remaining / self.sample_rate

    def open_input(
        self,
        callback: Callable,
        blocksize: int = 1024,
    ):
        """
        Open and start a mono capture stream.

        The caller owns the returned stream and must stop and close it.

        Raises:
            DeviceError: Permission denied or no usable input device
        """
        sd = _sounddevice()
        try:
            stream = sd.InputStream(
                device=self.input_device,
                channels=1,
                samplerate=self.input_sample_rate,
                callback=callback,
                blocksize=blocksize,
            )
        except sd.PortAudioError as e:
            raise DeviceError(f"Could not open audio input: {e}") from e

        try:
            stream.start()
        except sd.PortAudioError as e:
            stream.close()
            raise DeviceError(f"Could not start audio input: {e}") from e
        return stream

    def __enter__(self) -> "AudioContext":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
