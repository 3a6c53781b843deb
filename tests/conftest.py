"""
Pytest configuration for EchoPay tests.

Provides a stand-in audio context so decoder and receiver tests run
without audio hardware.
"""
import numpy as np
import pytest

from echopay import MARK_FREQ, SPACE_FREQ
from echopay.errors import DeviceError


class FakeStream:
    """Records stop/close calls like a sounddevice stream."""

    def __init__(self, callback):
        self.callback = callback
        self.stopped = False
        self.closed = False

    def stop(self):
        self.stopped = True

    def close(self):
        self.closed = True


class FakeContext:
    """AudioContext stand-in: hands out FakeStreams, collects schedules."""

    def __init__(self, sample_rate=48000, fail=False):
        self.sample_rate = sample_rate
        self.input_sample_rate = sample_rate
        self.fail = fail
        self.streams = []
        self.scheduled = []

    def open_input(self, callback, blocksize=1024):
        if self.fail:
            raise DeviceError("permission denied")
        stream = FakeStream(callback)
        self.streams.append(stream)
        return stream

    def schedule(self, samples):
        self.scheduled.append(samples)
        return len(samples) / self.sample_rate


def tone(bit, sample_rate=48000, num_samples=4096):
    """A full analyser window of one carrier."""
    freq = MARK_FREQ if bit else SPACE_FREQ
    t = np.arange(num_samples) / sample_rate
    return (0.5 * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def play_into(decoder, bits):
    """Push one carrier window per bit into a decoder and sample it."""
    for bit in bits:
        decoder.analyser.push(tone(bit, decoder.analyser.sample_rate))
        decoder.sample()


@pytest.fixture
def fake_context():
    return FakeContext()


@pytest.fixture
def failing_context():
    return FakeContext(fail=True)
