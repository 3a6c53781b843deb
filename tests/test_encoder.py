"""
Tests for EchoPay encoder.
"""

import numpy as np
import pytest
import soundfile as sf

from conftest import FakeContext
from echopay import ToneEncoder, decode_samples, frame_bits
from echopay import encoder as encoder_module


def dominant_frequency(samples, sample_rate):
    spectrum = np.abs(np.fft.rfft(samples))
    return np.argmax(spectrum) * sample_rate / len(samples)


class TestToneEncoder:
    """Test FSK encoder."""

    def test_encoder_init(self):
        encoder = ToneEncoder()
        assert encoder.sample_rate == 48000
        assert encoder.mark_freq == 19500
        assert encoder.space_freq == 18500
        assert encoder.bit_duration == 0.03
        assert encoder.gap_duration == 0.004
        assert encoder.ramp_duration == pytest.approx(0.004)

    def test_ramp_short_bits(self):
        """Ramp is a quarter of the bit when bits are short."""
        encoder = ToneEncoder(bit_duration=0.008)
        assert encoder.ramp_duration == pytest.approx(0.002)

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            ToneEncoder(bit_duration=0)
        with pytest.raises(ValueError):
            ToneEncoder(gap_duration=-0.001)
        with pytest.raises(ValueError):
            ToneEncoder(amplitude=1.5)

    def test_generate_bit(self):
        encoder = ToneEncoder()

        mark = encoder._generate_bit(1)
        space = encoder._generate_bit(0)
        assert len(mark) == len(space) == 1440

        assert dominant_frequency(mark, 48000) == pytest.approx(19500, abs=40)
        assert dominant_frequency(space, 48000) == pytest.approx(18500, abs=40)

    def test_burst_envelope(self):
        """Bursts fade in and out and peak at the configured gain."""
        encoder = ToneEncoder()
        burst = encoder._generate_bit(1)

        assert burst[0] == 0.0
        assert np.max(np.abs(burst)) <= 0.6 + 1e-9
        assert np.max(np.abs(burst[700:740])) > 0.55
        # Ramp edges are quieter than the middle
        assert np.max(np.abs(burst[:20])) < 0.1
        assert np.max(np.abs(burst[-20:])) < 0.1

    def test_render_layout(self):
        """Lead-in silence, then bursts every 34 ms with 4 ms gaps."""
        encoder = ToneEncoder()
        samples = encoder.render([1, 0, 1])

        lead = 2400  # 50 ms
        period = 1632  # 34 ms
        burst = 1440  # 30 ms

        assert samples.dtype == np.float32
        assert len(samples) == lead + 3 * period
        assert np.all(samples[:lead] == 0.0)
        for i in range(3):
            start = lead + i * period
            assert np.any(samples[start:start + burst] != 0.0)
            assert np.all(samples[start + burst:start + period] == 0.0)

        first = samples[lead:lead + burst]
        second = samples[lead + period:lead + period + burst]
        assert dominant_frequency(first, 48000) == pytest.approx(19500, abs=40)
        assert dominant_frequency(second, 48000) == pytest.approx(18500, abs=40)

    def test_render_empty(self):
        samples = ToneEncoder().render([])
        assert len(samples) == 2400
        assert np.all(samples == 0.0)

    def test_total_duration(self):
        encoder = ToneEncoder()
        assert encoder.total_duration(216) == pytest.approx(216 * 0.034)
        assert encoder.total_duration(0) == 0

    def test_transmit_waits_full_schedule(self, fake_context, monkeypatch):
        """Transmit queues the samples and sleeps lead + schedule + margin."""
        waits = []
        monkeypatch.setattr(encoder_module.time, "sleep", waits.append)

        encoder = ToneEncoder()
        encoder.transmit([1, 0] * 4, fake_context)

        assert len(fake_context.scheduled) == 1
        assert len(fake_context.scheduled[0]) == 2400 + 8 * 1632
        assert waits == [pytest.approx(0.05 + 8 * 0.034 + 0.12)]

    def test_transmit_follows_context_rate(self, monkeypatch):
        """A 48 kHz encoder renders at the playback device's 44.1 kHz."""
        monkeypatch.setattr(encoder_module.time, "sleep", lambda seconds: None)
        context = FakeContext(sample_rate=44100)
        bits = frame_bits(bytes(range(26)))

        ToneEncoder().transmit(bits, context)

        samples = context.scheduled[0]
        assert len(samples) == 2205 + len(bits) * 1499
        assert decode_samples(samples, 44100) == [bytes(range(26))]

    def test_render_to_file(self, tmp_path):
        encoder = ToneEncoder()
        path = tmp_path / "frame.wav"
        encoder.render_to_file(path, [1, 0, 1, 1])

        data, sr = sf.read(str(path))
        assert sr == 48000
        assert len(data) == 2400 + 4 * 1632
        assert np.max(np.abs(data)) == pytest.approx(0.6, abs=0.01)
