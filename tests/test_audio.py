"""
Tests for the audio context sample rate handling.
"""

from echopay import SAMPLE_RATE, AudioContext
from echopay import audio as audio_module


class FakePortAudioError(Exception):
    pass


class FakeInputStream:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.started = False

    def start(self):
        self.started = True

    def close(self):
        pass


class FakeSoundDevice:
    """Default output at 48 kHz, default microphone at 44.1 kHz."""

    PortAudioError = FakePortAudioError

    def __init__(self):
        self.queries = []

    def query_devices(self, device=None, kind=None):
        self.queries.append((device, kind))
        rate = 44100.0 if kind == "input" else 48000.0
        return {"name": f"default {kind}", "default_samplerate": rate}

    def InputStream(self, **kwargs):
        return FakeInputStream(**kwargs)


class BrokenSoundDevice:
    PortAudioError = FakePortAudioError

    def query_devices(self, device=None, kind=None):
        raise FakePortAudioError("no devices")


class TestSampleRate:
    """Test capture and playback rate detection."""

    def test_capture_uses_input_device_rate(self, monkeypatch):
        sd = FakeSoundDevice()
        monkeypatch.setattr(audio_module, "_sounddevice", lambda: sd)
        context = AudioContext()

        assert context.input_sample_rate == 44100
        assert context.sample_rate == 48000
        assert (None, "input") in sd.queries
        assert (None, "output") in sd.queries

    def test_input_stream_opened_at_capture_rate(self, monkeypatch):
        sd = FakeSoundDevice()
        monkeypatch.setattr(audio_module, "_sounddevice", lambda: sd)
        context = AudioContext()

        stream = context.open_input(lambda *args: None)
        assert stream.started
        assert stream.kwargs["samplerate"] == 44100

    def test_explicit_rate_wins(self, monkeypatch):
        sd = FakeSoundDevice()
        monkeypatch.setattr(audio_module, "_sounddevice", lambda: sd)
        context = AudioContext(sample_rate=32000)

        assert context.sample_rate == 32000
        assert context.input_sample_rate == 32000
        assert sd.queries == []

    def test_fallback_to_default(self, monkeypatch):
        monkeypatch.setattr(audio_module, "_sounddevice", lambda: BrokenSoundDevice())
        context = AudioContext()

        assert context.sample_rate == SAMPLE_RATE
        assert context.input_sample_rate == SAMPLE_RATE
