"""
Tests for signing, verification and freshness.
"""

import hashlib

import pytest

from echopay import (
    AuthError,
    Authenticator,
    FormatError,
    PacketFields,
    ReplayCache,
    ReplayError,
    StalenessError,
    encode,
    encode_payload,
    is_fresh,
)

PAYLOAD = bytes.fromhex("0000002A000030D46553F1000007")


class TestSignature:
    """Test keyed digest."""

    def test_signature_length(self):
        assert len(Authenticator().sign(PAYLOAD)) == 8

    def test_signature_deterministic(self):
        """Same payload and secret always give the same signature."""
        assert Authenticator().sign(PAYLOAD) == Authenticator("ECHOPAY_DEMO_SECRET").sign(PAYLOAD)

    def test_signature_construction(self):
        """SHA-256 over payload followed by the secret, first 8 bytes."""
        expected = hashlib.sha256(PAYLOAD + b"ECHOPAY_DEMO_SECRET").digest()[:8]
        assert Authenticator().sign(PAYLOAD) == expected

    def test_secret_as_bytes(self):
        assert Authenticator(b"ECHOPAY_DEMO_SECRET").sign(PAYLOAD) == Authenticator().sign(PAYLOAD)

    def test_different_secret(self):
        assert Authenticator("other").sign(PAYLOAD) != Authenticator().sign(PAYLOAD)

    def test_sign_wrong_payload_length(self):
        with pytest.raises(FormatError):
            Authenticator().sign(PAYLOAD[:13])


class TestVerify:
    """Test signature verification."""

    def test_verify_valid(self):
        auth = Authenticator()
        assert auth.verify(PAYLOAD, auth.sign(PAYLOAD)) is True

    @pytest.mark.parametrize("index", range(8))
    def test_single_byte_flip(self, index):
        """Flipping any byte of the signature fails verification."""
        auth = Authenticator()
        signature = bytearray(auth.sign(PAYLOAD))
        signature[index] ^= 0x01
        assert auth.verify(PAYLOAD, bytes(signature)) is False

    def test_payload_change(self):
        auth = Authenticator()
        signature = auth.sign(PAYLOAD)
        tampered = PAYLOAD[:7] + b"\xff" + PAYLOAD[8:]
        assert auth.verify(tampered, signature) is False

    @pytest.mark.parametrize("length", [0, 7, 9, 32])
    def test_length_mismatch(self, length):
        auth = Authenticator()
        signature = (auth.sign(PAYLOAD) * 4)[:length]
        assert auth.verify(PAYLOAD, signature) is False

    def test_bad_payload_never_raises(self):
        auth = Authenticator()
        assert auth.verify(b"", auth.sign(PAYLOAD)) is False


class TestFreshness:
    """Test timestamp window."""

    def test_same_time(self):
        assert is_fresh(1700000000, now=1700000000) is True

    def test_boundary_inclusive(self):
        t = 1700000000
        assert is_fresh(t, now=t + 10) is True
        assert is_fresh(t, now=t - 10) is True

    def test_outside_window(self):
        t = 1700000000
        assert is_fresh(t, now=t + 11) is False
        assert is_fresh(t, now=t - 11) is False

    def test_custom_window(self):
        auth = Authenticator(window=2)
        assert auth.is_fresh(100, 102) is True
        assert auth.is_fresh(100, 103) is False


class TestValidate:
    """Test full packet validation."""

    def make_packet(self, auth, timestamp=1700000000, nonce=7):
        fields = PacketFields(42, 12500, timestamp, nonce)
        return encode(fields, auth.sign(encode_payload(fields)))

    def test_valid_packet(self):
        auth = Authenticator()
        fields = auth.validate(self.make_packet(auth), now=1700000004)
        assert fields == PacketFields(42, 12500, 1700000000, 7)

    def test_wrong_length(self):
        with pytest.raises(FormatError):
            Authenticator().validate(bytes(25), now=0)

    def test_bad_signature(self):
        auth = Authenticator()
        packet = bytearray(self.make_packet(auth))
        packet[14] ^= 0xFF
        with pytest.raises(AuthError):
            auth.validate(bytes(packet), now=1700000000)

    def test_wrong_secret(self):
        packet = self.make_packet(Authenticator("sender secret"))
        with pytest.raises(AuthError):
            Authenticator("receiver secret").validate(packet, now=1700000000)

    def test_stale(self):
        auth = Authenticator()
        with pytest.raises(StalenessError):
            auth.validate(self.make_packet(auth), now=1700000011)

    def test_forged_and_stale_reports_auth(self):
        auth = Authenticator()
        packet = bytearray(self.make_packet(auth))
        packet[20] ^= 0x10
        with pytest.raises(AuthError):
            auth.validate(bytes(packet), now=1800000000)

    def test_replay_allowed_without_cache(self):
        auth = Authenticator()
        packet = self.make_packet(auth)
        auth.validate(packet, now=1700000001)
        auth.validate(packet, now=1700000002)

    def test_replay_rejected_with_cache(self):
        auth = Authenticator(replay_cache=ReplayCache())
        packet = self.make_packet(auth)
        auth.validate(packet, now=1700000001)
        with pytest.raises(ReplayError):
            auth.validate(packet, now=1700000002)

    def test_replay_error_is_staleness(self):
        assert issubclass(ReplayError, StalenessError)


class TestReplayCache:
    """Test nonce tracking."""

    def test_new_and_repeat(self):
        cache = ReplayCache()
        fields = PacketFields(1, 100, 1000, 5)
        assert cache.check_and_add(fields, now=1000) is True
        assert cache.check_and_add(fields, now=1001) is False

    def test_different_nonce(self):
        cache = ReplayCache()
        assert cache.check_and_add(PacketFields(1, 100, 1000, 5), now=1000) is True
        assert cache.check_and_add(PacketFields(1, 100, 1000, 6), now=1000) is True
        assert len(cache) == 2

    def test_eviction(self):
        cache = ReplayCache(window=10)
        cache.check_and_add(PacketFields(1, 100, 1000, 5), now=1000)
        cache.check_and_add(PacketFields(2, 100, 1015, 5), now=1015)
        assert len(cache) == 1

    def test_clear(self):
        cache = ReplayCache()
        cache.check_and_add(PacketFields(1, 100, 1000, 5), now=1000)
        cache.clear()
        assert len(cache) == 0
