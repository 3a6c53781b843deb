"""
Packet signing, verification and freshness checks.
"""

import hashlib
import hmac
import logging
import threading
from typing import Optional, Union

from . import FRESHNESS_WINDOW, PAYLOAD_SIZE, SHARED_SECRET, SIGNATURE_SIZE
from .errors import AuthError, FormatError, ReplayError, StalenessError
from .packet import PacketFields, decode

# Module-level logger
_logger = logging.getLogger(__name__)


def is_fresh(timestamp_sec: int, now: float, window: float = FRESHNESS_WINDOW) -> bool:
    """Check that a timestamp is within `window` seconds of `now` (inclusive)."""
    return abs(now - timestamp_sec) <= window


class ReplayCache:
    """
    Remembers accepted (sender_id, nonce, timestamp_sec) triples.

    Entries older than the freshness window are evicted, since anything that
    old is rejected as stale anyway.
    """

    def __init__(self, window: float = FRESHNESS_WINDOW):
        self.window = window
        self._seen: dict[tuple[int, int, int], int] = {}
        self._lock = threading.Lock()

    def _evict(self, now: float):
        expired = [key for key, ts in self._seen.items() if now - ts > self.window]
        for key in expired:
            del self._seen[key]

    def check_and_add(self, fields: PacketFields, now: float) -> bool:
        """
        Record a packet.

        Returns:
            True if the packet is new, False if it was seen before
        """
        key = (fields.sender_id, fields.nonce, fields.timestamp_sec)
        with self._lock:
            self._evict(now)
            if key in self._seen:
                return False
            self._seen[key] = fields.timestamp_sec
            return True

    def __len__(self) -> int:
        return len(self._seen)

    def clear(self):
        with self._lock:
            self._seen.clear()


class Authenticator:
    """
    Keyed-digest signer.

    signature = SHA-256(payload || secret)[:8]

    This is not HMAC: there is no key derivation or length prefixing.
    Replacing it with a standard MAC changes every signature on the wire,
    so peers would have to upgrade together.
    """

    def __init__(
        self,
        secret: Union[str, bytes] = SHARED_SECRET,
        window: float = FRESHNESS_WINDOW,
        replay_cache: Optional[ReplayCache] = None,
    ):
        """
        Initialize authenticator.

        Args:
            secret: Shared secret (str is UTF-8 encoded)
            window: Freshness window in seconds
            replay_cache: Optional cache for rejecting repeated nonces
        """
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        self._secret = bytes(secret)
        self.window = window
        self.replay_cache = replay_cache

    def sign(self, payload: bytes) -> bytes:
        """
        Compute the 8-byte signature of a payload.

        Raises:
            FormatError: If the payload is not 14 bytes
        """
        if len(payload) != PAYLOAD_SIZE:
            raise FormatError(f"payload must be {PAYLOAD_SIZE} bytes, got {len(payload)}")
        digest = hashlib.sha256(bytes(payload) + self._secret).digest()
        return digest[:SIGNATURE_SIZE]

    def verify(self, payload: bytes, signature: bytes) -> bool:
        """Check a signature against a payload. Never raises."""
        try:
            expected = self.sign(payload)
        except FormatError:
            return False
        try:
            return hmac.compare_digest(expected, bytes(signature))
        except TypeError:
            return False

    def is_fresh(self, timestamp_sec: int, now: float) -> bool:
        return is_fresh(timestamp_sec, now, self.window)

    def validate(self, packet: bytes, now: float) -> PacketFields:
        """
        Validate a received packet.

        The signature and freshness checks both run before either failure is
        raised.

        Args:
            packet: 26-byte wire packet
            now: Current time in epoch seconds

        Returns:
            The packet fields

        Raises:
            FormatError: Wrong packet length
            AuthError: Signature mismatch
            StalenessError: Timestamp outside the freshness window
            ReplayError: Packet already accepted (only with a replay cache)
        """
        fields, signature = decode(packet)
        authentic = self.verify(packet[:PAYLOAD_SIZE], signature)
        fresh = self.is_fresh(fields.timestamp_sec, now)

        if not authentic:
            _logger.debug(f"Rejected packet from {fields.sender_id}: bad signature")
            raise AuthError("invalid signature")
        if not fresh:
            _logger.debug(
                f"Rejected packet from {fields.sender_id}: "
                f"timestamp {fields.timestamp_sec}, now {int(now)}"
            )
            raise StalenessError("stale timestamp")
        if self.replay_cache is not None and not self.replay_cache.check_and_add(fields, now):
            _logger.debug(f"Rejected packet from {fields.sender_id}: nonce {fields.nonce} replayed")
            raise ReplayError("packet already accepted")

        _logger.debug(f"Accepted packet from {fields.sender_id}: {fields.amount_paise} paise")
        return fields
