"""
EchoPay packet structure and serialization.

Wire layout (26 bytes, big-endian):

    offset  size  field
    0       4     sender_id      uint32
    4       4     amount_paise   uint32 (minor currency units)
    8       4     timestamp_sec  uint32 (epoch seconds)
    12      2     nonce          uint16
    14      8     signature      raw bytes
    22      4     reserved       zero on send, ignored on receive

The payload is bytes 0-13, the exact range that gets signed.
"""

import struct
from dataclasses import dataclass
from typing import Iterable, Sequence

from . import PACKET_SIZE, PAYLOAD_SIZE, SIGNATURE_SIZE, RESERVED_SIZE, PREAMBLE_BITS
from .errors import FormatError

# sender_id, amount_paise, timestamp_sec, nonce
PAYLOAD_FORMAT = ">IIIH"


@dataclass(frozen=True)
class PacketFields:
    """
    The signed fields of a packet.

    Args:
        sender_id: Sender account id (32-bit unsigned)
        amount_paise: Amount in paise (32-bit unsigned)
        timestamp_sec: Send time in epoch seconds (32-bit unsigned)
        nonce: Per-send random value (16-bit unsigned)
    """

    sender_id: int
    amount_paise: int
    timestamp_sec: int
    nonce: int

    def __post_init__(self):
        if not 0 <= self.sender_id <= 0xFFFFFFFF:
            raise ValueError("sender_id must be 32-bit unsigned")
        if not 0 <= self.amount_paise <= 0xFFFFFFFF:
            raise ValueError("amount_paise must be 32-bit unsigned")
        if not 0 <= self.timestamp_sec <= 0xFFFFFFFF:
            raise ValueError("timestamp_sec must be 32-bit unsigned")
        if not 0 <= self.nonce <= 0xFFFF:
            raise ValueError("nonce must be 16-bit unsigned")


def encode_payload(fields: PacketFields) -> bytes:
    """Pack the signed fields into the 14-byte payload."""
    return struct.pack(
        PAYLOAD_FORMAT,
        fields.sender_id,
        fields.amount_paise,
        fields.timestamp_sec,
        fields.nonce,
    )


def encode(fields: PacketFields, signature: bytes) -> bytes:
    """
    Encode fields and signature into the 26-byte wire packet.

    Raises:
        FormatError: If the signature is not exactly 8 bytes
    """
    if len(signature) != SIGNATURE_SIZE:
        raise FormatError(
            f"signature must be {SIGNATURE_SIZE} bytes, got {len(signature)}"
        )
    return encode_payload(fields) + bytes(signature) + bytes(RESERVED_SIZE)


def decode(data: bytes) -> tuple[PacketFields, bytes]:
    """
    Decode a 26-byte wire packet.

    Returns:
        Tuple of (fields, signature)

    Raises:
        FormatError: If the input is not exactly 26 bytes
    """
    if len(data) != PACKET_SIZE:
        raise FormatError(f"packet must be {PACKET_SIZE} bytes, got {len(data)}")

    sender_id, amount, timestamp, nonce = struct.unpack(
        PAYLOAD_FORMAT, data[:PAYLOAD_SIZE]
    )
    signature = bytes(data[PAYLOAD_SIZE:PAYLOAD_SIZE + SIGNATURE_SIZE])
    return PacketFields(sender_id, amount, timestamp, nonce), signature


def bits_from_bytes(data: bytes) -> list[int]:
    """Convert bytes to a list of bits (MSB first)."""
    bits = []
    for byte in data:
        for i in range(7, -1, -1):
            bits.append((byte >> i) & 1)
    return bits


def bytes_from_bits(bits: Sequence[int]) -> bytes:
    """
    Convert bits (MSB first) back to bytes.

    Trailing bits that do not fill a whole byte are dropped, so the result
    always has len(bits) // 8 bytes.
    """
    data = bytearray()
    for i in range(0, len(bits) - len(bits) % 8, 8):
        byte = 0
        for j in range(8):
            byte = (byte << 1) | (bits[i + j] & 1)
        data.append(byte)
    return bytes(data)


def frame_bits(packet: bytes, preamble: Iterable[int] = PREAMBLE_BITS) -> list[int]:
    """Get the on-air bit frame: preamble followed by the packet bits."""
    return list(preamble) + bits_from_bytes(packet)


class Packet:
    """
    A signed EchoPay packet.

    Packets are built per send and live only as bytes, audio or bit-buffer
    contents; nothing here persists them.
    """

    __slots__ = ("fields", "signature")

    def __init__(self, fields: PacketFields, signature: bytes):
        if len(signature) != SIGNATURE_SIZE:
            raise FormatError(
                f"signature must be {SIGNATURE_SIZE} bytes, got {len(signature)}"
            )
        object.__setattr__(self, "fields", fields)
        object.__setattr__(self, "signature", bytes(signature))

    def __setattr__(self, name, value):
        raise AttributeError("Packet is immutable")

    @property
    def payload(self) -> bytes:
        """The signed 14-byte payload."""
        return encode_payload(self.fields)

    def to_bytes(self) -> bytes:
        return encode(self.fields, self.signature)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Packet":
        fields, signature = decode(data)
        return cls(fields, signature)

    def frame_bits(self) -> list[int]:
        return frame_bits(self.to_bytes())

    def __eq__(self, other) -> bool:
        if not isinstance(other, Packet):
            return NotImplemented
        return self.fields == other.fields and self.signature == other.signature

    def __hash__(self) -> int:
        return hash((self.fields, self.signature))

    def __repr__(self) -> str:
        f = self.fields
        return (
            f"Packet(sender={f.sender_id}, amount={f.amount_paise}p, "
            f"ts={f.timestamp_sec}, nonce={f.nonce}, sig={self.signature.hex()})"
        )
