"""
EchoPay - Near-ultrasonic FSK data link for signed transaction records.
"""

__version__ = "0.1.0"

# Carrier frequencies
SPACE_FREQ = 18500  # Hz - logic 0
MARK_FREQ = 19500  # Hz - logic 1
THRESHOLD_FREQ = 19000  # Hz - midpoint between carriers

# Symbol timing
BIT_DURATION = 0.03  # seconds per tone burst
GAP_DURATION = 0.004  # seconds of silence between bursts
LEAD_TIME = 0.05  # seconds of silence before the first burst
SAFETY_MARGIN = 0.12  # seconds added to the completion wait
MAX_RAMP = 0.004  # seconds, upper bound of the edge ramps
AMPLITUDE = 0.6
SAMPLE_RATE = 48000  # Hz (default)

# Analyser
FFT_SIZE = 4096
SMOOTHING = 0.1

# Packet structure
SENDER_ID_BITS = 32
AMOUNT_BITS = 32  # paise
TIMESTAMP_BITS = 32  # epoch seconds
NONCE_BITS = 16
SIGNATURE_SIZE = 8  # bytes

PAYLOAD_SIZE = (SENDER_ID_BITS + AMOUNT_BITS + TIMESTAMP_BITS + NONCE_BITS) // 8  # = 14
RESERVED_SIZE = 4  # zero bytes after the signature
PACKET_SIZE = PAYLOAD_SIZE + SIGNATURE_SIZE + RESERVED_SIZE  # = 26
PACKET_BITS = PACKET_SIZE * 8  # = 208

# Preamble (binary 10101010), sent ahead of the packet bits
PREAMBLE_BITS = [1, 0, 1, 0, 1, 0, 1, 0]
FRAME_BITS = len(PREAMBLE_BITS) + PACKET_BITS  # = 216

# Authentication
SHARED_SECRET = "ECHOPAY_DEMO_SECRET"
FRESHNESS_WINDOW = 10  # seconds, inclusive

from .errors import (
    EchoPayError,
    FormatError,
    AuthError,
    StalenessError,
    ReplayError,
    DeviceError,
)
from .packet import (
    Packet,
    PacketFields,
    encode,
    decode,
    encode_payload,
    bits_from_bytes,
    bytes_from_bits,
    frame_bits,
)
from .signer import Authenticator, ReplayCache, is_fresh
from .audio import AudioContext
from .encoder import ToneEncoder
from .decoder import (
    FrameSynchronizer,
    ModemDecoder,
    SpectrumAnalyser,
    SymbolClassifier,
    decode_samples,
    decode_file,
)
from .transaction import TransactionSender, TransactionReceiver

__all__ = [
    "EchoPayError",
    "FormatError",
    "AuthError",
    "StalenessError",
    "ReplayError",
    "DeviceError",
    "Packet",
    "PacketFields",
    "encode",
    "decode",
    "encode_payload",
    "bits_from_bytes",
    "bytes_from_bits",
    "frame_bits",
    "Authenticator",
    "ReplayCache",
    "is_fresh",
    "AudioContext",
    "ToneEncoder",
    "FrameSynchronizer",
    "ModemDecoder",
    "SpectrumAnalyser",
    "SymbolClassifier",
    "decode_samples",
    "decode_file",
    "TransactionSender",
    "TransactionReceiver",
]
