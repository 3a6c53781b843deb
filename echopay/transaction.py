"""
Send and receive paths for signed transaction records.

Send:    fields -> payload -> sign -> packet -> preamble + bits -> tones
Receive: tones -> bits -> preamble scan -> packet -> verify + freshness -> fields

Balances, accounts and display formatting belong to the caller; this
module only reports which sender moved how many paise.
"""

import logging
import secrets
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from .audio import AudioContext
from .decoder import ModemDecoder
from .encoder import ToneEncoder
from .errors import AuthError, FormatError, StalenessError
from .packet import Packet, PacketFields, encode_payload
from .signer import Authenticator

# Module-level logger
_logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def new_nonce() -> int:
    """Random 16-bit nonce."""
    return secrets.randbelow(0x10000)


class TransactionSender:
    """Builds signed packets and sends them as sound."""

    def __init__(
        self,
        authenticator: Optional[Authenticator] = None,
        encoder: Optional[ToneEncoder] = None,
        clock: Clock = time.time,
    ):
        self.authenticator = authenticator or Authenticator()
        self.encoder = encoder or ToneEncoder()
        self.clock = clock

    def build_packet(
        self,
        sender_id: int,
        amount_paise: int,
        nonce: Optional[int] = None,
    ) -> Packet:
        """
        Build a signed packet stamped with the current time.

        Raises:
            ValueError: If a field is out of range
        """
        fields = PacketFields(
            sender_id=sender_id,
            amount_paise=amount_paise,
            timestamp_sec=int(self.clock()),
            nonce=new_nonce() if nonce is None else nonce,
        )
        signature = self.authenticator.sign(encode_payload(fields))
        return Packet(fields, signature)

    def send(
        self,
        sender_id: int,
        amount_paise: int,
        context: AudioContext,
        nonce: Optional[int] = None,
    ) -> Packet:
        """
        Build a packet and play it. Blocks until playback has finished.

        Raises:
            DeviceError: If the playback device cannot be opened
        """
        packet = self.build_packet(sender_id, amount_paise, nonce)
        _logger.info(f"Sending {packet!r}")
        self.encoder.transmit(packet.frame_bits(), context)
        return packet

    def write(
        self,
        output_path: str | Path,
        sender_id: int,
        amount_paise: int,
        nonce: Optional[int] = None,
    ) -> Packet:
        """Build a packet and save its audio to a file."""
        packet = self.build_packet(sender_id, amount_paise, nonce)
        self.encoder.render_to_file(output_path, packet.frame_bits())
        return packet


class TransactionReceiver:
    """
    Listens for one packet at a time and validates it.

    The decoder stops on the first candidate. Whether the candidate is
    accepted or rejected, listening does not resume until listen() is
    called again.
    """

    def __init__(
        self,
        context: AudioContext,
        authenticator: Optional[Authenticator] = None,
        clock: Clock = time.time,
        on_received: Optional[Callable[[PacketFields], None]] = None,
        on_rejected: Optional[Callable[[Exception], None]] = None,
        **decoder_kwargs,
    ):
        """
        Initialize receiver.

        Args:
            context: Audio context providing the microphone
            authenticator: Signature/freshness checker (default demo secret)
            clock: Returns current epoch seconds
            on_received: Called with the fields of each accepted packet
            on_rejected: Called with the error for each rejected packet
            **decoder_kwargs: Passed to ModemDecoder
        """
        self.authenticator = authenticator or Authenticator()
        self.clock = clock
        self.on_received = on_received
        self.on_rejected = on_rejected
        self.decoder = ModemDecoder(
            context, on_candidate=self._handle_candidate, **decoder_kwargs
        )

        self.packets_accepted = 0
        self.packets_rejected = 0

        self._done = threading.Event()
        self._result: Optional[PacketFields] = None
        self._error: Optional[Exception] = None

    def validate(self, packet: bytes) -> PacketFields:
        """
        Validate candidate bytes against the receiver's clock.

        Raises:
            FormatError, AuthError, StalenessError
        """
        # Timestamps are whole seconds on both ends
        return self.authenticator.validate(packet, int(self.clock()))

    def _handle_candidate(self, packet: bytes):
        try:
            fields = self.validate(packet)
        except (FormatError, AuthError, StalenessError) as e:
            self.packets_rejected += 1
            _logger.info(f"Rejected candidate: {e}")
            self._error, self._result = e, None
            self._done.set()
            if self.on_rejected:
                self.on_rejected(e)
            return

        self.packets_accepted += 1
        _logger.info(f"Received {fields.amount_paise} paise from sender {fields.sender_id}")
        self._result, self._error = fields, None
        self._done.set()
        if self.on_received:
            self.on_received(fields)

    def listen(self):
        """
        Start listening for the next packet.

        Raises:
            DeviceError: If the microphone cannot be opened
        """
        self._done.clear()
        self._result = None
        self._error = None
        self.decoder.start()

    def stop(self):
        self.decoder.stop()

    def receive(self, timeout: Optional[float] = None) -> PacketFields:
        """
        Listen until one candidate has been validated.

        Returns:
            Fields of the accepted packet

        Raises:
            TimeoutError: Nothing was decoded within `timeout` seconds
            FormatError, AuthError, StalenessError: The candidate was rejected
            DeviceError: The microphone could not be opened
        """
        self.listen()
        try:
            if not self._done.wait(timeout):
                raise TimeoutError(f"no packet received within {timeout}s")
        finally:
            self.stop()

        if self._error is not None:
            raise self._error
        return self._result
