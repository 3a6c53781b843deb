"""
EchoPay error types.

Validation failures (format, signature, freshness) are terminal for the
candidate packet that raised them. Device errors are passed straight to the
caller; nothing in the package retries.
"""


class EchoPayError(Exception):
    """Base class for all EchoPay errors."""


class FormatError(EchoPayError):
    """Wrong packet, payload or signature length."""


class AuthError(EchoPayError):
    """Signature does not match the payload."""


class StalenessError(EchoPayError):
    """Timestamp lies outside the freshness window."""


class ReplayError(StalenessError):
    """Packet was already accepted inside the freshness window."""


class DeviceError(EchoPayError):
    """Audio capture or playback could not be opened or failed mid-stream."""
