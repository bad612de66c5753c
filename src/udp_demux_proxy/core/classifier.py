"""Header-based protocol classification for incoming datagrams.

The proxy never parses the protocols it routes. It looks at the first four bytes
of a datagram and decides whether it looks like WireGuard; everything else,
including datagrams too short to tell, goes to the QUIC backend.

WireGuard messages start with a one-byte message type (1 to 4) followed by three
reserved zero bytes:
- 1: Handshake Initiation (148 bytes)
- 2: Handshake Response (92 bytes)
- 3: Cookie Reply (64 bytes)
- 4: Transport Data (at least 32 bytes)

Example:
    tag = classify(datagram)
    if tag is ProtocolTag.WIREGUARD:
        logger.debug(f"WireGuard {describe(datagram)}")
"""

from enum import Enum
from typing import Final

HEADER_SIZE: Final = 4
WG_MIN_TYPE: Final = 1
WG_MAX_TYPE: Final = 4
WG_RESERVED: Final = b"\x00\x00\x00"

# Message type -> (name, exact length or None, minimum length)
WG_MESSAGE_TYPES: Final = {
    1: ("Handshake Initiation", 148, 148),
    2: ("Handshake Response", 92, 92),
    3: ("Cookie Reply", 64, 64),
    4: ("Transport Data", None, 32),
}


class ProtocolTag(Enum):
    """Protocol a datagram is routed by."""

    WIREGUARD = "wireguard"
    QUIC = "quic"

    def __str__(self) -> str:
        return self.value


def classify(data: bytes) -> ProtocolTag:
    """Classify a datagram by its header bytes.

    Args:
        data: Raw datagram payload

    Returns:
        ProtocolTag: ``WIREGUARD`` when the header looks like a WireGuard message,
            ``QUIC`` otherwise
    """
    if (
        len(data) >= HEADER_SIZE
        and WG_MIN_TYPE <= data[0] <= WG_MAX_TYPE
        and data[1:HEADER_SIZE] == WG_RESERVED
    ):
        return ProtocolTag.WIREGUARD
    return ProtocolTag.QUIC


def describe(data: bytes) -> str:
    """Describe a datagram for diagnostics.

    The total length refines the description of WireGuard messages but has no
    influence on :func:`classify`.
    """
    if classify(data) is ProtocolTag.QUIC:
        if len(data) < HEADER_SIZE:
            return "too short to classify"
        return "QUIC/other"

    message_type = data[0]
    name, exact_length, min_length = WG_MESSAGE_TYPES[message_type]
    if exact_length is not None and len(data) != exact_length:
        return f"Unknown type {message_type}"
    if len(data) < min_length:
        return f"Unknown type {message_type}"
    return name
