"""Native messaging protocol framing.

A frame is a 4-byte unsigned length prefix in the host's
native byte order followed by exactly that many payload
bytes. The payload is opaque here; JSON handling belongs
to callers.
"""
from __future__ import annotations

import struct

from nmhost.nmh_modules.types import (
    HEADER_FORMAT,
    HEADER_SIZE,
    MAX_WIRE_LENGTH,
)


def encode_header(length: int) -> bytes:
    """Encode a payload length as a 4-byte native-order header.

    Raises ValueError if length does not fit in 32 bits.
    """
    if not 0 <= length <= MAX_WIRE_LENGTH:
        msg = f"Frame length {length} does not fit in 32 bits"
        raise ValueError(msg)
    return struct.pack(HEADER_FORMAT, length)


def decode_header(raw: bytes) -> int:
    """Decode a 4-byte native-order header into a length.

    Raises ValueError if raw is not exactly 4 bytes.
    """
    if len(raw) != HEADER_SIZE:
        msg = (
            f"Expected {HEADER_SIZE} header bytes,"
            f" got {len(raw)}"
        )
        raise ValueError(msg)
    length: int = struct.unpack(HEADER_FORMAT, raw)[0]
    return length


def encode_frame(message: bytes) -> bytes:
    """Return header + message for a single frame."""
    return encode_header(len(message)) + message


def check_frame_size(
    length: int,
    max_frame_size: int | None,
) -> str | None:
    """Return a reason string if length is not allowed, else None."""
    if length > MAX_WIRE_LENGTH:
        return f"Frame length {length} does not fit in 32 bits"
    if max_frame_size is not None and length > max_frame_size:
        return (
            f"Frame length {length} exceeds maximum"
            f" {max_frame_size}"
        )
    return None
