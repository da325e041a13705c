"""Framed transport over injected byte streams.

read_frame/write_frame decode or encode exactly one frame
and report failures as IOFailure values, never raising.
FramedTransport binds a reader/writer pair and serializes
writes so concurrent callers cannot interleave frames.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from returns.io import IOFailure, IOResult, IOSuccess
from returns.unsafe import unsafe_perform_io

from nmhost.native_host import io_ops
from nmhost.native_host.protocol import (
    check_frame_size,
    decode_header,
    encode_header,
)
from nmhost.nmh_modules.errors import TransportError
from nmhost.nmh_modules.types import HEADER_SIZE, TransportConfig

if TYPE_CHECKING:
    from nmhost.nmh_modules.types import FrameReader, FrameWriter

logger = logging.getLogger(__name__)

DISCARD_CHUNK_SIZE = 64 * 1024


async def _read_exactly(
    reader: FrameReader,
    count: int,
    part: str,
) -> IOResult[bytes, TransportError]:
    """Read exactly count bytes, mapping stream errors to IOFailure."""
    try:
        data = await reader.readexactly(count)
    except asyncio.IncompleteReadError as exc:
        received = len(exc.partial)
        if received == 0 and part == "header":
            return IOFailure(
                TransportError(
                    operation="transport.read_frame",
                    error_type="EndOfStream",
                    message="Input stream closed before a frame header",
                    context={"expected": count, "received": 0},
                ),
            )
        return IOFailure(
            TransportError(
                operation="transport.read_frame",
                error_type="IncompleteRead",
                message=(
                    f"Input stream closed after {received} of"
                    f" {count} {part} bytes"
                ),
                context={
                    "part": part,
                    "expected": count,
                    "received": received,
                },
            ),
        )
    except OSError as exc:
        return IOFailure(
            TransportError(
                operation="transport.read_frame",
                error_type="ReadError",
                message=f"OS error reading frame {part}: {exc}",
                context={"part": part, "expected": count},
            ),
        )
    return IOSuccess(data)


async def _discard(
    reader: FrameReader,
    length: int,
) -> IOResult[None, TransportError]:
    """Consume and drop length body bytes in bounded chunks."""
    remaining = length
    while remaining > 0:
        count = min(remaining, DISCARD_CHUNK_SIZE)
        chunk = await _read_exactly(reader, count, "body")
        if isinstance(chunk, IOFailure):
            return chunk
        remaining -= count
    logger.debug("Skipped oversized frame (%d bytes)", length)
    return IOSuccess(None)


async def read_frame(
    reader: FrameReader,
    *,
    max_frame_size: int | None = None,
) -> IOResult[bytes, TransportError]:
    """Read one length-prefixed message from reader.

    Suspends until the 4 header bytes arrive, then until the
    announced number of body bytes arrive. A stream that ends
    early yields IOFailure, never a short message. When
    max_frame_size is set, an oversized frame fails with
    FrameTooLarge after its body is skipped, so the next read
    starts on a frame boundary.
    """
    header_result = await _read_exactly(reader, HEADER_SIZE, "header")
    if isinstance(header_result, IOFailure):
        return header_result
    header = unsafe_perform_io(header_result.unwrap())
    length = decode_header(header)

    reason = check_frame_size(length, max_frame_size)
    if reason is not None:
        skipped = await _discard(reader, length)
        if isinstance(skipped, IOFailure):
            return skipped
        return IOFailure(
            TransportError(
                operation="transport.read_frame",
                error_type="FrameTooLarge",
                message=reason,
                context={
                    "length": length,
                    "max_frame_size": max_frame_size,
                },
            ),
        )

    body_result = await _read_exactly(reader, length, "body")
    if isinstance(body_result, IOSuccess):
        logger.debug("Read frame (%d bytes)", length)
    return body_result


async def write_frame(
    writer: FrameWriter,
    message: bytes,
    *,
    max_frame_size: int | None = None,
) -> IOResult[None, TransportError]:
    """Write one length-prefixed message to writer and flush it.

    Lengths that do not fit the 32-bit header, or exceed
    max_frame_size, fail with FrameTooLarge instead of being
    truncated.
    """
    length = len(message)
    reason = check_frame_size(length, max_frame_size)
    if reason is not None:
        return IOFailure(
            TransportError(
                operation="transport.write_frame",
                error_type="FrameTooLarge",
                message=reason,
                context={
                    "length": length,
                    "max_frame_size": max_frame_size,
                },
            ),
        )

    try:
        writer.write(encode_header(length))
        writer.write(message)
    except OSError as exc:
        return IOFailure(
            TransportError(
                operation="transport.write_frame",
                error_type="WriteError",
                message=f"OS error writing frame: {exc}",
                context={"length": length},
            ),
        )

    try:
        await writer.drain()
    except OSError as exc:
        return IOFailure(
            TransportError(
                operation="transport.write_frame",
                error_type="FlushError",
                message=f"OS error flushing frame: {exc}",
                context={"length": length},
            ),
        )
    logger.debug("Wrote frame (%d bytes)", length)
    return IOSuccess(None)


class FramedTransport:
    """A reader/writer pair speaking the native messaging framing.

    read() is meant for a single consumer (the read loop).
    write() may be called from any number of tasks; writes are
    serialized by an internal lock, in arrival order.
    """

    def __init__(
        self,
        reader: FrameReader,
        writer: FrameWriter,
        config: TransportConfig | None = None,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self.config = config or TransportConfig()
        self._write_lock = asyncio.Lock()

    async def read(self) -> IOResult[bytes, TransportError]:
        """Read the next message from the inbound stream."""
        return await read_frame(
            self._reader, max_frame_size=self.config.max_frame_size,
        )

    async def write(self, message: bytes) -> IOResult[None, TransportError]:
        """Write one message to the outbound stream and flush it."""
        async with self._write_lock:
            return await write_frame(
                self._writer,
                message,
                max_frame_size=self.config.max_frame_size,
            )


async def open_stdio_transport(
    config: TransportConfig | None = None,
) -> FramedTransport:
    """Build a FramedTransport over the process's stdin/stdout.

    Must be awaited inside the event loop that will run the
    read loop.
    """
    reader, writer = await io_ops.connect_stdio_streams()
    return FramedTransport(reader, writer, config)
