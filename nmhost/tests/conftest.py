"""Shared test fixtures for the nmhost test suite."""
from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from nmhost.native_host.transport import FramedTransport
from nmhost.nmh_modules.types import TransportConfig


class BufferWriter:
    """In-memory stand-in for asyncio.StreamWriter."""

    def __init__(self) -> None:
        self.buffer = bytearray()
        self.drain_count = 0

    def write(self, data: bytes) -> None:
        self.buffer.extend(data)

    async def drain(self) -> None:
        self.drain_count += 1

    def getvalue(self) -> bytes:
        return bytes(self.buffer)


def make_stream_reader(data: bytes, *, eof: bool = True) -> asyncio.StreamReader:
    """Return a StreamReader preloaded with data.

    Call from inside a running event loop.
    """
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return reader


@pytest.fixture
def buffer_writer() -> BufferWriter:
    """Return an empty in-memory writer."""
    return BufferWriter()


@pytest.fixture
def make_transport() -> Callable[..., tuple[FramedTransport, BufferWriter]]:
    """Return a factory building a transport over in-memory streams.

    The factory must be called inside a running event loop.
    """

    def _make(
        data: bytes = b"",
        *,
        eof: bool = True,
        config: TransportConfig | None = None,
    ) -> tuple[FramedTransport, BufferWriter]:
        writer = BufferWriter()
        transport = FramedTransport(
            make_stream_reader(data, eof=eof), writer, config,
        )
        return transport, writer

    return _make
