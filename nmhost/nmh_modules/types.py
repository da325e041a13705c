"""Shared type definitions for the native messaging host."""
from __future__ import annotations

import json
from collections.abc import Callable
from typing import Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, NonNegativeFloat, PositiveInt

from nmhost.nmh_modules.errors import TransportError

# 4-byte unsigned length prefix, native byte order, standard size.
HEADER_FORMAT = "=I"
HEADER_SIZE = 4
MAX_WIRE_LENGTH = 2**32 - 1

Handler = Callable[[bytes], None]
ErrorCallback = Callable[[TransportError], None]


class FrameReader(Protocol):
    """Inbound byte stream, e.g. asyncio.StreamReader."""

    async def readexactly(self, n: int) -> bytes: ...


class FrameWriter(Protocol):
    """Outbound byte stream, e.g. asyncio.StreamWriter."""

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


class TransportConfig(BaseModel):
    """Tunables for the framed transport and read loop.

    max_frame_size of None accepts any length the 32-bit
    header can announce.
    """

    model_config = ConfigDict(frozen=True)

    max_frame_size: PositiveInt | None = Field(
        default=None, le=MAX_WIRE_LENGTH,
    )
    retry_delay: NonNegativeFloat = 0.0


class HostManifest(BaseModel):
    """Native messaging host manifest read by the browser."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    description: str
    path: str
    type_: Literal["stdio"] = Field(default="stdio", alias="type")
    allowed_extensions: list[str] = Field(default_factory=list)

    def to_json(self) -> str:
        """Serialize to pretty-printed JSON with the 'type' key."""
        return json.dumps(self.model_dump(by_alias=True), indent=2)
