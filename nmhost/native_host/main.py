"""Main entry point for the reference native messaging host.

Starts the read loop on stdin, answers each JSON request via
the handler, and writes replies to stdout. Unlike the bare
read loop, the host exits once the browser closes stdin.
"""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import TYPE_CHECKING, Any

from returns.io import IOFailure
from returns.unsafe import unsafe_perform_io

from nmhost.native_host.debug_log import setup_debug_logging
from nmhost.native_host.dispatcher import spawn_read_loop
from nmhost.native_host.handler import handle_message
from nmhost.native_host.transport import open_stdio_transport

if TYPE_CHECKING:
    from pathlib import Path

    from nmhost.native_host.transport import FramedTransport
    from nmhost.nmh_modules.errors import TransportError
    from nmhost.nmh_modules.types import Handler, TransportConfig

logger = logging.getLogger(__name__)


def decode_request(message: bytes) -> dict[str, Any]:
    """Parse a UTF-8 JSON object from a message payload.

    Raises ValueError if the payload is not a JSON object.
    """
    try:
        request = json.loads(message.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        msg = f"Invalid JSON in native message: {exc}"
        raise ValueError(msg) from exc
    if not isinstance(request, dict):
        msg = (
            "Expected a JSON object in native message,"
            f" got {type(request).__name__}"
        )
        raise ValueError(msg)
    return request


def encode_response(response: dict[str, Any]) -> bytes:
    """Serialize a response dict as compact UTF-8 JSON."""
    return json.dumps(response, separators=(",", ":")).encode("utf-8")


async def _send(
    transport: FramedTransport,
    response: dict[str, Any],
) -> None:
    result = await transport.write(encode_response(response))
    if isinstance(result, IOFailure):
        logger.warning(
            "Failed to send response: %s",
            unsafe_perform_io(result.failure()),
        )


def make_request_handler(
    transport: FramedTransport,
    pending: set[asyncio.Task[None]],
) -> Handler:
    """Build a read-loop handler that replies to each request.

    Replies are scheduled as tasks (the handler itself cannot
    await); the transport's write lock keeps them in order.
    """

    def _on_message(message: bytes) -> None:
        try:
            request = decode_request(message)
        except ValueError as exc:
            logger.warning("Failed to decode message: %s", exc)
            response: dict[str, Any] = {
                "success": False,
                "error": "Failed to decode message",
            }
        else:
            logger.debug("Request received: %s", str(request)[:500])
            response = handle_message(request)
        task = asyncio.get_running_loop().create_task(
            _send(transport, response),
        )
        pending.add(task)
        task.add_done_callback(pending.discard)

    return _on_message


async def run_host(
    config: TransportConfig | None = None,
    transport: FramedTransport | None = None,
) -> None:
    """Serve requests until the inbound stream reaches end-of-stream.

    Pending replies are flushed and the read loop is stopped
    before returning.
    """
    if transport is None:
        transport = await open_stdio_transport(config)
    closed = asyncio.Event()
    pending: set[asyncio.Task[None]] = set()

    def _on_error(error: TransportError) -> None:
        if error.error_type == "EndOfStream":
            closed.set()

    dispatcher = spawn_read_loop(
        transport,
        make_request_handler(transport, pending),
        on_error=_on_error,
    )
    logger.debug("--- host started ---")
    await closed.wait()
    if pending:
        await asyncio.gather(*pending)
    if dispatcher.task is not None:
        dispatcher.task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await dispatcher.task
    logger.debug("--- host finished ---")


def main(
    config: TransportConfig | None = None,
    log_file: Path | None = None,
) -> None:
    """Run the native messaging host until stdin closes."""
    setup_debug_logging(log_file)
    try:
        asyncio.run(run_host(config))
    except KeyboardInterrupt:
        raise SystemExit(0) from None


if __name__ == "__main__":
    main()
