"""Background read loop delivering inbound messages to a handler.

The loop reads frames forever. Each decoded message is passed
to the handler synchronously, so handler calls happen in
stream order and never overlap. Read failures are discarded
and the read is retried; the loop never ends on its own.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from typing import TYPE_CHECKING

from returns.io import IOFailure
from returns.unsafe import unsafe_perform_io

from nmhost.nmh_modules.errors import TransportError

if TYPE_CHECKING:
    from nmhost.native_host.transport import FramedTransport
    from nmhost.nmh_modules.types import ErrorCallback, Handler

logger = logging.getLogger(__name__)


class DispatcherState(enum.Enum):
    """Lifecycle of a ReadDispatcher. Idle -> Listening only."""

    IDLE = "idle"
    LISTENING = "listening"


class ReadDispatcher:
    """Turns single-shot transport reads into a message stream.

    on_error, when given, sees every read failure before the
    retry; it cannot stop the loop. retry_delay is the pause
    in seconds before retrying a failed read (0 still yields
    to the event loop).
    """

    def __init__(
        self,
        transport: FramedTransport,
        handler: Handler,
        *,
        on_error: ErrorCallback | None = None,
        retry_delay: float | None = None,
    ) -> None:
        self._transport = transport
        self._handler = handler
        self._on_error = on_error
        self._retry_delay = (
            retry_delay
            if retry_delay is not None
            else transport.config.retry_delay
        )
        self._state = DispatcherState.IDLE
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> DispatcherState:
        """Current lifecycle state."""
        return self._state

    @property
    def task(self) -> asyncio.Task[None] | None:
        """The background task, once started."""
        return self._task

    def start(self) -> asyncio.Task[None]:
        """Start the read loop on the running event loop.

        Returns immediately. Raises RuntimeError if this
        dispatcher is already listening or if no event loop
        is running.
        """
        if self._state is DispatcherState.LISTENING:
            msg = "ReadDispatcher is already listening"
            raise RuntimeError(msg)
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(
            self._read_loop(), name="nmhost-read-loop",
        )
        self._state = DispatcherState.LISTENING
        logger.debug("Read loop started")
        return self._task

    async def _read_loop(self) -> None:
        while True:
            try:
                result = await self._transport.read()
            except Exception as exc:  # noqa: BLE001
                logger.exception("Transport read raised")
                await self._handle_read_failure(
                    TransportError(
                        operation="dispatcher.read_loop",
                        error_type="ReadError",
                        message=f"Unexpected error reading frame: {exc}",
                        context={"exception": type(exc).__name__},
                    ),
                )
                continue
            if isinstance(result, IOFailure):
                await self._handle_read_failure(
                    unsafe_perform_io(result.failure()),
                )
                continue
            await self._dispatch(unsafe_perform_io(result.unwrap()))

    async def _handle_read_failure(self, error: TransportError) -> None:
        logger.debug(
            "Read failed, retrying: %s",
            error,
            extra={"transport_error": error.to_dict()},
        )
        if self._on_error is not None:
            try:
                self._on_error(error)
            except Exception:  # noqa: BLE001
                logger.exception("on_error callback raised")
        # A closed stream fails without suspending; always yield.
        await asyncio.sleep(self._retry_delay)

    async def _dispatch(self, message: bytes) -> None:
        try:
            self._handler(message)
        except Exception:  # noqa: BLE001
            logger.exception(
                "Handler raised on %d-byte message", len(message),
            )


class QueueDispatcher(ReadDispatcher):
    """ReadDispatcher that pushes messages onto an asyncio.Queue.

    With a bounded queue the loop waits for room before the
    next read, so nothing is dropped and order is kept.
    """

    def __init__(
        self,
        transport: FramedTransport,
        *,
        maxsize: int = 0,
        on_error: ErrorCallback | None = None,
        retry_delay: float | None = None,
    ) -> None:
        self.queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=maxsize)
        super().__init__(
            transport,
            self.queue.put_nowait,
            on_error=on_error,
            retry_delay=retry_delay,
        )

    async def _dispatch(self, message: bytes) -> None:
        await self.queue.put(message)


def spawn_read_loop(
    transport: FramedTransport,
    handler: Handler,
    *,
    on_error: ErrorCallback | None = None,
    retry_delay: float | None = None,
) -> ReadDispatcher:
    """Start a background read loop calling handler per message.

    Does not block: the loop runs as a task on the running
    event loop while the caller goes on writing. Start at most
    one loop per inbound stream.
    """
    dispatcher = ReadDispatcher(
        transport,
        handler,
        on_error=on_error,
        retry_delay=retry_delay,
    )
    dispatcher.start()
    return dispatcher


def spawn_queue_reader(
    transport: FramedTransport,
    *,
    maxsize: int = 0,
    on_error: ErrorCallback | None = None,
    retry_delay: float | None = None,
) -> tuple[QueueDispatcher, asyncio.Queue[bytes]]:
    """Start a read loop feeding a queue; consumers call queue.get()."""
    dispatcher = QueueDispatcher(
        transport,
        maxsize=maxsize,
        on_error=on_error,
        retry_delay=retry_delay,
    )
    dispatcher.start()
    return dispatcher, dispatcher.queue
