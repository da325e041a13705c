"""Tests for the background read dispatcher."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from nmhost.native_host.dispatcher import (
    DispatcherState,
    QueueDispatcher,
    ReadDispatcher,
    spawn_queue_reader,
    spawn_read_loop,
)
from nmhost.native_host.protocol import encode_frame
from nmhost.native_host.transport import FramedTransport
from nmhost.nmh_modules.errors import TransportError
from nmhost.nmh_modules.types import TransportConfig


class _FlakyReader:
    """Raises OSError for the first `failures` reads, then serves data."""

    def __init__(self, data: bytes, failures: int = 1) -> None:
        self._data = bytearray(data)
        self._failures = failures

    async def readexactly(self, n: int) -> bytes:
        if self._failures > 0:
            self._failures -= 1
            msg = "Resource temporarily unavailable"
            raise OSError(msg)
        if len(self._data) < n:
            partial = bytes(self._data)
            self._data.clear()
            raise asyncio.IncompleteReadError(partial, n)
        chunk = bytes(self._data[:n])
        del self._data[:n]
        return chunk


class _RaisingOnceReader:
    """Raises RuntimeError on the first read, then serves data."""

    def __init__(self, data: bytes) -> None:
        self._raised = False
        self._inner = _FlakyReader(data, failures=0)

    async def readexactly(self, n: int) -> bytes:
        if not self._raised:
            self._raised = True
            msg = "reader in a bad state"
            raise RuntimeError(msg)
        return await self._inner.readexactly(n)


async def _wait_for(condition: Any, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not condition():
            await asyncio.sleep(0)

    await asyncio.wait_for(_poll(), timeout)


async def _stop(dispatcher: ReadDispatcher) -> None:
    assert dispatcher.task is not None
    dispatcher.task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await dispatcher.task


class TestReadDispatcherState:
    """Tests for the Idle -> Listening lifecycle."""

    def test_starts_idle(self, make_transport: Any) -> None:
        """A new dispatcher is idle with no task."""

        async def scenario() -> ReadDispatcher:
            transport, _ = make_transport()
            return ReadDispatcher(transport, lambda _m: None)

        dispatcher = asyncio.run(scenario())
        assert dispatcher.state is DispatcherState.IDLE
        assert dispatcher.task is None

    def test_start_moves_to_listening(self, make_transport: Any) -> None:
        """start() returns the task and switches state."""

        async def scenario() -> tuple[DispatcherState, bool]:
            transport, _ = make_transport(eof=False)
            dispatcher = ReadDispatcher(transport, lambda _m: None)
            task = dispatcher.start()
            state = dispatcher.state
            same = task is dispatcher.task
            await _stop(dispatcher)
            return state, same

        state, same = asyncio.run(scenario())
        assert state is DispatcherState.LISTENING
        assert same

    def test_second_start_raises(self, make_transport: Any) -> None:
        """A dispatcher cannot be started twice."""

        async def scenario() -> None:
            transport, _ = make_transport(eof=False)
            dispatcher = ReadDispatcher(transport, lambda _m: None)
            dispatcher.start()
            try:
                with pytest.raises(RuntimeError, match="already listening"):
                    dispatcher.start()
            finally:
                await _stop(dispatcher)

        asyncio.run(scenario())

    def test_start_without_loop_raises(self, make_transport: Any) -> None:
        """start() needs a running event loop."""

        async def build() -> ReadDispatcher:
            transport, _ = make_transport()
            return ReadDispatcher(transport, lambda _m: None)

        dispatcher = asyncio.run(build())
        with pytest.raises(RuntimeError):
            dispatcher.start()
        assert dispatcher.state is DispatcherState.IDLE


class TestSpawnReadLoop:
    """Tests for message delivery through spawn_read_loop."""

    def test_returns_without_blocking(self, make_transport: Any) -> None:
        """spawn_read_loop returns before any message arrives."""

        async def scenario() -> list[bytes]:
            transport, _ = make_transport(eof=False)
            log: list[bytes] = []
            dispatcher = spawn_read_loop(transport, log.append)
            assert dispatcher.state is DispatcherState.LISTENING
            await asyncio.sleep(0)
            await _stop(dispatcher)
            return log

        assert asyncio.run(scenario()) == []

    def test_delivers_in_stream_order(self, make_transport: Any) -> None:
        """Frames A, B, C reach the handler as [A, B, C]."""

        async def scenario() -> list[bytes]:
            data = b"".join(encode_frame(m) for m in (b"A", b"B", b"C"))
            transport, _ = make_transport(data)
            log: list[bytes] = []
            dispatcher = spawn_read_loop(transport, log.append)
            await _wait_for(lambda: len(log) == 3)
            await _stop(dispatcher)
            return log

        assert asyncio.run(scenario()) == [b"A", b"B", b"C"]

    def test_delivers_empty_message(self, make_transport: Any) -> None:
        """A zero-length frame is delivered as b''."""

        async def scenario() -> list[bytes]:
            transport, _ = make_transport(encode_frame(b""))
            log: list[bytes] = []
            dispatcher = spawn_read_loop(transport, log.append)
            await _wait_for(lambda: len(log) == 1)
            await _stop(dispatcher)
            return log

        assert asyncio.run(scenario()) == [b""]

    def test_survives_transient_failure(self) -> None:
        """A failed read is retried and the next frame delivered."""

        async def scenario() -> list[bytes]:
            reader = _FlakyReader(encode_frame(b"after"), failures=1)
            transport = FramedTransport(reader, _NullWriter())
            log: list[bytes] = []
            dispatcher = spawn_read_loop(transport, log.append)
            await _wait_for(lambda: log == [b"after"])
            await _stop(dispatcher)
            return log

        assert asyncio.run(scenario()) == [b"after"]

    def test_keeps_listening_after_eof(self, make_transport: Any) -> None:
        """End of stream does not finish the task."""

        async def scenario() -> bool:
            transport, _ = make_transport(b"")
            dispatcher = spawn_read_loop(transport, lambda _m: None)
            for _ in range(50):
                await asyncio.sleep(0)
            done = dispatcher.task is not None and dispatcher.task.done()
            await _stop(dispatcher)
            return done

        assert asyncio.run(scenario()) is False

    def test_writes_proceed_while_listening(self, make_transport: Any) -> None:
        """The caller can write while the loop spins on a closed stream."""

        async def scenario() -> bytes:
            transport, writer = make_transport(b"")
            dispatcher = spawn_read_loop(transport, lambda _m: None)
            await transport.write(b"out")
            await _stop(dispatcher)
            return writer.getvalue()

        assert asyncio.run(scenario()) == encode_frame(b"out")

    def test_handler_error_does_not_stop_loop(self, make_transport: Any) -> None:
        """A raising handler is logged and the next message delivered."""

        async def scenario() -> list[bytes]:
            data = encode_frame(b"bad") + encode_frame(b"good")
            transport, _ = make_transport(data)
            log: list[bytes] = []

            def handler(message: bytes) -> None:
                if message == b"bad":
                    msg = "boom"
                    raise ValueError(msg)
                log.append(message)

            dispatcher = spawn_read_loop(transport, handler)
            await _wait_for(lambda: log == [b"good"])
            await _stop(dispatcher)
            return log

        assert asyncio.run(scenario()) == [b"good"]

    def test_on_error_sees_failures(self) -> None:
        """on_error receives each TransportError before the retry."""

        async def scenario() -> tuple[list[TransportError], list[bytes]]:
            reader = _FlakyReader(encode_frame(b"ok"), failures=2)
            transport = FramedTransport(reader, _NullWriter())
            errors: list[TransportError] = []
            log: list[bytes] = []
            dispatcher = spawn_read_loop(
                transport, log.append, on_error=errors.append,
            )
            await _wait_for(lambda: log == [b"ok"])
            await _stop(dispatcher)
            return errors, log

        errors, log = asyncio.run(scenario())
        assert log == [b"ok"]
        assert len(errors) >= 2
        assert errors[0].error_type == "ReadError"

    def test_on_error_exception_is_contained(self) -> None:
        """A raising on_error callback does not end the loop."""

        def on_error(_error: TransportError) -> None:
            msg = "callback failed"
            raise RuntimeError(msg)

        async def scenario() -> list[bytes]:
            reader = _FlakyReader(encode_frame(b"ok"), failures=1)
            transport = FramedTransport(reader, _NullWriter())
            log: list[bytes] = []
            dispatcher = spawn_read_loop(
                transport, log.append, on_error=on_error,
            )
            await _wait_for(lambda: log == [b"ok"])
            await _stop(dispatcher)
            return log

        assert asyncio.run(scenario()) == [b"ok"]

    def test_unexpected_reader_exception_is_retried(self) -> None:
        """A non-OS exception from the reader does not end the loop."""

        async def scenario() -> tuple[list[TransportError], list[bytes]]:
            reader = _RaisingOnceReader(encode_frame(b"after"))
            transport = FramedTransport(reader, _NullWriter())
            errors: list[TransportError] = []
            log: list[bytes] = []
            dispatcher = spawn_read_loop(
                transport, log.append, on_error=errors.append,
            )
            await _wait_for(lambda: log == [b"after"])
            alive = dispatcher.task is not None and not dispatcher.task.done()
            await _stop(dispatcher)
            assert alive
            return errors, log

        errors, log = asyncio.run(scenario())
        assert log == [b"after"]
        assert errors[0].error_type == "ReadError"
        assert errors[0].context == {"exception": "RuntimeError"}

    def test_oversized_frame_does_not_break_framing(
        self, make_transport: Any,
    ) -> None:
        """Bytes inside a rejected frame are never delivered."""

        async def scenario() -> tuple[list[TransportError], list[bytes]]:
            data = encode_frame(encode_frame(b"hi")) + encode_frame(b"ok")
            transport, _ = make_transport(
                data, config=TransportConfig(max_frame_size=5),
            )
            errors: list[TransportError] = []
            log: list[bytes] = []
            dispatcher = spawn_read_loop(
                transport, log.append, on_error=errors.append,
            )
            await _wait_for(lambda: log == [b"ok"])
            await _stop(dispatcher)
            return errors, log

        errors, log = asyncio.run(scenario())
        assert log == [b"ok"]
        assert errors[0].error_type == "FrameTooLarge"

    def test_failure_log_carries_error_fields(
        self, make_transport: Any, caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Read failures are logged with the error as a dict."""
        caplog.set_level(logging.DEBUG, logger="nmhost.native_host.dispatcher")

        async def scenario() -> None:
            transport, _ = make_transport(b"")
            dispatcher = spawn_read_loop(transport, lambda _m: None)
            await _wait_for(
                lambda: any(
                    hasattr(r, "transport_error") for r in caplog.records
                ),
            )
            await _stop(dispatcher)

        asyncio.run(scenario())
        record = next(
            r for r in caplog.records if hasattr(r, "transport_error")
        )
        assert record.transport_error["error_type"] == "EndOfStream"
        assert record.transport_error["kind"] == "TransportError"


class TestSpawnQueueReader:
    """Tests for queue-based delivery."""

    def test_queue_preserves_order(self, make_transport: Any) -> None:
        """Messages come off the queue in stream order."""

        async def scenario() -> list[bytes]:
            data = b"".join(encode_frame(m) for m in (b"1", b"2", b"3"))
            transport, _ = make_transport(data)
            dispatcher, queue = spawn_queue_reader(transport)
            received = [await queue.get() for _ in range(3)]
            await _stop(dispatcher)
            return received

        assert asyncio.run(scenario()) == [b"1", b"2", b"3"]

    def test_bounded_queue_waits_instead_of_dropping(
        self, make_transport: Any,
    ) -> None:
        """With maxsize=1 every message is still delivered."""

        async def scenario() -> list[bytes]:
            messages = [bytes([i]) for i in range(5)]
            data = b"".join(encode_frame(m) for m in messages)
            transport, _ = make_transport(data)
            dispatcher, queue = spawn_queue_reader(transport, maxsize=1)
            await asyncio.sleep(0)
            received = [await queue.get() for _ in range(5)]
            await _stop(dispatcher)
            return received

        assert asyncio.run(scenario()) == [bytes([i]) for i in range(5)]

    def test_returns_queue_dispatcher(self, make_transport: Any) -> None:
        """The returned dispatcher owns the returned queue."""

        async def scenario() -> bool:
            transport, _ = make_transport(eof=False)
            dispatcher, queue = spawn_queue_reader(transport)
            owned = isinstance(dispatcher, QueueDispatcher) and (
                dispatcher.queue is queue
            )
            await _stop(dispatcher)
            return owned

        assert asyncio.run(scenario())


class _NullWriter:
    def write(self, data: bytes) -> None:
        pass

    async def drain(self) -> None:
        pass
