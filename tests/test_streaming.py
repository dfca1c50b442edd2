"""Tests for agentstream.core.streaming."""

import asyncio

import pytest

from agentstream.core.errors import ProviderError
from agentstream.core.streaming import StreamSink, pipe, sink_stream


async def test_sink_preserves_order():
    sink = StreamSink()
    for chunk in ("a", "b", "c"):
        sink.write(chunk)
    sink.close()
    assert [c async for c in sink] == ["a", "b", "c"]


async def test_sink_consumer_reads_before_close():
    sink = StreamSink()
    received = []

    async def consume():
        async for chunk in sink:
            received.append(chunk)

    task = asyncio.create_task(consume())
    sink.write("first")
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert received == ["first"]
    sink.close()
    await task
    assert received == ["first"]


async def test_sink_close_twice():
    sink = StreamSink()
    sink.close()
    with pytest.raises(RuntimeError):
        sink.close()
    with pytest.raises(RuntimeError):
        sink.write("late")


async def test_sink_fail_reraises():
    sink = StreamSink()
    sink.write("partial")
    sink.fail(ProviderError("boom"))
    received = []
    with pytest.raises(ProviderError):
        async for chunk in sink:
            received.append(chunk)
    assert received == ["partial"]


async def test_pipe_copies_and_closes():
    async def source():
        yield "x"
        yield "y"

    sink = StreamSink()
    await pipe(source(), sink)
    assert sink.closed
    assert [c async for c in sink] == ["x", "y"]


async def test_sink_stream_propagates_error():
    async def source():
        yield "ok"
        raise ProviderError("down")

    chunks = []
    with pytest.raises(ProviderError):
        async for chunk in sink_stream(source()):
            chunks.append(chunk)
    assert chunks == ["ok"]


async def test_sink_stream_cancels_producer_on_early_exit():
    cancelled = asyncio.Event()

    async def source():
        try:
            yield "one"
            await asyncio.sleep(10)
            yield "two"
        except asyncio.CancelledError:
            cancelled.set()
            raise

    stream = sink_stream(source())
    assert await stream.__anext__() == "one"
    await stream.aclose()
    assert cancelled.is_set()
