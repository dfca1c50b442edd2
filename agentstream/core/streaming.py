"""StreamSink — ordered, incrementally readable text channel."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, AsyncIterator

from loguru import logger

_CLOSED = object()


class StreamSink:
    """In-memory ordered channel between one producer and one consumer.

    The producer calls ``write`` any number of times and then ``close`` (or
    ``fail``) exactly once. The consumer iterates with ``async for`` and may
    start reading before the producer is done. Chunks are delivered exactly as
    written: no reordering, no coalescing.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._error: BaseException | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, chunk: str) -> None:
        """Append one chunk."""
        if self._closed:
            raise RuntimeError("write() on a closed StreamSink")
        self._queue.put_nowait(chunk)

    def close(self) -> None:
        """Mark the end of the stream. Must be called exactly once."""
        if self._closed:
            raise RuntimeError("StreamSink already closed")
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def fail(self, error: BaseException) -> None:
        """Close the stream with an error re-raised on the consumer side."""
        self._error = error
        self.close()

    def __aiter__(self) -> AsyncIterator[str]:
        return self._drain()

    async def _drain(self) -> AsyncIterator[str]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                if self._error is not None:
                    raise self._error
                return
            yield item


async def pipe(source: AsyncIterable[str], sink: StreamSink) -> None:
    """Copy every chunk from ``source`` into ``sink``, then close it."""
    try:
        async for chunk in source:
            sink.write(chunk)
    except asyncio.CancelledError:
        if not sink.closed:
            sink.close()
        raise
    except Exception as e:
        sink.fail(e)
    else:
        sink.close()


async def sink_stream(source: AsyncIterable[str]) -> AsyncIterator[str]:
    """Run ``source`` as a producer task and yield its chunks through a StreamSink.

    When the consumer stops early (client disconnect closes this generator),
    the producer task is cancelled so in-flight model and tool calls are
    aborted.
    """
    sink = StreamSink()
    producer = asyncio.create_task(pipe(source, sink))
    try:
        async for chunk in sink:
            yield chunk
    finally:
        if not producer.done():
            logger.debug("Stream consumer went away, cancelling producer")
            producer.cancel()
            try:
                await producer
            except asyncio.CancelledError:
                pass
