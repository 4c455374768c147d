"""Progress events produced by the engine and drained by a transport."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass


@dataclass(frozen=True)
class ProgressEvent:
    """One progress step: a message with optional ``current``/``total`` counts."""

    message: str
    current: int | None = None
    total: int | None = None

    @property
    def percent(self) -> float | None:
        if self.current is None or not self.total:
            return None
        return (self.current / self.total) * 100


_CLOSED = object()


class ProgressChannel:
    """Queue-backed stream of progress events.

    The engine calls ``emit()`` and finally ``close()``; a consumer iterates
    the channel with ``async for``. The stream is finite and can be
    iterated only once.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._consumed = False
        self.emitted = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, message: str, current: int | None = None, total: int | None = None) -> None:
        """Append an event to the stream.

        Raises:
            RuntimeError: If the channel has already been closed.
        """
        if self._closed:
            raise RuntimeError("progress channel is closed")
        self._queue.put_nowait(ProgressEvent(message, current, total))
        self.emitted += 1

    def close(self) -> None:
        """Mark the end of the stream. Closing twice is a no-op."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        if self._consumed:
            raise RuntimeError("progress channel can only be consumed once")
        self._consumed = True
        return self._drain()

    async def _drain(self) -> AsyncIterator[ProgressEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
