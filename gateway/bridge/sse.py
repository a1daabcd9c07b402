import asyncio
import json as json_mod
from collections.abc import AsyncIterator
from typing import Any

DONE_FRAME = "data: [DONE]\n\n"


class SseWriterClosedError(RuntimeError):
    """Raised when a frame is written after the stream was finished or abandoned."""


def sse_event(payload: dict[str, Any]) -> str:
    return f"data: {json_mod.dumps(payload, separators=(',', ':'))}\n\n"


class SseChunkWriter:
    """Single-writer SSE channel feeding a ``StreamingResponse`` body.

    ``write`` and ``write_done`` never block; ``frames`` is the response body
    iterator and ends after the ``[DONE]`` sentinel or ``abandon``.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False
        self._done = False
        self.frames_written = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def done(self) -> bool:
        return self._done

    def write(self, payload: dict[str, Any]) -> None:
        if self._closed:
            raise SseWriterClosedError("SSE stream already closed")
        self._queue.put_nowait(sse_event(payload))
        self.frames_written += 1

    def write_done(self) -> None:
        if self._closed:
            return
        self._queue.put_nowait(DONE_FRAME)
        self.frames_written += 1
        self._done = True
        self._closed = True
        self._queue.put_nowait(None)

    def abandon(self) -> None:
        """Close without the sentinel; the client is gone."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[str]:
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame
