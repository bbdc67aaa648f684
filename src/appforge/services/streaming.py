"""Queue-backed event stream and the task set that feeds it.

The writer side (``write`` / ``close``) belongs to whoever opened the stream;
the reader side is the async iterator handed to the HTTP response. Each event
is encoded as one JSON object per line. Writing :data:`TERMINATE` ends the
stream without being serialized.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Coroutine, Dict, Optional, Set


logger = logging.getLogger("appforge.streaming")


class _Terminate:
    def __repr__(self) -> str:
        return "TERMINATE"


TERMINATE: Any = _Terminate()
_CLOSED = object()


def encode_event(event: Dict[str, Any]) -> bytes:
    return (json.dumps(event) + "\n").encode("utf-8")


class EventStream:
    """A one-writer, one-reader stream of JSON events."""

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._terminated = False
        self._closed = False
        self.dropped_writes = 0

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, event: Any) -> bool:
        """Queue ``event``. Returns False once the stream has terminated."""

        if self._terminated or self._closed:
            self.dropped_writes += 1
            logger.debug("stream_write_dropped", extra={"dropped": self.dropped_writes})
            return False
        if event is TERMINATE:
            self._terminated = True
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        while True:
            item = await self._queue.get()
            if item is TERMINATE or item is _CLOSED:
                return
            yield item

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for event in self.events():
            yield encode_event(event)


class BackgroundTaskSet:
    """Keeps strong references to fire-and-forget tasks until they finish."""

    def __init__(self) -> None:
        self._tasks: Set["asyncio.Task[Any]"] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: Optional[str] = None) -> "asyncio.Task[Any]":
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def __len__(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding tasks; cancel whatever is left after ``timeout``."""

        if not self._tasks:
            return
        pending = list(self._tasks)
        done, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            logger.warning("background_tasks_cancelled", extra={"count": len(still_pending)})
            await asyncio.gather(*still_pending, return_exceptions=True)
