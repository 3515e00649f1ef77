"""Bounded asynchronous event stream.

The :class:`EventStream` class connects the task running an agent
loop (the single producer) with the caller consuming its events.  It
supports:

* Awaiting :meth:`push` to append an event to the stream.
* Awaiting :meth:`end` to close the stream and optionally attach a
  result value.
* Using ``async for event in stream`` to consume events in the order
  they were produced.
* Awaiting :meth:`result` to retrieve the final result after the
  stream has ended.

Internally the implementation uses a bounded :class:`asyncio.Queue`.
When the queue is full :meth:`push` suspends the producer until the
consumer catches up; a consumer that stops draining therefore stalls
the loop rather than growing memory without limit.  A private
sentinel marks the end of the stream.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Generic, Optional, TypeVar

# Generic type variables for event payloads and the final result
TEvent = TypeVar("TEvent")
TResult = TypeVar("TResult")

DEFAULT_QUEUE_SIZE = 16

_END = object()


class EventStream(Generic[TEvent, TResult]):
    """A bounded single-consumer asynchronous event queue.

    Parameters
    ----------
    maxsize : int, optional
        Number of events buffered before producers block.  Values
        below one fall back to :data:`DEFAULT_QUEUE_SIZE`.

    Notes
    -----
    Consumers can iterate over events with ``async for``.  When the
    stream is closed the iteration ends.  Use :meth:`result` to
    retrieve the value supplied to :meth:`end`.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        if maxsize < 1:
            maxsize = DEFAULT_QUEUE_SIZE
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._maxsize = maxsize
        self._result: Optional[TResult] = None
        self._done: asyncio.Event = asyncio.Event()
        self._closed: bool = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def maxsize(self) -> int:
        return self._maxsize

    async def __aiter__(self) -> AsyncIterator[TEvent]:
        """Iterate over events until the stream is closed."""
        while True:
            event = await self._queue.get()
            self._queue.task_done()
            if event is _END:
                break
            yield event

    async def push(self, event: TEvent) -> None:
        """Append an event, waiting while the queue is full.

        Raises
        ------
        RuntimeError
            If the stream has already been closed.
        """
        if self._closed:
            raise RuntimeError("Cannot push to a closed EventStream")
        await self._queue.put(event)

    async def end(self, result: Optional[TResult] = None) -> None:
        """Close the stream and optionally set the final result.

        Closing twice is a no-op.  Like :meth:`push` this waits for a
        free slot, so the end marker is never dropped.
        """
        if self._closed:
            return
        self._closed = True
        if result is not None:
            self._result = result
        await self._queue.put(_END)
        self._done.set()

    async def result(self) -> Optional[TResult]:
        """Wait for the stream to close and return the final result."""
        await self._done.wait()
        return self._result
