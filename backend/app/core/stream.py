"""
Server-sent event plumbing for the consultant stream.

The orchestrator is the only writer of an EventChannel and the HTTP
response body is the only reader. Closing is idempotent; once closed the
channel silently drops further events, which is how a disconnected client
stops the producer from emitting.
"""
import asyncio
import json
from typing import Any, AsyncIterator, Literal

from pydantic import BaseModel

EventType = Literal["step", "response_chunk", "error", "completion"]

_CLOSED = object()


class StreamEvent(BaseModel):
    type: EventType
    content: Any

    @classmethod
    def step(cls, message: str) -> "StreamEvent":
        return cls(type="step", content=message)

    @classmethod
    def chunk(cls, text: str) -> "StreamEvent":
        return cls(type="response_chunk", content=text)

    @classmethod
    def error(cls, message: str) -> "StreamEvent":
        return cls(type="error", content=message)

    @classmethod
    def completion(cls, **content: Any) -> "StreamEvent":
        return cls(type="completion", content=content)

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.model_dump(), ensure_ascii=False)}\n\n"


class EventChannel:
    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: StreamEvent) -> bool:
        """Queue an event; returns False if the channel is already closed."""
        if self._closed:
            return False
        await self._queue.put(event)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def __aenter__(self) -> "EventChannel":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield events in emission order until the channel is closed."""
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
