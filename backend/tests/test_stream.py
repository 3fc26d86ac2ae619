"""Tests for the SSE event channel."""

import asyncio
import json

import pytest

from app.core.stream import EventChannel, StreamEvent


def test_event_to_sse_frame():
    frame = StreamEvent.step("正在處理").to_sse()
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    assert json.loads(frame[len("data: "):]) == {"type": "step", "content": "正在處理"}


def test_completion_event_content():
    event = StreamEvent.completion(conversationId="c1", tokensUsed=10, remainingTokens=90)
    assert event.type == "completion"
    assert event.content == {"conversationId": "c1", "tokensUsed": 10, "remainingTokens": 90}


@pytest.mark.asyncio
async def test_events_drained_in_order():
    channel = EventChannel()
    async with channel:
        await channel.send(StreamEvent.step("a"))
        await channel.send(StreamEvent.chunk("b"))
        await channel.send(StreamEvent.error("c"))

    received = [e async for e in channel.events()]
    assert [(e.type, e.content) for e in received] == [
        ("step", "a"),
        ("response_chunk", "b"),
        ("error", "c"),
    ]


@pytest.mark.asyncio
async def test_close_is_idempotent_and_drops_late_sends():
    channel = EventChannel()
    await channel.send(StreamEvent.step("a"))
    channel.close()
    channel.close()

    assert await channel.send(StreamEvent.step("late")) is False
    received = [e async for e in channel.events()]
    assert len(received) == 1


@pytest.mark.asyncio
async def test_channel_closed_when_producer_raises():
    channel = EventChannel()
    with pytest.raises(RuntimeError):
        async with channel:
            await channel.send(StreamEvent.step("a"))
            raise RuntimeError("boom")
    assert channel.closed


@pytest.mark.asyncio
async def test_consumer_receives_while_producer_runs():
    channel = EventChannel()

    async def producer():
        async with channel:
            for n in range(3):
                await channel.send(StreamEvent.chunk(str(n)))
                await asyncio.sleep(0)

    task = asyncio.create_task(producer())
    received = [e.content async for e in channel.events()]
    await task
    assert received == ["0", "1", "2"]
