from __future__ import annotations

import asyncio
import json

import pytest

from src.appforge.core.state_machine import TurnState, TurnStateMachine, is_terminal, is_valid_transition
from src.appforge.services.streaming import TERMINATE, BackgroundTaskSet, EventStream, encode_event


async def _collect(stream):
    return [chunk async for chunk in stream]


def test_stream_encodes_one_json_object_per_line():
    async def scenario():
        stream = EventStream()
        stream.write({"message": "start"})
        stream.write({"chunk": "abc"})
        stream.write(TERMINATE)
        return await _collect(stream)

    chunks = asyncio.run(scenario())

    assert chunks == [b'{"message": "start"}\n', b'{"chunk": "abc"}\n']
    assert json.loads(chunks[1]) == {"chunk": "abc"}


def test_writes_after_terminate_are_dropped():
    async def scenario():
        stream = EventStream()
        stream.write({"a": 1})
        assert stream.write(TERMINATE) is True
        assert stream.write({"late": True}) is False
        assert stream.write(TERMINATE) is False
        stream.close()
        stream.close()
        events = [e async for e in stream.events()]
        return stream, events

    stream, events = asyncio.run(scenario())

    assert events == [{"a": 1}]
    assert stream.terminated and stream.closed
    assert stream.dropped_writes == 2


def test_close_without_terminate_ends_reader():
    async def scenario():
        stream = EventStream()
        stream.write({"a": 1})
        stream.close()
        assert stream.write({"b": 2}) is False
        return await _collect(stream)

    assert asyncio.run(scenario()) == [encode_event({"a": 1})]


@pytest.mark.asyncio
async def test_reader_waits_for_background_writer():
    stream = EventStream()
    tasks = BackgroundTaskSet()

    async def writer():
        await asyncio.sleep(0)
        stream.write({"n": 1})
        await asyncio.sleep(0)
        stream.write(TERMINATE)

    tasks.spawn(writer(), name="writer")
    events = [e async for e in stream.events()]
    await tasks.drain()

    assert events == [{"n": 1}]
    assert len(tasks) == 0


def test_drain_cancels_stragglers():
    async def scenario():
        tasks = BackgroundTaskSet()
        task = tasks.spawn(asyncio.sleep(10))
        await tasks.drain(timeout=0.01)
        return task

    task = asyncio.run(scenario())

    assert task.cancelled()


def test_turn_state_machine_paths():
    machine = TurnStateMachine()
    machine.advance(TurnState.STREAMING)
    machine.advance(TurnState.STREAMING)
    machine.advance(TurnState.COMPLETED)

    assert machine.history == [TurnState.PENDING, TurnState.STREAMING, TurnState.COMPLETED]
    assert machine.finished
    with pytest.raises(ValueError):
        machine.advance(TurnState.FALLBACK)


def test_turn_can_fail_before_streaming():
    assert is_valid_transition(TurnState.PENDING, TurnState.FALLBACK)
    assert not is_valid_transition(TurnState.FALLBACK, TurnState.STREAMING)
    assert is_terminal(TurnState.FALLBACK)
    assert not is_terminal(TurnState.STREAMING)
