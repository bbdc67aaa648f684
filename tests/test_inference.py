"""Inference adapter driven by a scripted chat model."""

from __future__ import annotations

import asyncio

import pytest
from langchain_core.messages import ToolMessage

from src.appforge.agents.tools.base import ToolDefinition, ToolRegistry
from src.appforge.domain.agent_models import InferenceContext, ModelConfig
from src.appforge.domain.chat_models import create_system_message, create_user_message
from src.appforge.domain.errors import InferenceError, SecurityError
from src.appforge.services import inference
from src.appforge.services.inference import ChunkBuffer, StreamOptions, execute_inference
from src.appforge.services.model_router import ModelRouter
from pydantic import BaseModel, Field

from tests.utils import FakeChatModel, text_round, tool_round


class _EchoArgs(BaseModel):
    text: str = Field(min_length=2)


def _echo_tool(calls):
    async def _impl(args: _EchoArgs):
        calls.append(args.text)
        return {"content": f"echo: {args.text}"}

    return ToolDefinition(name="echo", description="Echo text back", args_model=_EchoArgs, implementation=_impl)


def _messages():
    return [create_system_message("be brief"), create_user_message("hello")]


def test_streams_text_and_returns_assembled_string():
    model = FakeChatModel([text_round("Hel", "lo ", "there")])
    chunks = []

    result = asyncio.run(
        execute_inference(
            messages=_messages(),
            agent_action_name="conversational_response",
            stream=StreamOptions(on_chunk=chunks.append, chunk_size=4),
            chat_model=model,
        )
    )

    assert result.string == "Hello there"
    assert result.new_messages == []
    assert "".join(chunks) == "Hello there"
    assert chunks == ["Hello ", "there"]


def test_tool_round_dispatches_and_records_trace():
    calls = []
    registry = ToolRegistry([_echo_tool(calls)])
    model = FakeChatModel([tool_round("echo", {"text": "ping"}), text_round("Got it.")])

    result = asyncio.run(
        execute_inference(
            messages=_messages(),
            agent_action_name="conversational_response",
            tools=registry,
            chat_model=model,
        )
    )

    assert calls == ["ping"]
    assert result.string == "Got it."
    assert [m.role for m in result.new_messages] == ["assistant", "tool"]
    assert result.new_messages[0].tool_calls[0]["name"] == "echo"
    assert result.new_messages[1].content == "echo: ping"
    assert result.new_messages[1].tool_call_id == "call_1"
    assert model.bound_tools[0]["function"]["name"] == "echo"
    second_prompt = model.calls[1]
    assert isinstance(second_prompt[-1], ToolMessage)


def test_invalid_tool_arguments_are_reported_to_the_model():
    calls = []
    registry = ToolRegistry([_echo_tool(calls)])
    model = FakeChatModel([tool_round("echo", {"text": "x"}), text_round("Sorry.")])

    result = asyncio.run(
        execute_inference(messages=_messages(), agent_action_name="a", tools=registry, chat_model=model)
    )

    assert calls == []
    assert result.new_messages[1].content.startswith("Error: Invalid arguments for echo")
    assert result.string == "Sorry."


def test_tool_rounds_are_bounded():
    calls = []
    registry = ToolRegistry([_echo_tool(calls)])
    model = FakeChatModel(
        [tool_round("echo", {"text": "one"}), tool_round("echo", {"text": "two"}, call_id="call_2"), text_round("fin")]
    )

    result = asyncio.run(
        execute_inference(
            messages=_messages(), agent_action_name="a", tools=registry, chat_model=model, max_tool_rounds=1
        )
    )

    assert calls == ["one"]
    assert len(model.calls) == 2


def test_unknown_tool_raises_inference_error():
    registry = ToolRegistry([_echo_tool([])])
    model = FakeChatModel([tool_round("missing", {})])

    with pytest.raises(InferenceError):
        asyncio.run(execute_inference(messages=_messages(), agent_action_name="a", tools=registry, chat_model=model))


def test_model_errors_are_wrapped():
    model = FakeChatModel([ConnectionError("reset by peer")])

    with pytest.raises(InferenceError) as excinfo:
        asyncio.run(execute_inference(messages=_messages(), agent_action_name="blueprint", chat_model=model))

    assert "blueprint" in str(excinfo.value)


def test_package_errors_pass_through():
    model = FakeChatModel([SecurityError("prompt rejected")])

    with pytest.raises(SecurityError):
        asyncio.run(execute_inference(messages=_messages(), agent_action_name="a", chat_model=model))


def test_chunk_buffer_flushes_remainder():
    out = []
    buf = ChunkBuffer(out.append, size=10)
    buf.push("abc")
    buf.push("")
    buf.push("defghijk")
    buf.push("xy")
    buf.flush()
    buf.flush()

    assert out == ["abcdefghijk", "xy"]


def test_build_chat_model_applies_user_override(monkeypatch):
    router = ModelRouter(env={"OPENAI_API_KEY": "sk-test"})
    context = InferenceContext(
        agent_id="a-1",
        user_id="u-1",
        user_model_configs={"blueprint": ModelConfig(name="gpt-4o", temperature=0.1, max_tokens=512)},
    )

    model = inference.build_chat_model("blueprint", context, router)

    assert model.model_name == "gpt-4o"
    assert model.temperature == 0.1
    assert model.max_tokens == 512
    assert model.streaming is True


def test_build_chat_model_without_provider_raises():
    with pytest.raises(InferenceError):
        inference.build_chat_model("blueprint", None, ModelRouter(env={}))
