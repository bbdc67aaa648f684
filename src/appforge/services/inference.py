"""Inference adapter: one chat completion with tools, streamed.

``execute_inference`` drives the model through as many tool rounds as it asks
for (bounded by ``max_tool_rounds``), relays text fragments through
``StreamOptions.on_chunk`` in batches of ``chunk_size`` characters, and returns
the assembled text together with the tool-call trace messages it produced.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    AIMessageChunk,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langchain_openai import ChatOpenAI

from ..agents.tools.base import ToolArgumentsError, ToolRegistry
from ..config import get_config
from ..domain.agent_models import InferenceContext
from ..domain.chat_models import ConversationMessage
from ..domain.errors import AppForgeError, InferenceError
from .model_router import ModelRouter


LOG = logging.getLogger("appforge.llm")

DEFAULT_CHUNK_SIZE = 64


@dataclass
class StreamOptions:
    on_chunk: Callable[[str], None]
    chunk_size: int = DEFAULT_CHUNK_SIZE


@dataclass
class InferenceResult:
    string: str
    new_messages: List[ConversationMessage] = field(default_factory=list)


class ChunkBuffer:
    """Batches streamed text so the sink sees fragments of at least ``size`` chars."""

    def __init__(self, sink: Callable[[str], None], size: int = DEFAULT_CHUNK_SIZE) -> None:
        self._sink = sink
        self._size = max(1, size)
        self._parts: List[str] = []
        self._length = 0

    def push(self, text: str) -> None:
        if not text:
            return
        self._parts.append(text)
        self._length += len(text)
        if self._length >= self._size:
            self.flush()

    def flush(self) -> None:
        if not self._parts:
            return
        fragment = "".join(self._parts)
        self._parts = []
        self._length = 0
        self._sink(fragment)


def _content_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: List[str] = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type") in (None, "text"):
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    return str(content)


def to_langchain_messages(messages: Sequence[ConversationMessage]) -> List[BaseMessage]:
    converted: List[BaseMessage] = []
    for msg in messages:
        content = msg.content if msg.content is not None else ""
        if msg.role == "system":
            converted.append(SystemMessage(content=content))
        elif msg.role == "user":
            converted.append(HumanMessage(content=content))
        elif msg.role == "tool":
            converted.append(ToolMessage(content=_content_text(content), tool_call_id=msg.tool_call_id or "", name=msg.name))
        else:
            converted.append(AIMessage(content=content, tool_calls=list(msg.tool_calls or [])))
    return converted


def build_chat_model(
    agent_action_name: str,
    context: Optional[InferenceContext],
    router: Optional[ModelRouter] = None,
) -> ChatOpenAI:
    router = router or ModelRouter()
    override = context.user_model_configs.get(agent_action_name) if context else None
    try:
        selection = router.select_provider(agent_action_name, override)
    except RuntimeError as exc:
        raise InferenceError(str(exc)) from exc

    kwargs: Dict[str, Any] = {
        "model": selection.model,
        "api_key": selection.api_key(router.env) or "not-needed",
        "base_url": selection.base_url(router.env),
        "streaming": True,
    }
    if selection.temperature is not None:
        kwargs["temperature"] = selection.temperature
    if selection.max_tokens is not None:
        kwargs["max_tokens"] = selection.max_tokens
    LOG.info(
        "llm_selected",
        extra={
            "agent_action": agent_action_name,
            "provider": selection.name,
            "model": selection.model,
            "user_override": override is not None,
        },
    )
    return ChatOpenAI(**kwargs)


async def _run_round(model: Any, messages: List[BaseMessage], buffer: Optional[ChunkBuffer]) -> AIMessage:
    aggregate: Optional[AIMessageChunk] = None
    async for chunk in model.astream(messages):
        if not isinstance(chunk, AIMessageChunk):
            continue
        aggregate = chunk if aggregate is None else aggregate + chunk
        if buffer is not None:
            buffer.push(_content_text(chunk.content))
    if buffer is not None:
        buffer.flush()
    if aggregate is None:
        return AIMessage(content="")
    return AIMessage(content=aggregate.content, tool_calls=aggregate.tool_calls)


def _tool_result_content(result: Any) -> str:
    if isinstance(result, dict) and "content" in result:
        return _content_text(result["content"])
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


async def execute_inference(
    *,
    messages: Sequence[ConversationMessage],
    agent_action_name: str,
    context: Optional[InferenceContext] = None,
    tools: Optional[ToolRegistry] = None,
    stream: Optional[StreamOptions] = None,
    max_tool_rounds: Optional[int] = None,
    chat_model: Optional[BaseChatModel] = None,
) -> InferenceResult:
    """Run one inference round-trip.

    Errors raised on purpose by this package (quota, security, ...) pass
    through unchanged; everything else is wrapped in :class:`InferenceError`.
    """

    rounds = max_tool_rounds if max_tool_rounds is not None else get_config().max_tool_rounds
    buffer = ChunkBuffer(stream.on_chunk, stream.chunk_size) if stream else None
    try:
        llm = chat_model or build_chat_model(agent_action_name, context)
        bound = llm.bind_tools(tools.openai_tools()) if tools else llm
        history = to_langchain_messages(messages)
        new_messages: List[ConversationMessage] = []
        text_parts: List[str] = []

        for round_idx in range(rounds + 1):
            # Last round runs without tools so the model has to answer in text.
            model = bound if round_idx < rounds else llm
            ai_message = await _run_round(model, history, buffer)
            text = _content_text(ai_message.content)
            text_parts.append(text)
            if not ai_message.tool_calls or tools is None or round_idx >= rounds:
                break

            history.append(ai_message)
            new_messages.append(
                ConversationMessage(
                    role="assistant",
                    content=text,
                    tool_calls=[
                        {"id": tc.get("id"), "name": tc["name"], "args": tc.get("args") or {}}
                        for tc in ai_message.tool_calls
                    ],
                )
            )
            for tool_call in ai_message.tool_calls:
                name = tool_call["name"]
                try:
                    result = await tools.dispatch(name, tool_call.get("args") or {})
                    content = _tool_result_content(result)
                except ToolArgumentsError as exc:
                    content = f"Error: {exc}"
                history.append(ToolMessage(content=content, tool_call_id=tool_call.get("id") or "", name=name))
                new_messages.append(
                    ConversationMessage(role="tool", content=content, tool_call_id=tool_call.get("id"), name=name)
                )
    except AppForgeError:
        raise
    except Exception as exc:
        LOG.warning("llm_stream_failed", extra={"agent_action": agent_action_name, "err": str(exc)})
        raise InferenceError(f"Inference failed for {agent_action_name}: {exc}") from exc

    return InferenceResult(string="".join(text_parts), new_messages=new_messages)
