from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

from langchain_core.messages import AIMessageChunk

from src.appforge.domain.chat_models import ConversationMessage
from src.appforge.services.inference import InferenceResult


def text_round(*fragments: str) -> List[AIMessageChunk]:
    return [AIMessageChunk(content=f) for f in fragments]


def tool_round(name: str, args: Dict[str, Any], call_id: str = "call_1") -> List[AIMessageChunk]:
    return [
        AIMessageChunk(
            content="",
            tool_call_chunks=[{"name": name, "args": json.dumps(args), "id": call_id, "index": 0}],
        )
    ]


class FakeChatModel:
    """Replays scripted rounds through ``astream``; an exception entry is raised instead."""

    def __init__(self, rounds: Sequence[Any]) -> None:
        self.rounds = list(rounds)
        self.calls: List[List[Any]] = []
        self.bound_tools: Optional[List[Dict[str, Any]]] = None

    def bind_tools(self, tools):
        self.bound_tools = list(tools)
        return self

    async def astream(self, messages):
        self.calls.append(list(messages))
        if not self.rounds:
            return
        current = self.rounds.pop(0)
        if isinstance(current, BaseException):
            raise current
        for chunk in current:
            yield chunk


class ScriptedInference:
    """Stands in for ``execute_inference`` in turn processor tests."""

    def __init__(
        self,
        fragments: Sequence[str] = (),
        tool_calls: Sequence[Tuple[str, Dict[str, Any]]] = (),
        new_messages: Sequence[ConversationMessage] = (),
        error: Optional[BaseException] = None,
        string: Optional[str] = None,
    ) -> None:
        self.fragments = list(fragments)
        self.tool_calls = list(tool_calls)
        self.new_messages = list(new_messages)
        self.error = error
        self.string = string
        self.calls: List[Dict[str, Any]] = []

    async def __call__(self, *, messages, agent_action_name, context=None, tools=None, stream=None, **_kwargs):
        self.calls.append(
            {"messages": list(messages), "agent_action_name": agent_action_name, "context": context, "tools": tools}
        )
        for name, args in self.tool_calls:
            await tools.dispatch(name, args)
        if self.error is not None:
            raise self.error
        for fragment in self.fragments:
            stream.on_chunk(fragment)
        text = self.string if self.string is not None else "".join(self.fragments)
        return InferenceResult(string=text, new_messages=list(self.new_messages))


class CallbackRecorder:
    def __init__(self) -> None:
        self.events: List[Tuple[str, str, bool, Any]] = []

    def __call__(self, message, conversation_id, is_streaming, tool=None) -> None:
        self.events.append((message, conversation_id, is_streaming, tool))

    @property
    def streamed(self) -> List[str]:
        return [m for m, _cid, streaming, _tool in self.events if streaming]

    @property
    def tool_events(self) -> List[Any]:
        return [tool for *_rest, tool in self.events if tool is not None]
