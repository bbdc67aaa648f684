"""Tool definitions, lifecycle wrapping and name-based dispatch.

A tool is a pydantic argument model (which doubles as its JSON schema), an
async implementation and optional ``on_start`` / ``on_complete`` hooks. The
inference adapter only ever talks to a :class:`ToolRegistry`.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Type

from pydantic import BaseModel, ValidationError

from ...domain.chat_models import ConversationResponseCallback, ToolCallStatus
from ...domain.errors import InferenceError
from ...observability.metrics import TOOL_INVOCATIONS


logger = logging.getLogger("appforge.tools")

StartHook = Callable[[Dict[str, Any]], None]
CompleteHook = Callable[[Dict[str, Any], Optional[BaseException]], None]


class ToolArgumentsError(InferenceError):
    """The model called a tool with arguments its schema rejects."""


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    args_model: Type[BaseModel]
    implementation: Callable[[Any], Awaitable[Any]]
    on_start: Optional[StartHook] = None
    on_complete: Optional[CompleteHook] = None

    @property
    def parameters(self) -> Dict[str, Any]:
        schema = self.args_model.model_json_schema(by_alias=True)
        schema.pop("title", None)
        for prop in (schema.get("properties") or {}).values():
            prop.pop("title", None)
        return schema

    def to_openai_tool(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    async def invoke(self, raw_args: Dict[str, Any]) -> Any:
        """Validate ``raw_args`` and run the implementation between the hooks.

        Invalid arguments raise :class:`ToolArgumentsError`; implementation
        errors are re-raised unchanged after the error hook fires.
        """

        args = dict(raw_args or {})
        if self.on_start:
            self.on_start(args)
        try:
            try:
                parsed = self.args_model.model_validate(args)
            except ValidationError as exc:
                raise ToolArgumentsError(f"Invalid arguments for {self.name}: {exc.errors(include_url=False)}") from exc
            result = await self.implementation(parsed)
        except Exception as exc:
            TOOL_INVOCATIONS.labels(tool=self.name, status="error").inc()
            if self.on_complete:
                self.on_complete(args, exc)
            raise
        TOOL_INVOCATIONS.labels(tool=self.name, status="success").inc()
        if self.on_complete:
            self.on_complete(args, None)
        return result


def with_lifecycle(
    tool: ToolDefinition,
    callback: ConversationResponseCallback,
    conversation_id: str,
) -> ToolDefinition:
    """Bind start/completion notifications for one turn onto ``tool``."""

    def on_start(args: Dict[str, Any]) -> None:
        callback("", conversation_id, False, ToolCallStatus(name=tool.name, status="start", args=args))

    def on_complete(args: Dict[str, Any], error: Optional[BaseException]) -> None:
        status = "error" if error is not None else "success"
        callback("", conversation_id, False, ToolCallStatus(name=tool.name, status=status, args=args))

    return dataclasses.replace(tool, on_start=on_start, on_complete=on_complete)


class ToolRegistry:
    """Maps the tool name requested by the model to its definition."""

    def __init__(self, tools: Iterable[ToolDefinition] = ()) -> None:
        self._tools: Dict[str, ToolDefinition] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolDefinition) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Duplicate tool name: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def openai_tools(self) -> List[Dict[str, Any]]:
        return [tool.to_openai_tool() for tool in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __bool__(self) -> bool:
        return bool(self._tools)

    async def dispatch(self, name: str, args: Dict[str, Any]) -> Any:
        tool = self._tools.get(name)
        if tool is None:
            logger.warning("tool_unknown", extra={"tool": name})
            raise InferenceError(f"Model requested unknown tool: {name}")
        return await tool.invoke(args)
