"""Conversational turn processing.

One call to :meth:`UserConversationProcessor.execute` is one turn: the user's
message goes to the model together with the project context and three tools,
text fragments are relayed to the caller as they stream, and the turn ends with
a conversation delta. A failing turn degrades into a fixed fallback answer;
quota and security errors are the only ones that escape.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from ...core.ids import generate_conversation_id
from ...core.state_machine import TurnState, TurnStateMachine
from ...domain.chat_models import (
    INTERNAL_MEMO_MARKER,
    ConversationalResponse,
    ConversationMessage,
    ProjectUpdateType,
    UserConversationInputs,
    UserConversationOutputs,
    create_assistant_message,
    create_user_message,
)
from ...domain.errors import PROPAGATING_ERRORS, ProjectUpdateSummaryError
from ...observability.metrics import CONVERSATION_TURNS
from ...services.inference import InferenceResult, StreamOptions, execute_inference
from ..tools import (
    ToolDefinition,
    ToolRegistry,
    build_edit_app_tool,
    tool_weather_definition,
    tool_web_search_definition,
    with_lifecycle,
)
from .common import AgentOperation, OperationOptions, get_system_prompt_with_project_context


CHUNK_SIZE = 64

AGENT_ACTION_NAME = "conversational_response"

SYSTEM_PROMPT = """You are Forge, the AI assistant of an AI powered app development platform, helping users build and modify their applications. You have a conversational interface and can help users with their projects.

## YOUR CAPABILITIES:
- You can answer questions about the project and its current state
- You can search the web for information when needed
- Most importantly, you can modify the application when users request changes or ask for new features or report issues/bugs
- You can execute other tools provided to you to help users with their projects

## HOW TO INTERACT:
- Keep replies short, friendly and in plain language.
- When the user asks for a change, a new feature or a bug fix, call `queue_request` with a clear, detailed description of WHAT should change. Never include code or implementation details in that description.
- After queueing a request, tell the user it will be picked up in the next phase of development. Do not claim the change is already done.
- Use `web_search` for questions that need current information and `get_weather` for weather questions.
- Messages starting with "<Internal Memo>" are status updates from the platform. Use them as context but never quote them."""

FALLBACK_USER_RESPONSE = (
    "I understand you'd like to make some changes to your project. "
    "Let me make sure this is incorporated in the next phase of development."
)

_logger = logging.getLogger("appforge.operations.conversation")

InferenceFn = Callable[..., Awaitable[InferenceResult]]


@dataclass
class ConversationTurn:
    """Mutable scratch state of one turn."""

    user_message: str
    conversation_id: str
    fragments: List[str] = field(default_factory=list)
    enhanced_user_request: str = ""

    @property
    def response_text(self) -> str:
        return "".join(self.fragments)


def _phase_name(data: Mapping[str, Any]) -> str:
    phase = data.get("phase")
    if isinstance(phase, Mapping):
        return str(phase.get("name") or "unnamed phase")
    return str(phase or data.get("phase_name") or "unnamed phase")


def _file_list(paths: Any) -> str:
    if not paths:
        return "no files"
    return ", ".join(str(p) for p in paths)


def _describe_phase_implementing(data: Mapping[str, Any]) -> str:
    return f"Started implementing phase '{_phase_name(data)}'."


def _describe_phase_implemented(data: Mapping[str, Any]) -> str:
    return f"Finished implementing phase '{_phase_name(data)}' ({_file_list(data.get('files'))})."


def _describe_code_reviewing(data: Mapping[str, Any]) -> str:
    issues = data.get("issues") or []
    if not issues:
        return "Code review in progress; no issues reported so far."
    return f"Code review in progress; {len(issues)} issue(s) found: " + "; ".join(str(i) for i in issues)


def _describe_file_regenerating(data: Mapping[str, Any]) -> str:
    return f"Regenerating {data.get('file_path') or 'a file'} to fix reported issues."


def _describe_file_regenerated(data: Mapping[str, Any]) -> str:
    return f"Regenerated {data.get('file_path') or 'a file'}."


def _describe_deployment_completed(data: Mapping[str, Any]) -> str:
    url = data.get("preview_url")
    return f"Preview deployment completed at {url}." if url else "Preview deployment completed."


def _describe_command_executing(data: Mapping[str, Any]) -> str:
    commands = data.get("commands") or []
    return "Executing commands: " + ("; ".join(str(c) for c in commands) if commands else "none listed") + "."


PROJECT_UPDATE_DESCRIBERS: Dict[ProjectUpdateType, Callable[[Mapping[str, Any]], str]] = {
    ProjectUpdateType.PHASE_IMPLEMENTING: _describe_phase_implementing,
    ProjectUpdateType.PHASE_IMPLEMENTED: _describe_phase_implemented,
    ProjectUpdateType.CODE_REVIEWING: _describe_code_reviewing,
    ProjectUpdateType.FILE_REGENERATING: _describe_file_regenerating,
    ProjectUpdateType.FILE_REGENERATED: _describe_file_regenerated,
    ProjectUpdateType.DEPLOYMENT_COMPLETED: _describe_deployment_completed,
    ProjectUpdateType.COMMAND_EXECUTING: _describe_command_executing,
}


class UserConversationProcessor(AgentOperation[UserConversationInputs, UserConversationOutputs]):
    name = AGENT_ACTION_NAME

    def __init__(
        self,
        inference: Optional[InferenceFn] = None,
        tools: Optional[Sequence[ToolDefinition]] = None,
    ) -> None:
        self._inference = inference or execute_inference
        self._base_tools: List[ToolDefinition] = (
            list(tools) if tools is not None else [tool_web_search_definition, tool_weather_definition]
        )

    def _build_tools(self, turn: ConversationTurn, inputs: UserConversationInputs) -> ToolRegistry:
        def queue_request(modification_request: str) -> None:
            turn.enhanced_user_request = modification_request

        tools = [*self._base_tools, build_edit_app_tool(queue_request)]
        return ToolRegistry(
            with_lifecycle(tool, inputs.conversation_response_callback, turn.conversation_id) for tool in tools
        )

    async def execute(self, inputs: UserConversationInputs, options: OperationOptions) -> UserConversationOutputs:
        logger = options.logger
        logger.info("Processing user message", extra={"message_length": len(inputs.user_message)})

        machine = TurnStateMachine()
        user_message = create_user_message(inputs.user_message).with_conversation_id(generate_conversation_id())
        messages = [*inputs.past_messages, user_message]

        try:
            system_prompts = get_system_prompt_with_project_context(SYSTEM_PROMPT, options.project, summarized=False)
            turn = ConversationTurn(user_message=inputs.user_message, conversation_id=generate_conversation_id())
            tools = self._build_tools(turn, inputs)
            callback = inputs.conversation_response_callback

            def on_chunk(chunk: str) -> None:
                machine.advance(TurnState.STREAMING)
                callback(chunk, turn.conversation_id, True, None)
                turn.fragments.append(chunk)

            result = await self._inference(
                messages=[*system_prompts, *messages],
                agent_action_name=AGENT_ACTION_NAME,
                context=options.context,
                tools=tools,
                stream=StreamOptions(on_chunk=on_chunk, chunk_size=CHUNK_SIZE),
            )

            new_messages = [
                msg.with_conversation_id(generate_conversation_id())
                for msg in result.new_messages
                if not msg.is_internal_memo()
            ]
            response_text = turn.response_text or result.string
            final_message = create_assistant_message(response_text).with_conversation_id(generate_conversation_id())
            outputs = UserConversationOutputs(
                conversation_response=ConversationalResponse(
                    user_response=response_text,
                    enhanced_user_request=turn.enhanced_user_request,
                ),
                messages=[*messages, *new_messages, final_message],
            )
            machine.advance(TurnState.COMPLETED)
        except PROPAGATING_ERRORS:
            CONVERSATION_TURNS.labels(outcome="error").inc()
            raise
        except Exception:
            logger.exception("turn_fallback", extra={"turn_states": [s.value for s in machine.history]})
            if not machine.finished:
                machine.advance(TurnState.FALLBACK)
            CONVERSATION_TURNS.labels(outcome=machine.state.value).inc()
            fallback_message = create_assistant_message(FALLBACK_USER_RESPONSE).with_conversation_id(
                generate_conversation_id()
            )
            return UserConversationOutputs(
                conversation_response=ConversationalResponse(
                    user_response=FALLBACK_USER_RESPONSE,
                    enhanced_user_request=f"User request: {inputs.user_message}",
                ),
                messages=[*messages, fallback_message],
            )

        CONVERSATION_TURNS.labels(outcome=machine.state.value).inc()
        logger.info(
            "turn_completed",
            extra={
                "conversation_id": turn.conversation_id,
                "response_length": len(response_text),
                "tool_messages": len(new_messages),
                "queued_request": bool(turn.enhanced_user_request),
                "turn_states": [s.value for s in machine.history],
            },
        )
        return outputs

    def summarize_project_update(
        self,
        update_type: ProjectUpdateType | str,
        data: Optional[Mapping[str, Any]] = None,
        options: Optional[OperationOptions] = None,
    ) -> List[ConversationMessage]:
        """Turn a project lifecycle event into a hidden assistant memo.

        Returns an empty list instead of raising when the event cannot be
        described.
        """

        logger = options.logger if options else _logger
        try:
            try:
                kind = ProjectUpdateType(update_type)
            except ValueError as exc:
                raise ProjectUpdateSummaryError(f"Unsupported project update type: {update_type}") from exc
            text = PROJECT_UPDATE_DESCRIBERS[kind](data or {})
            memo = create_assistant_message(f"{INTERNAL_MEMO_MARKER}\n{text}")
            return [memo.with_conversation_id(generate_conversation_id())]
        except Exception:
            logger.warning("project_update_summary_failed", exc_info=True, extra={"update_type": str(update_type)})
            return []
