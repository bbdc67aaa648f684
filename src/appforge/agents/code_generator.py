from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional, Protocol

from ..domain.agent_models import (
    DEFAULT_AGENT_MODE,
    AgentMode,
    CodeGenConfig,
    CodeGenState,
    InferenceContext,
)
from ..domain.chat_models import (
    ConversationResponseCallback,
    ProjectUpdateType,
    UserConversationInputs,
    UserConversationOutputs,
    create_system_message,
    create_user_message,
)
from ..services.inference import StreamOptions, execute_inference
from .operations.common import OperationOptions, ProjectContext
from .operations.user_conversation import InferenceFn, UserConversationProcessor


BLUEPRINT_ACTION_NAME = "blueprint"

BLUEPRINT_SYSTEM_PROMPT = """You are a senior software architect. Write a concise blueprint for the application the user describes.
Cover: title, one-paragraph description, main views or endpoints, data model, and an ordered list of implementation phases.
Build on the provided starter template and stack. Use Markdown headings and short bullet lists."""


class CodeGenAgentStub(Protocol):
    """What the HTTP layer needs from a session's agent."""

    async def initialize(self, config: CodeGenConfig, mode: AgentMode = DEFAULT_AGENT_MODE) -> CodeGenState: ...

    async def handle_user_input(self, message: str, callback: ConversationResponseCallback) -> UserConversationOutputs: ...

    def get_state(self) -> CodeGenState: ...


class CodeGeneratorAgent:
    """Stateful agent owning one session's history.

    Turns are serialized with a lock; the history is only ever extended.
    """

    def __init__(
        self,
        agent_id: str,
        inference: Optional[InferenceFn] = None,
        processor: Optional[UserConversationProcessor] = None,
    ) -> None:
        self.state = CodeGenState(agent_id=agent_id)
        self._inference = inference or execute_inference
        self._processor = processor or UserConversationProcessor(inference=self._inference)
        self._context: Optional[InferenceContext] = None
        self._turn_lock = asyncio.Lock()
        self._logger = logging.getLogger("appforge.agent")

    @property
    def agent_id(self) -> str:
        return self.state.agent_id

    def get_state(self) -> CodeGenState:
        return self.state.model_copy(deep=True)

    def _inference_context(self) -> InferenceContext:
        if self._context is not None:
            return self._context
        return InferenceContext(agent_id=self.agent_id, user_id=self.state.user_id or "anonymous")

    def _project_context(self) -> ProjectContext:
        return ProjectContext(
            query=self.state.query,
            language=self.state.language,
            frameworks=list(self.state.frameworks),
            template_name=self.state.template_name,
            blueprint=self.state.blueprint,
            current_phase=self.state.status,
            pending_user_inputs=list(self.state.pending_user_inputs),
        )

    def _options(self) -> OperationOptions:
        return OperationOptions(context=self._inference_context(), project=self._project_context(), logger=self._logger)

    async def initialize(self, config: CodeGenConfig, mode: AgentMode = DEFAULT_AGENT_MODE) -> CodeGenState:
        """Record the session parameters and stream a blueprint through ``on_blueprint_chunk``."""

        self._context = config.inference_context
        details = config.template_info.template_details
        self.state.user_id = config.inference_context.user_id
        self.state.query = config.query
        self.state.language = config.language
        self.state.frameworks = list(config.frameworks)
        self.state.hostname = config.hostname
        self.state.agent_mode = mode
        self.state.template_name = details.name
        self.state.sandbox_session_id = config.sandbox_session_id
        self.state.status = "generating"
        self._logger.info("agent_initializing", extra={"agent_id": self.agent_id, "template": details.name, "mode": mode})

        template_files = "\n".join(f"- {f.file_path}" for f in details.files) or "- (empty)"
        prompt = (
            f"Request: {config.query}\n"
            f"Language: {config.language}\n"
            f"Frameworks: {', '.join(config.frameworks)}\n"
            f"Starter template: {details.name} - {details.description}\n"
            f"Template files:\n{template_files}"
        )
        try:
            result = await self._inference(
                messages=[create_system_message(BLUEPRINT_SYSTEM_PROMPT), create_user_message(prompt)],
                agent_action_name=BLUEPRINT_ACTION_NAME,
                context=config.inference_context,
                stream=StreamOptions(on_chunk=config.on_blueprint_chunk),
            )
        except Exception:
            self.state.status = "failed"
            self._logger.exception("agent_initialize_failed", extra={"agent_id": self.agent_id})
            raise
        self.state.blueprint = result.string
        self.state.status = "blueprint_ready"
        self._logger.info("agent_initialized", extra={"agent_id": self.agent_id, "blueprint_length": len(result.string)})
        return self.get_state()

    async def handle_user_input(self, message: str, callback: ConversationResponseCallback) -> UserConversationOutputs:
        async with self._turn_lock:
            snapshot = list(self.state.conversation_messages)
            outputs = await self._processor.execute(
                UserConversationInputs(
                    user_message=message,
                    past_messages=snapshot,
                    conversation_response_callback=callback,
                ),
                self._options(),
            )
            self.state.conversation_messages.extend(outputs.messages[len(snapshot):])
            enhanced = outputs.conversation_response.enhanced_user_request
            if enhanced:
                self.state.pending_user_inputs.append(enhanced)
            return outputs

    async def add_project_update(self, update_type: ProjectUpdateType | str, data: Optional[Mapping[str, Any]] = None) -> int:
        """Append hidden memos for a project event; returns how many were added."""

        async with self._turn_lock:
            memos = self._processor.summarize_project_update(update_type, data, self._options())
            self.state.conversation_messages.extend(memos)
            return len(memos)
