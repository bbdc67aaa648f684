from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .chat_models import ConversationMessage


DEFAULT_LANGUAGE = "typescript"
DEFAULT_FRAMEWORKS = ("react", "vite")
DEFAULT_SELECTED_TEMPLATE = "auto"
DEFAULT_AGENT_MODE = "deterministic"

AgentMode = Literal["deterministic", "smart"]


class CodeGenArgs(BaseModel):
    """Body of ``POST /api/agent``. Absent or null optionals take their defaults."""

    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(min_length=1)
    language: str = DEFAULT_LANGUAGE
    frameworks: List[str] = Field(default_factory=lambda: list(DEFAULT_FRAMEWORKS))
    selected_template: str = Field(default=DEFAULT_SELECTED_TEMPLATE, alias="selectedTemplate")
    agent_mode: AgentMode = Field(default=DEFAULT_AGENT_MODE, alias="agentMode")

    @model_validator(mode="before")
    @classmethod
    def _drop_empty_optionals(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        cleaned = dict(data)
        for key in ("language", "frameworks", "selectedTemplate", "selected_template", "agentMode", "agent_mode"):
            if key in cleaned and cleaned[key] in (None, "", []):
                cleaned.pop(key)
        return cleaned


class ModelConfig(BaseModel):
    name: str
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    reasoning_effort: Optional[str] = None
    fallback_model: Optional[str] = None


class UserModelConfig(ModelConfig):
    """A model config merged over the defaults for one agent action."""

    is_user_override: bool = False

    def to_model_config(self) -> ModelConfig:
        return ModelConfig(**self.model_dump(exclude={"is_user_override"}))


class InferenceContext(BaseModel):
    agent_id: str
    user_id: str
    user_model_configs: Dict[str, ModelConfig] = Field(default_factory=dict)
    enable_realtime_code_fix: bool = True


class TemplateFile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_path: str = Field(alias="filePath")
    file_contents: str = Field(default="", alias="fileContents")


class TemplateDetails(BaseModel):
    name: str
    description: str = ""
    language: str = DEFAULT_LANGUAGE
    frameworks: List[str] = Field(default_factory=list)
    files: List[TemplateFile] = Field(default_factory=list)


class TemplateSelection(BaseModel):
    selected_template_name: str
    reasoning: str = ""
    score: float = 0.0


class TemplateInfo(BaseModel):
    template_details: TemplateDetails
    selection: TemplateSelection


class TemplateResult(BaseModel):
    sandbox_session_id: str
    template_details: TemplateDetails
    selection: TemplateSelection


@dataclass
class CodeGenConfig:
    query: str
    language: str
    frameworks: List[str]
    hostname: str
    inference_context: InferenceContext
    on_blueprint_chunk: Callable[[str], None]
    template_info: TemplateInfo
    sandbox_session_id: str


SessionStatus = Literal["idle", "generating", "blueprint_ready", "failed"]


class CodeGenState(BaseModel):
    agent_id: str
    user_id: Optional[str] = None
    status: SessionStatus = "idle"
    query: str = ""
    language: str = DEFAULT_LANGUAGE
    frameworks: List[str] = Field(default_factory=list)
    hostname: str = ""
    agent_mode: AgentMode = DEFAULT_AGENT_MODE
    template_name: Optional[str] = None
    sandbox_session_id: Optional[str] = None
    blueprint: str = ""
    conversation_messages: List[ConversationMessage] = Field(default_factory=list)
    pending_user_inputs: List[str] = Field(default_factory=list)


class TemplateSummary(BaseModel):
    name: str
    files: List[Dict[str, str]]


class GenerationStartedEvent(BaseModel):
    """First event written to the bootstrap stream."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    agent_id: str = Field(alias="agentId")
    websocket_url: str = Field(alias="websocketUrl")
    http_status_url: str = Field(alias="httpStatusUrl")
    template: TemplateSummary


class BlueprintChunkEvent(BaseModel):
    chunk: str
