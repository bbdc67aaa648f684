from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict


# Assistant messages carrying this marker are context for the model only and
# are never surfaced to the user.
INTERNAL_MEMO_MARKER = "<Internal Memo>"


Role = Literal["system", "user", "assistant", "tool"]


class ConversationMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: Any = None
    conversation_id: Optional[str] = None
    name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None

    def with_conversation_id(self, conversation_id: str) -> "ConversationMessage":
        return self.model_copy(update={"conversation_id": conversation_id})

    def content_text(self) -> str:
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, list):
            parts: List[str] = []
            for part in self.content:
                if isinstance(part, dict):
                    parts.append(str(part.get("text", "")))
                else:
                    parts.append(str(part))
            return "".join(parts)
        return str(self.content)

    def is_internal_memo(self) -> bool:
        return self.role == "assistant" and INTERNAL_MEMO_MARKER in self.content_text()


def create_user_message(content: Any) -> ConversationMessage:
    return ConversationMessage(role="user", content=content)


def create_assistant_message(content: Any) -> ConversationMessage:
    return ConversationMessage(role="assistant", content=content)


def create_system_message(content: Any) -> ConversationMessage:
    return ConversationMessage(role="system", content=content)


ToolStatus = Literal["start", "success", "error"]


class ToolCallStatus(BaseModel):
    name: str
    status: ToolStatus
    args: Optional[Dict[str, Any]] = None


# (message, conversation_id, is_streaming, tool)
ConversationResponseCallback = Callable[[str, str, bool, Optional[ToolCallStatus]], None]


class ConversationalResponse(BaseModel):
    user_response: str
    enhanced_user_request: str = ""


@dataclass
class UserConversationInputs:
    user_message: str
    past_messages: List[ConversationMessage]
    conversation_response_callback: ConversationResponseCallback


@dataclass
class UserConversationOutputs:
    conversation_response: ConversationalResponse
    messages: List[ConversationMessage]


class ProjectUpdateType(str, Enum):
    PHASE_IMPLEMENTING = "phase_implementing"
    PHASE_IMPLEMENTED = "phase_implemented"
    CODE_REVIEWING = "code_reviewing"
    FILE_REGENERATING = "file_regenerating"
    FILE_REGENERATED = "file_regenerated"
    DEPLOYMENT_COMPLETED = "deployment_completed"
    COMMAND_EXECUTING = "command_executing"
