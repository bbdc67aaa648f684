from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Generic, List, Optional, TypeVar

from ...domain.agent_models import InferenceContext
from ...domain.chat_models import ConversationMessage, create_system_message


InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")

SUMMARY_BLUEPRINT_CHARS = 1500


@dataclass
class ProjectContext:
    """Read-only view of the session the prompts are grounded in."""

    query: str = ""
    language: str = ""
    frameworks: List[str] = field(default_factory=list)
    template_name: Optional[str] = None
    blueprint: str = ""
    generated_files: List[str] = field(default_factory=list)
    current_phase: Optional[str] = None
    pending_user_inputs: List[str] = field(default_factory=list)


@dataclass
class OperationOptions:
    context: InferenceContext
    project: ProjectContext = field(default_factory=ProjectContext)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("appforge.operations"))


class AgentOperation(Generic[InputT, OutputT]):
    name: str = "operation"

    async def execute(self, inputs: InputT, options: OperationOptions) -> OutputT:
        raise NotImplementedError


def _project_block(project: ProjectContext, summarized: bool) -> str:
    lines = ["## PROJECT CONTEXT:"]
    if project.query:
        lines.append(f"Original request: {project.query}")
    if project.language or project.frameworks:
        stack = ", ".join([p for p in [project.language, *project.frameworks] if p])
        lines.append(f"Stack: {stack}")
    if project.template_name:
        lines.append(f"Template: {project.template_name}")
    if project.current_phase:
        lines.append(f"Current phase: {project.current_phase}")
    if project.blueprint:
        blueprint = project.blueprint
        if summarized and len(blueprint) > SUMMARY_BLUEPRINT_CHARS:
            blueprint = blueprint[:SUMMARY_BLUEPRINT_CHARS] + "\n[truncated]"
        lines.append("Blueprint:\n" + blueprint)
    if project.generated_files and not summarized:
        lines.append("Generated files:\n" + "\n".join(f"- {path}" for path in project.generated_files))
    if project.pending_user_inputs:
        lines.append("Queued requests:\n" + "\n".join(f"- {req}" for req in project.pending_user_inputs))
    return "\n".join(lines)


def get_system_prompt_with_project_context(
    system_prompt: str,
    project: ProjectContext,
    summarized: bool = False,
) -> List[ConversationMessage]:
    """Build the system message(s) for an operation.

    ``summarized`` trims the blueprint and drops the file listing.
    """

    return [create_system_message(system_prompt + "\n\n" + _project_block(project, summarized))]
