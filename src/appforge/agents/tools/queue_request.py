from __future__ import annotations

import logging
from typing import Callable, Dict

from pydantic import BaseModel, ConfigDict, Field

from .base import ToolDefinition


logger = logging.getLogger("appforge.tools.queue_request")

QUEUE_REQUEST_ACK = "Modification request queued successfully, will be implemented in the next phase of development."


class EditAppArgs(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    modification_request: str = Field(
        alias="modificationRequest",
        min_length=8,
        description=(
            "The changes needed to be made to the app. Please don't supply any code level or "
            "implementation details. Provide detailed requirements and description of the changes you want to make."
        ),
    )


def build_edit_app_tool(state_mutator: Callable[[str], None]) -> ToolDefinition:
    """Tool that hands a modification request to ``state_mutator``.

    The session itself is not touched; whoever owns the mutator decides what
    to do with the request.
    """

    async def _queue_request(args: EditAppArgs) -> Dict[str, str]:
        logger.info("queue_request", extra={"request_length": len(args.modification_request)})
        state_mutator(args.modification_request)
        return {"content": QUEUE_REQUEST_ACK}

    return ToolDefinition(
        name="queue_request",
        description="Queue up modification requests or changes, to be implemented in the next development phase",
        args_model=EditAppArgs,
        implementation=_queue_request,
    )
