"""Agent session endpoints.

``POST /api/agent`` validates the request, enforces the app creation quota,
allocates the session and writes the first event, then answers with a
newline-delimited JSON stream. Failures up to that point get a JSON error with
an explicit status. Only agent initialization runs on the app's background task
set, and its failures can only end the stream.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from ...agents.code_generator import CodeGenAgentStub
from ...config import get_config
from ...core.ids import generate_id
from ...domain.agent_models import (
    CodeGenArgs,
    CodeGenConfig,
    GenerationStartedEvent,
    InferenceContext,
    TemplateInfo,
    TemplateSummary,
)
from ...domain.chat_models import ToolCallStatus
from ...domain.errors import PROPAGATING_ERRORS, RateLimitExceededError, SecurityError
from ...infrastructure.agent_registry import get_agent_registry
from ...infrastructure.model_config_store import get_model_config_store
from ...observability.metrics import SESSIONS_REJECTED, SESSIONS_STARTED
from ...security.auth import User
from ...security.rate_limit import get_rate_limit_service
from ...security.rbac import Permission, can_view_session, require_permission
from ...security.websocket import validate_websocket_origin
from ...services.streaming import TERMINATE, BackgroundTaskSet, EventStream
from ...services.template_service import get_template_service


logger = logging.getLogger("appforge.api.agent")

router = APIRouter(prefix="/api/agent", tags=["agent"])

GENERATION_STARTED_MESSAGE = "Code generation started"

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate, no-transform",
    "Pragma": "no-cache",
    "Connection": "keep-alive",
}
STREAM_MEDIA_TYPE = "text/event-stream; charset=utf-8"

_LOCAL_HOSTS = ("localhost", "127.0.0.1")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _task_set(request: Request) -> BackgroundTaskSet:
    tasks = getattr(request.app.state, "tasks", None)
    if tasks is None:
        tasks = BackgroundTaskSet()
        request.app.state.tasks = tasks
    return tasks


def _agent_hostname(request: Request) -> str:
    if request.url.hostname in _LOCAL_HOSTS:
        port = request.url.port or (443 if request.url.scheme == "https" else 80)
        return f"localhost:{port}"
    return get_config().preview_domain


def _session_urls(request: Request, agent_id: str) -> Dict[str, str]:
    host = request.headers.get("host") or request.url.netloc
    ws_scheme = "wss" if request.url.scheme == "https" else "ws"
    origin = f"{request.url.scheme}://{host}"
    return {
        "websocket_url": f"{ws_scheme}://{host}/api/agent/{agent_id}/ws",
        "http_status_url": f"{origin}/api/agent/{agent_id}",
    }


async def _parse_args(request: Request) -> CodeGenArgs | JSONResponse:
    try:
        body = await request.json()
    except ValueError as exc:
        return _error(status.HTTP_400_BAD_REQUEST, f"Invalid JSON in request body: {exc}")
    if not isinstance(body, dict):
        return _error(status.HTTP_400_BAD_REQUEST, "Invalid JSON in request body: expected a JSON object")
    if not body.get("query"):
        return _error(status.HTTP_400_BAD_REQUEST, 'Missing "query" field in request body')
    try:
        return CodeGenArgs.model_validate(body)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "body"
        return _error(status.HTTP_400_BAD_REQUEST, f"Invalid field '{field}': {first.get('msg')}")


async def _prepare_session(
    *,
    stream: EventStream,
    request: Request,
    agent_id: str,
    args: CodeGenArgs,
    user: User,
) -> tuple[CodeGenAgentStub, CodeGenConfig]:
    """Allocate the session and write the first event; raises before anything is spawned."""

    user_configs, agent = await asyncio.gather(
        get_model_config_store().get_user_model_configs(user.id),
        get_agent_registry().get_agent_stub(agent_id),
    )
    overrides = {action: cfg.to_model_config() for action, cfg in user_configs.items() if cfg.is_user_override}
    context = InferenceContext(
        agent_id=agent_id,
        user_id=user.id,
        user_model_configs=overrides,
        enable_realtime_code_fix=True,
    )
    template = await get_template_service().get_template_for_query(context, args.query, args.selected_template)
    urls = _session_urls(request, agent_id)
    started = GenerationStartedEvent(
        message=GENERATION_STARTED_MESSAGE,
        agent_id=agent_id,
        websocket_url=urls["websocket_url"],
        http_status_url=urls["http_status_url"],
        template=TemplateSummary(
            name=template.template_details.name,
            files=[f.model_dump(by_alias=True) for f in template.template_details.files],
        ),
    )
    stream.write(started.model_dump(by_alias=True))
    logger.info(
        "session_started",
        extra={"agent_id": agent_id, "user_id": user.id, "template": template.template_details.name},
    )

    config = CodeGenConfig(
        query=args.query,
        language=args.language,
        frameworks=list(args.frameworks),
        hostname=_agent_hostname(request),
        inference_context=context,
        on_blueprint_chunk=lambda chunk: stream.write({"chunk": chunk}),
        template_info=TemplateInfo(template_details=template.template_details, selection=template.selection),
        sandbox_session_id=template.sandbox_session_id,
    )
    return agent, config


async def _initialize_agent(
    stream: EventStream, agent: CodeGenAgentStub, config: CodeGenConfig, args: CodeGenArgs
) -> None:
    agent_id = config.inference_context.agent_id
    try:
        await agent.initialize(config, args.agent_mode)
        logger.info("agent_initialization_settled", extra={"agent_id": agent_id})
    except Exception:
        logger.exception("agent_initialization_failed", extra={"agent_id": agent_id})
    finally:
        stream.write(TERMINATE)
        stream.close()


@router.post("")
async def start_session(
    request: Request,
    user: User = Depends(require_permission(Permission.AGENT_WRITE)),
):
    parsed = await _parse_args(request)
    if isinstance(parsed, JSONResponse):
        SESSIONS_REJECTED.labels(reason="invalid_request").inc()
        return parsed
    args = parsed

    try:
        await get_rate_limit_service().enforce_app_creation_rate_limit(user, request)
    except RateLimitExceededError as exc:
        SESSIONS_REJECTED.labels(reason="rate_limited").inc()
        logger.info("session_rate_limited", extra={"user_id": user.id, "retry_after": exc.retry_after_seconds})
        headers = {"Retry-After": str(exc.retry_after_seconds)} if exc.retry_after_seconds else None
        return JSONResponse(status_code=status.HTTP_429_TOO_MANY_REQUESTS, content={"error": exc.message}, headers=headers)
    except SecurityError as exc:
        SESSIONS_REJECTED.labels(reason="security").inc()
        return _error(status.HTTP_403_FORBIDDEN, str(exc))

    stream = EventStream()
    agent_id: Optional[str] = None
    try:
        agent_id = generate_id()
        agent, config = await _prepare_session(stream=stream, request=request, agent_id=agent_id, args=args, user=user)
        _task_set(request).spawn(_initialize_agent(stream, agent, config, args), name=f"session-{agent_id}")
    except Exception as exc:
        stream.close()
        if agent_id is not None:
            get_agent_registry().remove(agent_id)
        logger.exception("session_bootstrap_failed", extra={"agent_id": agent_id})
        SESSIONS_REJECTED.labels(reason="internal").inc()
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or "Internal server error")

    SESSIONS_STARTED.inc()
    return StreamingResponse(stream, status_code=200, media_type=STREAM_MEDIA_TYPE, headers=STREAM_HEADERS)


def _public_state(agent: CodeGenAgentStub) -> Dict[str, Any]:
    state = agent.get_state()
    return {
        "agent_id": state.agent_id,
        "status": state.status,
        "query": state.query,
        "template_name": state.template_name,
        "blueprint": state.blueprint,
        "conversation_messages": [
            m.model_dump(mode="json", exclude_none=True)
            for m in state.conversation_messages
            if not m.is_internal_memo()
        ],
        "pending_user_inputs": list(state.pending_user_inputs),
    }


@router.get("/{agent_id}")
async def get_session(agent_id: str, user: User = Depends(require_permission(Permission.AGENT_READ))):
    agent = get_agent_registry().get(agent_id)
    # Someone else's session is reported exactly like a missing one.
    if agent is None or not can_view_session(user, agent.get_state().user_id):
        return _error(status.HTTP_404_NOT_FOUND, f"Agent {agent_id} not found")
    return _public_state(agent)


def _conversation_event(
    message: str,
    conversation_id: str,
    is_streaming: bool,
    tool: Optional[ToolCallStatus] = None,
) -> Dict[str, Any]:
    event: Dict[str, Any] = {
        "type": "conversation_response",
        "message": message,
        "conversationId": conversation_id,
        "isStreaming": is_streaming,
    }
    if tool is not None:
        event["tool"] = tool.model_dump(exclude_none=True)
    return event


async def _relay_turn(websocket: WebSocket, agent: CodeGenAgentStub, message: str) -> None:
    """Run one turn and forward its callback events to the socket as they arrive."""

    events = EventStream()

    def on_response(text: str, conversation_id: str, is_streaming: bool, tool: Optional[ToolCallStatus] = None) -> None:
        events.write(_conversation_event(text, conversation_id, is_streaming, tool))

    async def run() -> None:
        try:
            await agent.handle_user_input(message, on_response)
        finally:
            events.write(TERMINATE)

    turn = asyncio.create_task(run())
    async for event in events.events():
        await websocket.send_json(event)
    await turn
    state = agent.get_state()
    await websocket.send_json({"type": "conversation_state", "pendingUserInputs": list(state.pending_user_inputs)})


@router.websocket("/{agent_id}/ws")
async def session_socket(websocket: WebSocket, agent_id: str) -> None:
    if not validate_websocket_origin(websocket.headers.get("origin"), get_config().allowed_origins):
        logger.warning("websocket_origin_rejected", extra={"agent_id": agent_id, "origin": websocket.headers.get("origin")})
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    agent = get_agent_registry().get(agent_id)
    if agent is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Unknown agent")
        return

    await websocket.accept()
    try:
        while True:
            payload = await websocket.receive_json()
            if not isinstance(payload, dict) or payload.get("type") != "user_suggestion":
                await websocket.send_json({"type": "error", "error": "Unsupported message type"})
                continue
            message = payload.get("message")
            if not isinstance(message, str) or not message.strip():
                await websocket.send_json({"type": "error", "error": 'Missing "message" field'})
                continue
            try:
                await _relay_turn(websocket, agent, message)
            except PROPAGATING_ERRORS as exc:
                logger.warning("websocket_turn_aborted", extra={"agent_id": agent_id, "error": type(exc).__name__})
                await websocket.send_json({"type": "error", "error": getattr(exc, "message", None) or str(exc)})
                await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
                return
    except WebSocketDisconnect:
        logger.info("websocket_disconnected", extra={"agent_id": agent_id})
