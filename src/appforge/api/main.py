from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import AsyncIterator

from dotenv import load_dotenv
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .. import __version__
from ..config import get_config
from ..observability.metrics import metrics_middleware_factory
from ..services.streaming import BackgroundTaskSet
from .routers.agent import router as agent_router

load_dotenv()  # Load environment variables from .env if present (OPENAI_API_KEY, JWT_SECRET, etc.)

SHUTDOWN_DRAIN_SECONDS = 30.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    app.state.tasks = BackgroundTaskSet()
    yield
    await app.state.tasks.drain(timeout=SHUTDOWN_DRAIN_SECONDS)


app = FastAPI(title="AppForge Agent API", version=__version__, lifespan=lifespan)

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

app.include_router(agent_router)

_origins = list(get_config().allowed_origins) or ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {"name": "AppForge Agent API", "version": __version__}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "agents": "in-memory",
        },
    }


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
