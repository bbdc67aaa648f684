from __future__ import annotations

import asyncio

import pytest
from pydantic import BaseModel

from src.appforge.agents.tools import (
    ToolArgumentsError,
    ToolDefinition,
    ToolRegistry,
    build_edit_app_tool,
    tool_weather_definition,
    tool_web_search_definition,
    with_lifecycle,
)
from src.appforge.agents.tools import weather, web_search
from src.appforge.domain.errors import InferenceError

from tests.utils import CallbackRecorder


class _Resp:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        return None

    def json(self):
        return self._payload


class _FakeSession:
    def __init__(self, payloads):
        self.payloads = list(payloads)
        self.requests = []

    def get(self, url, params=None, timeout=None):
        self.requests.append((url, params))
        return _Resp(self.payloads.pop(0))


class _NoArgs(BaseModel):
    pass


def _failing_tool():
    async def _impl(_args):
        raise RuntimeError("backend down")

    return ToolDefinition(name="flaky", description="Always fails", args_model=_NoArgs, implementation=_impl)


def test_edit_tool_schema_exposes_alias_and_min_length():
    tool = build_edit_app_tool(lambda _req: None)
    schema = tool.to_openai_tool()

    assert schema["type"] == "function"
    assert schema["function"]["name"] == "queue_request"
    params = schema["function"]["parameters"]
    assert params["required"] == ["modificationRequest"]
    assert params["properties"]["modificationRequest"]["minLength"] == 8
    assert "title" not in params


def test_edit_tool_rejects_short_requests_without_mutating():
    queued = []
    tool = build_edit_app_tool(queued.append)

    with pytest.raises(ToolArgumentsError):
        asyncio.run(tool.invoke({"modificationRequest": "short"}))
    assert queued == []


def test_lifecycle_reports_start_and_error():
    cb = CallbackRecorder()
    tool = with_lifecycle(_failing_tool(), cb, "conv-1")

    with pytest.raises(RuntimeError):
        asyncio.run(tool.invoke({}))

    assert [(t.name, t.status) for t in cb.tool_events] == [("flaky", "start"), ("flaky", "error")]
    assert all(cid == "conv-1" and message == "" for message, cid, _s, _t in cb.events)


def test_lifecycle_does_not_change_the_original_definition():
    original = build_edit_app_tool(lambda _req: None)
    wrapped = with_lifecycle(original, CallbackRecorder(), "conv-1")

    assert original.on_start is None
    assert wrapped.on_start is not None
    assert wrapped.name == original.name


def test_registry_rejects_duplicates_and_unknown_names():
    registry = ToolRegistry([tool_weather_definition])

    with pytest.raises(ValueError):
        registry.register(tool_weather_definition)
    with pytest.raises(InferenceError):
        asyncio.run(registry.dispatch("nope", {}))
    assert registry.names() == ["get_weather"]
    assert len(registry) == 1
    assert not ToolRegistry()


def test_web_search_without_credentials(monkeypatch):
    monkeypatch.delenv("GOOGLE_SEARCH_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_SEARCH_ENGINE_ID", raising=False)

    result = asyncio.run(tool_web_search_definition.invoke({"query": "fastapi websockets"}))

    assert result == {"content": "Web search is not configured on this server."}


def test_web_search_formats_results(monkeypatch):
    monkeypatch.setenv("GOOGLE_SEARCH_API_KEY", "key")
    monkeypatch.setenv("GOOGLE_SEARCH_ENGINE_ID", "cx")
    session = _FakeSession(
        [{"items": [{"title": "FastAPI", "link": "https://fastapi.tiangolo.com", "snippet": "Fast\n web framework"}]}]
    )
    monkeypatch.setattr(web_search, "_session", session)

    result = asyncio.run(tool_web_search_definition.invoke({"query": "fastapi", "max_results": 3}))

    assert result["content"] == "1. FastAPI\n   https://fastapi.tiangolo.com\n   Fast web framework"
    assert session.requests[0][1]["num"] == 3


def test_weather_lookup(monkeypatch):
    session = _FakeSession(
        [
            {"results": [{"name": "Lisbon", "country": "Portugal", "latitude": 38.7, "longitude": -9.1}]},
            {"current": {"temperature_2m": 21.5, "weather_code": 2, "wind_speed_10m": 12.0}},
        ]
    )
    monkeypatch.setattr(weather, "_session", session)

    result = asyncio.run(tool_weather_definition.invoke({"location": "Lisbon"}))

    assert result == {
        "location": "Lisbon, Portugal",
        "temperature_c": 21.5,
        "wind_speed_kmh": 12.0,
        "conditions": "partly cloudy",
    }


def test_weather_unknown_location(monkeypatch):
    monkeypatch.setattr(weather, "_session", _FakeSession([{"results": []}]))

    result = asyncio.run(tool_weather_definition.invoke({"location": "Atlantis"}))

    assert result == {"error": "Location not found: Atlantis"}
