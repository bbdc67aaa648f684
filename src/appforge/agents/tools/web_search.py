from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

import requests
from pydantic import BaseModel, ConfigDict, Field

from .base import ToolDefinition
from .http import TOOL_HTTP_TIMEOUT, build_session


logger = logging.getLogger("appforge.tools.web_search")

SEARCH_URL = "https://www.googleapis.com/customsearch/v1"
MAX_RESULTS = 5


class WebSearchArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str = Field(min_length=2, description="What to search the web for")
    max_results: int = Field(default=MAX_RESULTS, ge=1, le=10, description="Number of results to return")


_session: Optional[requests.Session] = None


def _get_session() -> requests.Session:
    global _session
    if _session is None:
        _session = build_session()
    return _session


def _format_results(items: List[Dict[str, Any]]) -> str:
    if not items:
        return "No results found."
    lines: List[str] = []
    for idx, item in enumerate(items, start=1):
        title = (item.get("title") or "").strip()
        link = (item.get("link") or "").strip()
        snippet = " ".join((item.get("snippet") or "").split())
        lines.append(f"{idx}. {title}\n   {link}\n   {snippet}")
    return "\n".join(lines)


def _search(query: str, max_results: int) -> str:
    api_key = os.getenv("GOOGLE_SEARCH_API_KEY")
    engine_id = os.getenv("GOOGLE_SEARCH_ENGINE_ID")
    if not api_key or not engine_id:
        logger.info("web_search_not_configured")
        return "Web search is not configured on this server."
    resp = _get_session().get(
        SEARCH_URL,
        params={"key": api_key, "cx": engine_id, "q": query, "num": max_results},
        timeout=TOOL_HTTP_TIMEOUT,
    )
    resp.raise_for_status()
    data = resp.json()
    return _format_results((data.get("items") or [])[:max_results])


async def _web_search(args: WebSearchArgs) -> Dict[str, str]:
    content = await asyncio.to_thread(_search, args.query, args.max_results)
    return {"content": content}


tool_web_search_definition = ToolDefinition(
    name="web_search",
    description="Search the web for up-to-date information such as library documentation, APIs or recent events.",
    args_model=WebSearchArgs,
    implementation=_web_search,
)
