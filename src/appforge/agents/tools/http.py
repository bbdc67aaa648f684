from __future__ import annotations

import os

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


TOOL_HTTP_TIMEOUT = (
    int(os.getenv("APPFORGE_TOOL_CONNECT_TIMEOUT", "3")),
    int(os.getenv("APPFORGE_TOOL_READ_TIMEOUT", "10")),
)


def build_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["GET"]),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=4, pool_maxsize=4)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session
