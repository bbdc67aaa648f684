from __future__ import annotations

import secrets
import time
import uuid


def generate_id() -> str:
    """Opaque unique session id."""

    return str(uuid.uuid4())


def generate_conversation_id() -> str:
    """Correlation id for one message or one turn. Sortable by creation time."""

    return f"conv-{int(time.time() * 1000):x}-{secrets.token_hex(6)}"


def generate_sandbox_session_id() -> str:
    return f"sbx-{uuid.uuid4().hex[:16]}"
