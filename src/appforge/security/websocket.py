from __future__ import annotations

from typing import Iterable, Optional


def validate_websocket_origin(origin: Optional[str], allowed_origins: Iterable[str]) -> bool:
    """Return True when ``origin`` may open a session socket.

    An empty allow-list accepts every origin, including non-browser clients
    that send none.
    """

    allowed = {o.rstrip("/").lower() for o in allowed_origins if o}
    if not allowed:
        return True
    if not origin:
        return False
    return origin.rstrip("/").lower() in allowed
