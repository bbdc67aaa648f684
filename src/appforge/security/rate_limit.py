"""In-memory rate limiting for session creation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

from starlette.requests import Request

from ..config import RateLimitConfig, get_config
from ..domain.errors import RateLimitExceededError
from .auth import User


logger = logging.getLogger("appforge.rate_limit")

APP_CREATION_KEY = "app_creation"


@dataclass
class _RateLimitEntry:
    count: int
    window_end: datetime


def _describe_window(seconds: int) -> str:
    if seconds % 3600 == 0:
        hours = seconds // 3600
        return "hour" if hours == 1 else f"{hours} hours"
    if seconds % 60 == 0:
        minutes = seconds // 60
        return "minute" if minutes == 1 else f"{minutes} minutes"
    return f"{seconds} seconds"


class RateLimitService:
    """Fixed-window counters keyed by (action, user)."""

    def __init__(self, config: Optional[RateLimitConfig] = None) -> None:
        self._config = config
        self._store: Dict[Tuple[str, str], _RateLimitEntry] = {}

    @property
    def config(self) -> RateLimitConfig:
        return self._config or get_config().rate_limit

    async def enforce_app_creation_rate_limit(self, user: User, request: Optional[Request] = None) -> None:
        """Count one app creation for ``user``.

        Raises:
            RateLimitExceededError if the user has used up the current window.
        """

        cfg = self.config
        if cfg.disabled:
            return
        self._track(
            APP_CREATION_KEY,
            user.id,
            limit=cfg.app_creation_limit,
            window_seconds=cfg.app_creation_window_seconds,
            client_host=request.client.host if request is not None and request.client else None,
        )

    def _track(self, key: str, identifier: str, *, limit: int, window_seconds: int, client_host: Optional[str]) -> None:
        now = datetime.now(timezone.utc)
        self._evict_expired(now)
        store_key = (key, identifier)
        entry = self._store.get(store_key)

        if entry and entry.window_end > now:
            if entry.count >= limit:
                retry_after = max(int((entry.window_end - now).total_seconds()), 1)
                logger.info(
                    "rate_limit_rejected",
                    extra={"action": key, "identifier": identifier, "client_host": client_host, "retry_after": retry_after},
                )
                raise RateLimitExceededError(
                    f"Rate limit exceeded: at most {limit} apps per {_describe_window(window_seconds)}. "
                    f"Try again in {retry_after} seconds.",
                    retry_after_seconds=retry_after,
                )
            entry.count += 1
            return

        self._store[store_key] = _RateLimitEntry(count=1, window_end=now + timedelta(seconds=window_seconds))

    def _evict_expired(self, now: datetime) -> None:
        expired = [k for k, entry in self._store.items() if entry.window_end <= now]
        for k in expired:
            del self._store[k]

    def __len__(self) -> int:
        return len(self._store)

    def reset(self) -> None:
        """Clear in-memory counters (useful for tests)."""

        self._store.clear()


_service: Optional[RateLimitService] = None


def get_rate_limit_service() -> RateLimitService:
    global _service
    if _service is None:
        _service = RateLimitService()
    return _service
