"""Environment-driven configuration.

Env vars:
- APPFORGE_PREVIEW_DOMAIN (hostname handed to agents for preview URLs)
- APPFORGE_ALLOWED_ORIGINS (comma separated websocket origins; empty allows all)
- APPFORGE_ENABLE_REALTIME_CODE_FIX (default 1)
- APPFORGE_MAX_TOOL_ROUNDS (default 4)
- APPFORGE_APP_CREATION_LIMIT / APPFORGE_APP_CREATION_WINDOW_SECONDS
- APPFORGE_RATE_LIMIT_DISABLED
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple


_TRUE_VALUES = ("1", "true", "yes", "on")


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
        return value if value > 0 else default
    except ValueError:
        return default


@dataclass(frozen=True)
class RateLimitConfig:
    app_creation_limit: int = 10
    app_creation_window_seconds: int = 3600
    disabled: bool = False

    @staticmethod
    def from_env() -> "RateLimitConfig":
        return RateLimitConfig(
            app_creation_limit=env_int("APPFORGE_APP_CREATION_LIMIT", 10),
            app_creation_window_seconds=env_int("APPFORGE_APP_CREATION_WINDOW_SECONDS", 3600),
            disabled=env_flag("APPFORGE_RATE_LIMIT_DISABLED"),
        )


@dataclass(frozen=True)
class AppConfig:
    preview_domain: str = "preview.appforge.dev"
    allowed_origins: Tuple[str, ...] = ()
    enable_realtime_code_fix: bool = True
    max_tool_rounds: int = 4
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)

    @staticmethod
    def from_env() -> "AppConfig":
        origins_raw = os.getenv("APPFORGE_ALLOWED_ORIGINS", "")
        origins = tuple(o.strip().rstrip("/") for o in origins_raw.split(",") if o.strip())
        return AppConfig(
            preview_domain=os.getenv("APPFORGE_PREVIEW_DOMAIN", "preview.appforge.dev"),
            allowed_origins=origins,
            enable_realtime_code_fix=env_flag("APPFORGE_ENABLE_REALTIME_CODE_FIX", True),
            max_tool_rounds=env_int("APPFORGE_MAX_TOOL_ROUNDS", 4),
            rate_limit=RateLimitConfig.from_env(),
        )


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def reset_config() -> None:
    """Drop the cached config so the next call re-reads the environment."""

    global _config
    _config = None
