from __future__ import annotations

from threading import RLock
from typing import Dict, Optional, Protocol

from ..domain.agent_models import ModelConfig, UserModelConfig


# Default model per agent action. Users may override any of them.
AGENT_ACTION_DEFAULTS: Dict[str, ModelConfig] = {
    "blueprint": ModelConfig(name="gpt-4o-mini", max_tokens=8000, temperature=0.4),
    "conversational_response": ModelConfig(name="gpt-4o-mini", max_tokens=4000, temperature=0.2),
}


class ModelConfigStore(Protocol):
    async def get_user_model_configs(self, user_id: str) -> Dict[str, UserModelConfig]: ...

    async def set_user_model_config(self, user_id: str, action: str, config: ModelConfig) -> UserModelConfig: ...

    async def delete_user_model_config(self, user_id: str, action: str) -> bool: ...


class InMemoryModelConfigStore:
    """Per-user overrides merged over ``AGENT_ACTION_DEFAULTS``."""

    def __init__(self, defaults: Optional[Dict[str, ModelConfig]] = None) -> None:
        self._defaults = dict(defaults if defaults is not None else AGENT_ACTION_DEFAULTS)
        self._overrides: Dict[str, Dict[str, ModelConfig]] = {}
        self._lock = RLock()

    async def get_user_model_configs(self, user_id: str) -> Dict[str, UserModelConfig]:
        with self._lock:
            overrides = dict(self._overrides.get(user_id, {}))
        merged: Dict[str, UserModelConfig] = {}
        for action, default in self._defaults.items():
            override = overrides.pop(action, None)
            if override is not None:
                merged[action] = UserModelConfig(**override.model_dump(exclude={"is_user_override"}), is_user_override=True)
            else:
                merged[action] = UserModelConfig(**default.model_dump(exclude={"is_user_override"}), is_user_override=False)
        for action, override in overrides.items():
            merged[action] = UserModelConfig(**override.model_dump(exclude={"is_user_override"}), is_user_override=True)
        return merged

    async def set_user_model_config(self, user_id: str, action: str, config: ModelConfig) -> UserModelConfig:
        with self._lock:
            self._overrides.setdefault(user_id, {})[action] = config
        return UserModelConfig(**config.model_dump(exclude={"is_user_override"}), is_user_override=True)

    async def delete_user_model_config(self, user_id: str, action: str) -> bool:
        with self._lock:
            return self._overrides.get(user_id, {}).pop(action, None) is not None


_store: Optional[ModelConfigStore] = None


def get_model_config_store() -> ModelConfigStore:
    global _store
    if _store is None:
        _store = InMemoryModelConfigStore()
    return _store
