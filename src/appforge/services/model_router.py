"""Routing helpers for selecting the model provider per agent action.

The router does not couple directly to concrete SDK clients; it selects a
provider configuration that the inference adapter uses to build its chat
client. This keeps the selection policy unit-testable.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Dict, Iterable, Mapping, Optional, Set

from ..domain.agent_models import ModelConfig


@dataclass(frozen=True)
class ProviderSelection:
    """Returned details about the provider that should handle an action."""

    name: str
    model: str
    api_key_env: Optional[str]
    base_url_env: Optional[str] = None
    default_base_url: Optional[str] = None
    requires_api_key: bool = True
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    def base_url(self, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
        env = env if env is not None else os.environ
        if self.base_url_env and env.get(self.base_url_env):
            return env.get(self.base_url_env)
        return self.default_base_url

    def api_key(self, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
        env = env if env is not None else os.environ
        return env.get(self.api_key_env) if self.api_key_env else None


class ModelRouter:
    """Policy-based router for per-action model selection."""

    PROVIDER_CONFIG: Dict[str, Dict[str, Optional[str] | bool]] = {
        "openai": {
            "api_key_env": "OPENAI_API_KEY",
            "base_url_env": "OPENAI_BASE_URL",
            "model_env": "OPENAI_MODEL",
            "default_model": "gpt-4o-mini",
            "default_base_url": "https://api.openai.com/v1",
        },
        "gemini": {
            "api_key_env": "GEMINI_API_KEY",
            "base_url_env": "GEMINI_BASE_URL",
            "model_env": "GEMINI_MODEL",
            "default_model": "gemini-2.5-flash",
            "default_base_url": "https://generativelanguage.googleapis.com/v1beta/openai/",
        },
        "xai": {
            "api_key_env": "XAI_API_KEY",
            "base_url_env": "XAI_BASE_URL",
            "model_env": "XAI_MODEL",
            "default_model": "grok-2-latest",
            "default_base_url": "https://api.x.ai/v1",
        },
        "local": {
            "api_key_env": "LOCAL_API_KEY",
            "base_url_env": "LOCAL_BASE_URL",
            "model_env": "LOCAL_MODEL",
            "default_model": "llama3.1:8b",
            "default_base_url": "http://127.0.0.1:11434/v1",
            "requires_api_key": False,
        },
    }

    ROUTING_POLICY: Dict[str, tuple[str, ...]] = {
        # Conversation turns favour fast, tool-capable hosted models.
        "conversational_response": ("openai", "gemini", "xai", "local"),
        "blueprint": ("openai", "gemini", "xai", "local"),
    }

    DEFAULT_POLICY = "conversational_response"

    def __init__(
        self,
        env: Optional[Mapping[str, str]] = None,
        allowed_providers: Optional[Iterable[str]] = None,
    ) -> None:
        self._env = env if env is not None else os.environ
        self._allowed: Optional[Set[str]] = set(allowed_providers) if allowed_providers else None
        preferred = (self._env.get("APPFORGE_MODEL_PROVIDER") or "").strip().lower()
        self._preferred_provider = preferred if preferred in self.PROVIDER_CONFIG else None

    @property
    def env(self) -> Mapping[str, str]:
        return self._env

    # ------------------------------------------------------------------
    # Provider resolution helpers
    # ------------------------------------------------------------------
    def provider_available(self, provider: str) -> bool:
        cfg = self.PROVIDER_CONFIG.get(provider)
        if not cfg:
            return False
        if self._allowed is not None and provider not in self._allowed:
            return False
        if bool(cfg.get("requires_api_key", True)):
            api_key_env = cfg.get("api_key_env")
            return bool(api_key_env and self._env.get(str(api_key_env)))
        # Keyless providers must be switched on explicitly.
        return (self._env.get("APPFORGE_ENABLE_LOCAL_PROVIDER") or "").strip() == "1"

    def _resolve_selection(self, provider: str) -> ProviderSelection:
        cfg = self.PROVIDER_CONFIG[provider]
        model_env = str(cfg.get("model_env") or "")
        model = self._env.get(model_env) or str(cfg.get("default_model") or "")
        return ProviderSelection(
            name=provider,
            model=model,
            api_key_env=cfg.get("api_key_env"),  # type: ignore[arg-type]
            base_url_env=cfg.get("base_url_env"),  # type: ignore[arg-type]
            default_base_url=cfg.get("default_base_url"),  # type: ignore[arg-type]
            requires_api_key=bool(cfg.get("requires_api_key", True)),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def select_provider(self, action: str, override: Optional[ModelConfig] = None) -> ProviderSelection:
        """Return the provider selected for ``action``.

        A user ``override`` keeps the routed provider but replaces the model
        name and sampling settings.

        Raises
        ------
        RuntimeError
            If no provider configured for the action is available.
        """

        priority = list(self.ROUTING_POLICY.get(action, self.ROUTING_POLICY[self.DEFAULT_POLICY]))
        if self._preferred_provider:
            priority = [self._preferred_provider] + [p for p in priority if p != self._preferred_provider]
        for provider in priority:
            if self.provider_available(provider):
                selection = self._resolve_selection(provider)
                if override is not None:
                    selection = replace(
                        selection,
                        model=override.name or selection.model,
                        temperature=override.temperature,
                        max_tokens=override.max_tokens,
                    )
                return selection
        raise RuntimeError("No active model provider available for this task.")

    def maybe_select_provider(self, action: str, override: Optional[ModelConfig] = None) -> Optional[ProviderSelection]:
        """Like :meth:`select_provider` but returns ``None`` on failure."""

        try:
            return self.select_provider(action, override)
        except RuntimeError:
            return None
