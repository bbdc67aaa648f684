import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture(autouse=True)
def _reset_singletons(monkeypatch):
    """Every test starts with fresh in-memory collaborators and default config."""
    from src.appforge import config
    from src.appforge.infrastructure import agent_registry, model_config_store
    from src.appforge.security import rate_limit
    from src.appforge.services import template_service

    for key in (
        "APPFORGE_PUBLIC_MODE",
        "APPFORGE_ALLOWED_ORIGINS",
        "APPFORGE_APP_CREATION_LIMIT",
        "APPFORGE_APP_CREATION_WINDOW_SECONDS",
        "APPFORGE_RATE_LIMIT_DISABLED",
        "APPFORGE_MAX_TOOL_ROUNDS",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("JWT_SECRET", "test-secret")

    monkeypatch.setattr(config, "_config", None)
    monkeypatch.setattr(rate_limit, "_service", None)
    monkeypatch.setattr(model_config_store, "_store", None)
    monkeypatch.setattr(agent_registry, "_registry", None)
    monkeypatch.setattr(template_service, "_service", None)


@pytest.fixture
def auth_headers():
    from src.appforge.security.auth import User, create_access_token

    user = User(id="u-1", email="dev@example.com", name="Dev", roles=["contributor"])
    return {"Authorization": f"Bearer {create_access_token(user)}"}
