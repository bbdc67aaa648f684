from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from src.appforge.config import RateLimitConfig
from src.appforge.domain.errors import RateLimitExceededError
from src.appforge.security import auth
from src.appforge.security.auth import JwtConfig, User, create_access_token, decode_token, guest_user
from src.appforge.security.rate_limit import RateLimitService
from src.appforge.security.rbac import Permission, can_view_session, is_authorized, require_permission
from src.appforge.security.websocket import validate_websocket_origin


def _user(*roles: str) -> User:
    return User(id="u-9", email="someone@example.com", name="Someone", roles=list(roles))


def test_token_round_trip():
    cfg = JwtConfig(secret="s3cret", expires_min=5)
    token = create_access_token(_user("viewer"), cfg)

    user = decode_token(token, cfg)

    assert user.id == "u-9"
    assert user.roles == ["viewer"]


def test_expired_and_forged_tokens_are_rejected():
    cfg = JwtConfig(secret="s3cret", expires_min=-1)
    expired = create_access_token(_user("viewer"), cfg)
    forged = create_access_token(_user("admin"), JwtConfig(secret="other"))

    with pytest.raises(HTTPException) as exp:
        decode_token(expired, cfg)
    with pytest.raises(HTTPException) as bad:
        decode_token(forged, JwtConfig(secret="s3cret"))

    assert exp.value.detail == "Token expired"
    assert bad.value.status_code == 401


def test_public_mode_yields_guest(monkeypatch):
    monkeypatch.setenv("APPFORGE_PUBLIC_MODE", "1")

    assert auth.get_current_user(None) == guest_user()


def test_missing_token_without_public_mode():
    with pytest.raises(HTTPException) as excinfo:
        auth.get_current_user(None)
    assert excinfo.value.status_code == 401


def test_role_permissions():
    assert is_authorized(_user("viewer"), Permission.AGENT_READ)
    assert not is_authorized(_user("viewer"), Permission.AGENT_WRITE)
    assert is_authorized(_user("contributor"), Permission.AGENT_WRITE)
    assert is_authorized(_user("admin"), Permission.AGENT_WRITE)
    assert not is_authorized(_user(), Permission.AGENT_READ)


def test_require_permission_raises_403():
    dependency = require_permission(Permission.AGENT_WRITE)

    with pytest.raises(HTTPException) as excinfo:
        dependency(_user("viewer"))
    assert excinfo.value.status_code == 403
    assert dependency(_user("contributor")).id == "u-9"


def test_rate_limit_window_per_user():
    service = RateLimitService(RateLimitConfig(app_creation_limit=2, app_creation_window_seconds=60))
    alice, bob = _user("contributor"), User(id="bob", email="bob@example.com", name="Bob", roles=[])

    async def scenario():
        await service.enforce_app_creation_rate_limit(alice)
        await service.enforce_app_creation_rate_limit(alice)
        await service.enforce_app_creation_rate_limit(bob)
        await service.enforce_app_creation_rate_limit(alice)

    with pytest.raises(RateLimitExceededError) as excinfo:
        asyncio.run(scenario())

    assert "at most 2 apps per minute" in excinfo.value.message
    assert 1 <= excinfo.value.retry_after_seconds <= 60

    service.reset()
    asyncio.run(service.enforce_app_creation_rate_limit(alice))


def test_rate_limit_can_be_disabled():
    service = RateLimitService(RateLimitConfig(app_creation_limit=1, disabled=True))

    async def scenario():
        for _ in range(5):
            await service.enforce_app_creation_rate_limit(_user())

    asyncio.run(scenario())


@pytest.mark.parametrize(
    "origin, allowed, expected",
    [
        ("https://app.example.com", [], True),
        (None, [], True),
        ("https://app.example.com/", ["https://APP.example.com"], True),
        ("https://evil.example.com", ["https://app.example.com"], False),
        (None, ["https://app.example.com"], False),
    ],
)
def test_websocket_origin_validation(origin, allowed, expected):
    assert validate_websocket_origin(origin, allowed) is expected


def test_expired_windows_are_evicted():
    service = RateLimitService(RateLimitConfig(app_creation_limit=5, app_creation_window_seconds=60))

    async def scenario():
        for name in ("a", "b", "c"):
            await service.enforce_app_creation_rate_limit(User(id=name, email=f"{name}@example.com", name=name, roles=[]))

    asyncio.run(scenario())
    assert len(service) == 3

    for entry in service._store.values():
        entry.window_end = datetime.now(timezone.utc) - timedelta(seconds=1)
    asyncio.run(service.enforce_app_creation_rate_limit(_user()))

    assert len(service) == 1
    assert list(service._store) == [("app_creation", "u-9")]


def test_session_visibility():
    assert can_view_session(_user("viewer"), "u-9")
    assert not can_view_session(_user("contributor"), "someone-else")
    assert not can_view_session(_user("contributor"), None)
    assert can_view_session(_user("operator"), "someone-else")
    assert can_view_session(_user("admin"), "someone-else")
    assert not is_authorized(_user("operator"), Permission.AGENT_WRITE)
