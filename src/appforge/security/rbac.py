"""Role permissions and session ownership for the agent endpoints."""

from __future__ import annotations

from enum import Enum
from typing import Callable, Optional, Set

from fastapi import Depends, HTTPException, status

from .auth import User, get_current_user


class Permission(str, Enum):
    AGENT_READ = "agent:read"
    AGENT_WRITE = "agent:write"
    # Read any user's session, not just your own.
    SESSION_READ_ANY = "session:read_any"
    ADMIN = "admin:*"


ROLE_PERMISSIONS = {
    "viewer": {Permission.AGENT_READ},
    "contributor": {Permission.AGENT_READ, Permission.AGENT_WRITE},
    "operator": {Permission.AGENT_READ, Permission.SESSION_READ_ANY},
    "admin": {Permission.ADMIN},
}


def permissions_for(user: User) -> Set[Permission]:
    perms: Set[Permission] = set()
    for role in user.roles:
        perms |= ROLE_PERMISSIONS.get(role, set())
    return perms


def is_authorized(user: User, required: Permission) -> bool:
    perms = permissions_for(user)
    return Permission.ADMIN in perms or required in perms


def can_view_session(user: User, owner_id: Optional[str]) -> bool:
    """Owners see their own sessions; operators and admins see all of them.

    A session whose owner is not recorded yet is treated as belonging to nobody.
    """

    if owner_id is not None and owner_id == user.id:
        return True
    return is_authorized(user, Permission.SESSION_READ_ANY)


def require_permission(required: Permission) -> Callable[[User], User]:
    """FastAPI dependency to enforce a single permission on a route."""

    def dependency(user: User = Depends(get_current_user)) -> User:
        if not is_authorized(user, required):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return user

    return dependency
