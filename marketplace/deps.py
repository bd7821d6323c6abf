"""Shared FastAPI dependencies."""

from typing import Callable

from beanie import PydanticObjectId
from bson.errors import InvalidId
from fastapi import Depends, Request

from marketplace.core.exceptions import ForbiddenError, UnauthorizedError
from marketplace.core.logging import bind_user
from marketplace.core.pagination import paginate
from marketplace.core.roles import Action, can
from marketplace.core.security import decode_access_token
from marketplace.models.user import User


def _bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthorizedError("Not authenticated")
    return token.strip()


async def get_current_user(request: Request) -> User:
    """Dependency: load user from the bearer token."""
    payload = decode_access_token(_bearer_token(request))
    if not payload:
        raise UnauthorizedError("Invalid or expired token")
    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedError("Invalid token")
    try:
        user = await User.get(PydanticObjectId(user_id))
    except InvalidId:
        user = None
    if not user:
        raise UnauthorizedError("User not found")
    if payload.get("ver") != user.session_version:
        raise UnauthorizedError("Session invalidated")
    if not user.is_active:
        raise UnauthorizedError("Account is disabled")
    bind_user(str(user.id), user.role.value)
    return user


def require(action: Action) -> Callable:
    """Dependency factory: current user must hold the capability for action."""

    async def dependency(user: User = Depends(get_current_user)) -> User:
        if not can(user.role, action):
            raise ForbiddenError(f"Your role cannot {action.value.replace('_', ' ')}")
        return user

    return dependency


def page_params(limit: int = 20, offset: int = 0) -> tuple[int, int]:
    return paginate(limit, offset)
