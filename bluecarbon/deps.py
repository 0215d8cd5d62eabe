"""Shared FastAPI dependencies."""

from typing import Callable

from beanie import PydanticObjectId
from bson.errors import InvalidId
from fastapi import Header

from bluecarbon.core.exceptions import AuthenticationError, AuthorizationError
from bluecarbon.core.security import load_access_token, parse_bearer
from bluecarbon.models.user import Role, User


async def get_current_user(authorization: str | None = Header(None)) -> User:
    """Dependency: load the bearer token and return User."""
    token = parse_bearer(authorization)
    if not token:
        raise AuthenticationError("Not authenticated")
    payload = load_access_token(token)
    if not payload:
        raise AuthenticationError("Invalid or expired token")
    user_id = payload.get("user_id")
    if not user_id:
        raise AuthenticationError("Invalid token")
    try:
        user = await User.get(PydanticObjectId(user_id))
    except InvalidId:
        raise AuthenticationError("Invalid token")
    if not user:
        raise AuthenticationError("User not found")
    if payload.get("session_version") != user.session_version:
        raise AuthenticationError("Session invalidated")
    return user


def require_role(*roles: Role) -> Callable:
    """Dependency factory: require the current user to hold one of roles."""

    async def _require(authorization: str | None = Header(None)) -> User:
        user = await get_current_user(authorization)
        if user.role not in roles:
            raise AuthorizationError(f"Requires role: {', '.join(r.value for r in roles)}")
        return user

    return _require


require_manager = require_role(Role.MANAGER)
require_verifier = require_role(Role.VERIFIER)
require_buyer = require_role(Role.BUYER)
