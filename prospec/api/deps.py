"""Request-scoped dependencies shared by the /api/v1 routers."""

from __future__ import annotations

import secrets

from fastapi import Header, Request

from prospec.config import settings
from prospec.errors import UnauthorizedError
from prospec.utils.rate_limiter import DEFAULT_SESSION_KEY, RateLimiter


async def require_access_password(
    x_access_password: str | None = Header(default=None),
) -> None:
    """Shared-password gate; disabled when ACCESS_PASSWORD is empty.

    Compared case-insensitively, like the browser gate it replaces.
    """
    if not settings.access_password:
        return
    supplied = (x_access_password or "").lower()
    if not secrets.compare_digest(supplied.encode(), settings.access_password.lower().encode()):
        raise UnauthorizedError()


async def get_session_key(x_session_id: str | None = Header(default=None)) -> str:
    return (x_session_id or "").strip() or DEFAULT_SESSION_KEY


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter
