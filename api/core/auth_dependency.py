"""
FastAPI authentication and rate limit dependencies.

Provides Depends() functions for injecting authentication context into
endpoint handlers and for charging guarded operations against the
settings-driven rate limits.
"""

import logging
from collections.abc import Callable

from fastapi import Depends, HTTPException, Request

from config import settings
from core.rate_limiter import get_rate_limit_service
from models.auth import AuthContext, Role
from models.rate_limit import LimitType, RateLimitResult

logger = logging.getLogger(__name__)


def _extract_bearer_token(request: Request) -> str | None:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    parts = auth_header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def _client_details(request: Request) -> tuple[str, str]:
    client_ip = request.client.host if request.client else "unknown"
    user_agent = request.headers.get("User-Agent", "unknown")
    return client_ip, user_agent


async def get_current_auth(request: Request) -> AuthContext:
    """
    Resolve the current authentication context.

    When AUTH_ENABLED=false, returns a permissive admin context.
    When AUTH_ENABLED=true, requires a valid Authorization: Bearer token.
    """
    client_ip, user_agent = _client_details(request)

    if not settings.auth_enabled:
        return AuthContext(
            role=Role.ADMIN,
            auth_method="none",
            client_ip=client_ip,
            user_agent=user_agent,
        )

    from core.auth_service import get_auth_service

    bearer_token = _extract_bearer_token(request)
    if not bearer_token:
        raise HTTPException(
            status_code=401,
            detail="Authentication required. Provide a JWT token via Authorization: Bearer header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    auth_ctx = get_auth_service().validate_jwt_token(bearer_token)
    if auth_ctx is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid or expired JWT token.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    auth_ctx.client_ip = client_ip
    auth_ctx.user_agent = user_agent
    request.state.auth = auth_ctx
    return auth_ctx


async def get_optional_auth(request: Request) -> AuthContext | None:
    """Resolve the auth context if the request carries valid credentials, else None."""
    if settings.auth_enabled and not _extract_bearer_token(request):
        return None
    try:
        return await get_current_auth(request)
    except HTTPException:
        return None


def require_role(min_role: Role) -> Callable:
    """
    Return a dependency that enforces a minimum role.

    Usage:
        @router.get("/", dependencies=[Depends(require_role(Role.ADMIN))])
        async def list_items(...):
    """

    async def _check_role(
        auth: AuthContext = Depends(get_current_auth),
    ) -> AuthContext:
        if not auth.role.has_permission(min_role):
            raise HTTPException(
                status_code=403,
                detail=f"Insufficient permissions. Required role: {min_role.value}, your role: {auth.role.value}",
            )
        return auth

    return _check_role


def _raise_rate_limited(result: RateLimitResult, detail: str) -> None:
    raise HTTPException(
        status_code=429,
        detail=detail,
        headers={
            "Retry-After": str(result.retry_after_seconds),
            "X-RateLimit-Remaining": str(result.remaining_points or 0),
        },
    )


async def enforce_user_rate_limit(
    auth: AuthContext = Depends(get_current_auth),
) -> AuthContext:
    """Charge one point to the caller's per-user budget, or raise 429."""
    if not auth.user_id:
        return auth

    result = await get_rate_limit_service().check_limit(auth.user_id, auth.role)
    if not result.allowed:
        _raise_rate_limited(
            result,
            f"Rate limit exceeded. Try again in {result.retry_after_seconds} seconds.",
        )
    return auth


async def enforce_unauthenticated_rate_limit(request: Request) -> None:
    """Charge one point to the caller's fingerprint and the shared unauthenticated budget, or raise 429."""
    client_ip, user_agent = _client_details(request)

    result = await get_rate_limit_service().check_unauthenticated_limit(client_ip, user_agent)
    if not result.allowed:
        if result.limit_type is LimitType.GLOBAL:
            detail = "Too many requests from unauthenticated clients. Please try again later."
        else:
            detail = f"Too many requests. Try again in {result.retry_after_seconds} seconds."
        _raise_rate_limited(result, detail)
