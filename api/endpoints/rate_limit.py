"""
Rate limit endpoints.

Lets users inspect their remaining operation budget and lets admins
clear a user's consumed points.
"""

import logging
import math

from fastapi import APIRouter, Depends, HTTPException

from core.auth_dependency import get_current_auth, require_role
from core.rate_limiter import get_rate_limit_service
from models.auth import AuthContext, Role
from models.rate_limit import RateLimitStatusResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Rate Limiting"])


@router.get(
    "/rate-limit/status",
    response_model=RateLimitStatusResponse,
    summary="Own Rate Limit Status",
    description="Show how many operations the signed-in user has left in the current window, without consuming any.",
    responses={
        200: {"description": "Rate limit status"},
        400: {"description": "No signed-in user"},
        401: {"description": "Not authenticated"},
    },
)
async def rate_limit_status(
    auth: AuthContext = Depends(get_current_auth),
):
    """Peek at the caller's remaining budget."""
    if not auth.user_id:
        raise HTTPException(status_code=400, detail="Rate limit status requires a signed-in user.")

    if auth.role == Role.ADMIN:
        return RateLimitStatusResponse(
            enabled=False,
            suggestions=[
                {
                    "action": "No action needed",
                    "reason": "Admins are exempt from operation rate limits",
                    "priority": "low",
                }
            ],
        )

    status = await get_rate_limit_service().get_status(auth.user_id)
    if status is None:
        return RateLimitStatusResponse(enabled=False)

    suggestions = []
    if status.remaining_points == 0:
        suggestions.append(
            {
                "action": f"Wait {max(1, math.ceil(status.ms_before_next / 1000))} seconds",
                "reason": "Your operation budget for this window is used up",
                "priority": "high",
            }
        )

    return RateLimitStatusResponse(enabled=True, status=status, suggestions=suggestions)


@router.delete(
    "/admin/rate-limit/{user_id}",
    summary="Reset User Rate Limit",
    description="Clear the consumed operation points of a user. Requires admin role.",
    responses={
        200: {"description": "Rate limit reset"},
        401: {"description": "Not authenticated"},
        403: {"description": "Insufficient permissions"},
    },
)
async def reset_rate_limit(
    user_id: str,
    auth: AuthContext = Depends(require_role(Role.ADMIN)),
):
    """Reset a user's rate limit (admin only)."""
    await get_rate_limit_service().reset(user_id)
    logger.info(f"Rate limit for user {user_id} reset by {auth.user_id or 'admin'}")

    return {
        "success": True,
        "message": f"Rate limit reset for user '{user_id}'",
        "user_id": user_id,
    }
