"""
Admin dashboard statistics endpoints.
"""

import logging

from fastapi import APIRouter, Depends

from core.auth_dependency import require_role
from core.stats_service import CACHE_TTL_SECONDS, get_stats_service
from models.auth import AuthContext, Role, UserStatsResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/stats", tags=["Statistics"])


def _stats_response(stats: dict) -> UserStatsResponse:
    suggestions = []
    if stats["total_users"] == 0:
        suggestions.append(
            {
                "action": "Create the admin account with POST /setup",
                "reason": "There are no users yet",
                "priority": "high",
            }
        )
    return UserStatsResponse(**stats, suggestions=suggestions)


@router.get(
    "",
    response_model=UserStatsResponse,
    summary="User Statistics",
    description=f"Total number of users. Cached for {CACHE_TTL_SECONDS} seconds. Requires admin role.",
    responses={
        200: {"description": "User statistics"},
        401: {"description": "Not authenticated"},
        403: {"description": "Insufficient permissions"},
    },
)
async def user_stats(
    auth: AuthContext = Depends(require_role(Role.ADMIN)),
):
    """Get user statistics (admin only)."""
    return _stats_response(await get_stats_service().get_user_stats())


@router.post(
    "/refresh",
    response_model=UserStatsResponse,
    summary="Refresh Statistics",
    description="Drop the cached statistics and compute them again. Requires admin role.",
    responses={
        200: {"description": "Fresh user statistics"},
        401: {"description": "Not authenticated"},
        403: {"description": "Insufficient permissions"},
    },
)
async def refresh_stats(
    auth: AuthContext = Depends(require_role(Role.ADMIN)),
):
    """Clear the stats cache and recompute (admin only)."""
    stats_service = get_stats_service()
    stats_service.clear_stats_cache()
    logger.info(f"Stats cache cleared by {auth.user_id or 'admin'}")
    return _stats_response(await stats_service.get_user_stats())
