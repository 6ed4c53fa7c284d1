"""
Application settings endpoints.

Admin view and bulk update of the persisted settings. Saving reloads
the rate limiter so new limits apply immediately.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from core.auth_dependency import require_role
from core.rate_limiter import RateLimitInitializationError, get_rate_limit_service
from core.settings_service import get_settings_service
from models.auth import AuthContext, Role
from models.settings import AllSettings, SettingsResponse, SettingsUpdateRequest, SettingsValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/settings", tags=["Settings"])


async def _settings_response(suggestions: list[dict] | None = None) -> SettingsResponse:
    records = await get_settings_service().get_all_settings()
    return SettingsResponse(
        settings=records,
        values=AllSettings.model_validate({r.key: r.value for r in records}),
        total=len(records),
        suggestions=suggestions or [],
    )


@router.get(
    "",
    response_model=SettingsResponse,
    summary="List Settings",
    description="List every stored application setting with its description and category. Requires admin role.",
    responses={
        200: {"description": "All settings"},
        401: {"description": "Not authenticated"},
        403: {"description": "Insufficient permissions"},
    },
)
async def list_settings(
    auth: AuthContext = Depends(require_role(Role.ADMIN)),
):
    """List all settings (admin only)."""
    return await _settings_response()


@router.put(
    "",
    response_model=SettingsResponse,
    summary="Update Settings",
    description="""
    Update several settings at once. Requires admin role.

    Omitted fields keep their current value. All values are validated
    before anything is written, so an invalid value leaves every setting
    unchanged. `firstTimeSetupCompleted` cannot be changed here.
    Rate limit changes take effect immediately.
    """,
    responses={
        200: {"description": "Settings updated"},
        401: {"description": "Not authenticated"},
        403: {"description": "Insufficient permissions"},
        422: {"description": "A value failed validation"},
    },
)
async def update_settings(
    request: SettingsUpdateRequest,
    auth: AuthContext = Depends(require_role(Role.ADMIN)),
):
    """Bulk update settings (admin only)."""
    try:
        updated = await get_settings_service().update_settings(request.to_settings())
    except SettingsValidationError as e:
        raise HTTPException(status_code=422, detail={"key": e.key, "message": e.message})

    suggestions = []
    try:
        await get_rate_limit_service().reload()
    except RateLimitInitializationError as e:
        logger.error(f"Settings saved but rate limiter reload failed: {e.message}")
        suggestions.append(
            {
                "action": "Check the server logs and save the settings again",
                "reason": "Rate limiting could not be reloaded and is currently not enforced",
                "priority": "high",
            }
        )

    logger.info(f"Settings updated: {sorted(updated)}")
    return await _settings_response(suggestions)
