"""
First-time setup endpoints.

Creates the initial admin account and marks setup as completed. Once
completed, setup is refused unless FORCE_FIRST_TIME_SETUP is set.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from config import settings
from core.auth_dependency import enforce_unauthenticated_rate_limit
from core.settings_service import get_setting, get_settings_service
from core.user_service import UserServiceError, get_user_service
from models.auth import Role, SetupResponse, SetupStatusResponse, SignupRequest
from models.settings import SettingKey

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/setup", tags=["Setup"])


async def _setup_allowed() -> bool:
    if settings.force_first_time_setup:
        return True
    return not await get_setting(SettingKey.FIRST_TIME_SETUP_COMPLETED)


@router.get(
    "/status",
    response_model=SetupStatusResponse,
    summary="First-Time Setup Status",
    description="Report whether the initial admin account still has to be created.",
)
async def setup_status():
    """Report first-time setup status."""
    completed = bool(await get_setting(SettingKey.FIRST_TIME_SETUP_COMPLETED))
    has_users = await get_user_service().has_any_users()
    setup_required = await _setup_allowed()

    suggestions = []
    if setup_required:
        suggestions.append(
            {
                "action": "Create the admin account with POST /setup",
                "reason": "No administrator has been configured yet",
                "priority": "critical",
            }
        )

    return SetupStatusResponse(
        setup_required=setup_required,
        first_time_setup_completed=completed,
        has_users=has_users,
        suggestions=suggestions,
    )


@router.post(
    "",
    response_model=SetupResponse,
    status_code=201,
    summary="Run First-Time Setup",
    description="""
    Create the initial admin account and mark setup as completed.

    Refused once setup has completed, unless the server runs with
    FORCE_FIRST_TIME_SETUP=true.
    """,
    responses={
        201: {"description": "Admin account created"},
        409: {"description": "Setup already completed, or username/email taken"},
        429: {"description": "Too many requests"},
    },
    dependencies=[Depends(enforce_unauthenticated_rate_limit)],
)
async def run_setup(request: SignupRequest):
    """Create the first admin account."""
    if not await _setup_allowed():
        raise HTTPException(status_code=409, detail="First-time setup has already been completed.")

    try:
        user = await get_user_service().create_user(
            username=request.username,
            password=request.password,
            role=Role.ADMIN,
            email=request.email,
        )
    except UserServiceError as e:
        raise HTTPException(status_code=409, detail=e.message)

    await get_settings_service().update_setting_by_key(SettingKey.FIRST_TIME_SETUP_COMPLETED, True)
    logger.info(f"First-time setup completed; admin '{user.username}' created")

    return SetupResponse(
        user=user,
        message="Admin account created. Log in with POST /auth/login.",
        suggestions=[
            {
                "action": "Set AUTH_ENABLED=true and restart the API",
                "reason": "Authentication is not enforced until AUTH_ENABLED=true",
                "priority": "high",
            }
        ],
    )
