"""
Self-service profile endpoints.

Profile edits are charged against the per-user rate limit.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from core.auth_dependency import enforce_user_rate_limit, get_current_auth
from core.user_service import UserServiceError, get_user_service
from endpoints.users import update_kwargs, user_service_http_error
from models.auth import AuthContext, ProfileUpdateRequest, User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/profile", tags=["Profile"])


def _require_user_id(auth: AuthContext) -> str:
    if not auth.user_id:
        raise HTTPException(
            status_code=400,
            detail="Profile requires a signed-in user. Log in with POST /auth/login.",
        )
    return auth.user_id


@router.get(
    "",
    response_model=User,
    summary="Get Own Profile",
    responses={
        200: {"description": "Profile of the signed-in user"},
        400: {"description": "No signed-in user"},
        401: {"description": "Not authenticated"},
    },
)
async def get_profile(
    auth: AuthContext = Depends(get_current_auth),
):
    """Return the signed-in user's account."""
    user_id = _require_user_id(auth)
    user = await get_user_service().get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.put(
    "",
    response_model=User,
    summary="Update Own Profile",
    description="""
    Change your username, email or password. Only fields present in the
    body are applied; send `"email": ""` to clear the email.
    """,
    responses={
        200: {"description": "Profile updated"},
        400: {"description": "No signed-in user"},
        401: {"description": "Not authenticated"},
        409: {"description": "Username or email taken"},
        429: {"description": "Rate limit exceeded"},
    },
)
async def update_profile(
    request: ProfileUpdateRequest,
    auth: AuthContext = Depends(enforce_user_rate_limit),
):
    """Update the signed-in user's account."""
    user_id = _require_user_id(auth)
    user_service = get_user_service()
    try:
        await user_service.update_user(auth, user_id, **update_kwargs(request))
    except UserServiceError as e:
        raise user_service_http_error(e)

    return await user_service.get_user(user_id)
