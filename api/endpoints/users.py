"""
User administration endpoints.

Admin-only listing, creation, partial update and deletion of accounts.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from core.auth_dependency import require_role
from core.user_service import UserServiceError, get_user_service
from models.auth import AuthContext, Role, User, UserCreateRequest, UserListResponse, UserUpdateRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/users", tags=["Users"])

_ERROR_STATUS = {
    "user_not_found": 404,
    "forbidden": 403,
    "username_exists": 409,
    "email_exists": 409,
}

# Fields where an explicit null is meaningful (clear the value)
_NULLABLE_UPDATE_FIELDS = {"email", "ban_reason"}


def user_service_http_error(e: UserServiceError) -> HTTPException:
    """Translate a UserServiceError into the matching HTTP error."""
    return HTTPException(status_code=_ERROR_STATUS.get(e.code, 400), detail=e.message)


def update_kwargs(request: Any) -> dict[str, Any]:
    """Collect the fields the client actually sent, for UserService.update_user."""
    kwargs = {}
    for field in request.model_fields_set:
        value = getattr(request, field)
        if value is None and field not in _NULLABLE_UPDATE_FIELDS:
            continue
        kwargs[field] = value
    return kwargs


@router.get(
    "",
    response_model=UserListResponse,
    summary="List Users",
    description="""
    List user accounts, newest first. Requires admin role.

    Results are paginated with `page` and `limit`. A `limit` of 0 returns
    every user. `total` always counts all users.
    """,
    responses={
        200: {"description": "List of users"},
        401: {"description": "Not authenticated"},
        403: {"description": "Insufficient permissions"},
    },
)
async def list_users(
    page: int = Query(1, ge=1, description="Page number, starting at 1"),
    limit: int = Query(20, description="Users per page; 0 or less returns all users"),
    auth: AuthContext = Depends(require_role(Role.ADMIN)),
):
    """List user accounts (admin only)."""
    users, total = await get_user_service().list_users(page=page, limit=limit)

    suggestions = []
    banned = [u for u in users if u.banned]
    if banned:
        suggestions.append(
            {
                "action": f"{len(banned)} user(s) are banned",
                "reason": "Banned users cannot log in",
                "priority": "low",
            }
        )

    return UserListResponse(
        users=users,
        total=total,
        page=page,
        limit=max(limit, 0),
        suggestions=suggestions,
    )


@router.post(
    "",
    response_model=User,
    status_code=201,
    summary="Create User",
    description="""
    Create a new user account. Requires admin role.

    Password requirements: minimum 12 characters, at least one uppercase letter,
    one lowercase letter, and one digit.
    """,
    responses={
        201: {"description": "User created"},
        401: {"description": "Not authenticated"},
        403: {"description": "Insufficient permissions"},
        409: {"description": "Username or email taken"},
    },
)
async def create_user(
    request: UserCreateRequest,
    auth: AuthContext = Depends(require_role(Role.ADMIN)),
):
    """Create a new user account (admin only)."""
    try:
        return await get_user_service().create_user(
            username=request.username,
            password=request.password,
            role=request.role,
            email=request.email,
        )
    except UserServiceError as e:
        raise user_service_http_error(e)


@router.get(
    "/{user_id}",
    response_model=User,
    summary="Get User",
    description="Get a specific user account. Requires admin role.",
    responses={
        200: {"description": "User details"},
        401: {"description": "Not authenticated"},
        403: {"description": "Insufficient permissions"},
        404: {"description": "User not found"},
    },
)
async def get_user(
    user_id: str,
    auth: AuthContext = Depends(require_role(Role.ADMIN)),
):
    """Get a user by ID (admin only)."""
    user = await get_user_service().get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail=f"User '{user_id}' not found")
    return user


@router.put(
    "/{user_id}",
    response_model=User,
    summary="Update User",
    description="""
    Partially update a user account. Requires admin role.

    Only fields present in the body are applied, and only columns whose
    value actually changes are written. Send `"email": ""` to clear the
    email. Admins cannot change their own role.
    """,
    responses={
        200: {"description": "User updated"},
        400: {"description": "Cannot change own role"},
        401: {"description": "Not authenticated"},
        403: {"description": "Insufficient permissions"},
        404: {"description": "User not found"},
        409: {"description": "Username or email taken"},
    },
)
async def update_user(
    user_id: str,
    request: UserUpdateRequest,
    auth: AuthContext = Depends(require_role(Role.ADMIN)),
):
    """Update a user account (admin only)."""
    user_service = get_user_service()
    try:
        await user_service.update_user(auth, user_id, **update_kwargs(request))
    except UserServiceError as e:
        raise user_service_http_error(e)

    return await user_service.get_user(user_id)


@router.delete(
    "/{user_id}",
    summary="Delete User",
    description="Delete a user account. Requires admin role. Cannot delete yourself.",
    responses={
        200: {"description": "User deleted"},
        400: {"description": "Cannot delete self"},
        401: {"description": "Not authenticated"},
        403: {"description": "Insufficient permissions"},
        404: {"description": "User not found"},
    },
)
async def delete_user(
    user_id: str,
    auth: AuthContext = Depends(require_role(Role.ADMIN)),
):
    """Delete a user account (admin only)."""
    user_service = get_user_service()
    user = await user_service.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail=f"User '{user_id}' not found")

    try:
        await user_service.delete_user(auth, user_id)
    except UserServiceError as e:
        raise user_service_http_error(e)

    return {
        "success": True,
        "message": f"User '{user.username}' deleted",
        "user_id": user_id,
        "suggestions": [
            {
                "action": "Revoke any JWT tokens issued to this user",
                "reason": "Existing tokens remain valid until expiry",
                "priority": "medium",
            }
        ],
    }
