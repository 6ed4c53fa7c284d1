"""
Authentication endpoints.

Username/password login and public registration. Both are charged
against the unauthenticated rate limits.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from config import settings
from core.auth_dependency import enforce_unauthenticated_rate_limit, get_optional_auth
from core.auth_service import get_auth_service
from core.rate_limiter import limiter
from core.settings_service import get_setting
from core.user_service import UserServiceError, get_user_service
from models.auth import AuthContext, LoginRequest, LoginResponse, Role, SessionInfoResponse, SignupRequest, User
from models.settings import SettingKey

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post(
    "/login",
    response_model=LoginResponse,
    summary="Login with Username and Password",
    description="""
    Authenticate with a username and password to receive a JWT token.

    Usernames are case-insensitive. Banned accounts cannot log in until
    their ban expires.
    """,
    responses={
        200: {"description": "Login successful"},
        400: {"description": "JWT not configured"},
        401: {"description": "Invalid credentials or account banned"},
        429: {"description": "Too many login attempts"},
    },
    dependencies=[Depends(enforce_unauthenticated_rate_limit)],
)
@limiter.limit(settings.http_rate_limit_login)
async def login(request: Request, credentials: LoginRequest):
    """Authenticate and receive a JWT token."""
    user_service = get_user_service()
    auth_ctx = await user_service.authenticate(credentials.username, credentials.password)

    if auth_ctx is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid username or password, or account is banned.",
        )

    try:
        token, expires_in = get_auth_service().create_jwt_token(auth_ctx)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    user = await user_service.get_user(auth_ctx.user_id)
    logger.info(f"User '{user.username}' logged in")

    return LoginResponse(
        access_token=token,
        expires_in=expires_in,
        role=auth_ctx.role,
        user=user,
    )


@router.post(
    "/signup",
    response_model=User,
    status_code=201,
    summary="Register a New Account",
    description="""
    Create a regular user account. Only available while the
    `publicRegistration` setting is enabled.

    Password requirements: minimum 12 characters, at least one uppercase letter,
    one lowercase letter, and one digit.
    """,
    responses={
        201: {"description": "Account created"},
        403: {"description": "Public registration is disabled"},
        409: {"description": "Username or email already taken"},
        429: {"description": "Too many requests"},
    },
    dependencies=[Depends(enforce_unauthenticated_rate_limit)],
)
async def signup(request: SignupRequest):
    """Register a new user account."""
    if not await get_setting(SettingKey.PUBLIC_REGISTRATION):
        raise HTTPException(status_code=403, detail="Public registration is disabled.")

    try:
        user = await get_user_service().create_user(
            username=request.username,
            password=request.password,
            role=Role.USER,
            email=request.email,
        )
    except UserServiceError as e:
        raise HTTPException(status_code=409, detail=e.message)

    return user


@router.get(
    "/session",
    response_model=SessionInfoResponse,
    summary="Current Session",
    description="""
    Report who the caller is. Never fails: requests without a valid token
    get `authenticated: false`. With AUTH_ENABLED=false every caller is an
    anonymous admin.
    """,
)
async def session_info(auth: AuthContext | None = Depends(get_optional_auth)):
    """Describe the caller's authentication state."""
    if auth is None:
        return SessionInfoResponse(authenticated=False)

    return SessionInfoResponse(
        authenticated=True,
        user_id=auth.user_id,
        role=auth.role,
        auth_method=auth.auth_method,
    )
