"""
Authentication and authorization models.

Pydantic models for users, auth context, and role-based access control.
"""

import re
import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

_USERNAME_RE = re.compile(r"^[a-zA-Z0-9_.-]+$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class Role(str, Enum):
    """User role with hierarchical permissions."""
    ADMIN = "admin"
    USER = "user"

    def has_permission(self, required: "Role") -> bool:
        """Check if this role meets or exceeds the required role."""
        hierarchy = {Role.ADMIN: 2, Role.USER: 1}
        return hierarchy.get(self, 0) >= hierarchy.get(required, 0)


class AuthContext(BaseModel):
    """Context for the authenticated request."""
    user_id: Optional[str] = None
    role: Role = Role.USER
    auth_method: str = "none"  # "jwt", "none"
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None


def _validate_username(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Username cannot be empty")
    if not _USERNAME_RE.match(v):
        raise ValueError("Username may only contain letters, digits, underscores, dots, and hyphens")
    return v


def _validate_password(v: str) -> str:
    if len(v) < 12:
        raise ValueError("Password must be at least 12 characters")
    if not any(c.isupper() for c in v):
        raise ValueError("Password must contain at least one uppercase letter")
    if not any(c.islower() for c in v):
        raise ValueError("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in v):
        raise ValueError("Password must contain at least one digit")
    return v


def _validate_email(v: Optional[str]) -> Optional[str]:
    # Empty string is kept so partial updates can clear the email
    if v is None:
        return v
    v = v.strip()
    if v and not _EMAIL_RE.match(v):
        raise ValueError("Invalid email address format")
    return v


class User(BaseModel):
    """User account record (never includes password hash)."""
    id: str = Field(default_factory=lambda: f"usr-{uuid.uuid4().hex[:12]}")
    username: str
    display_username: Optional[str] = None
    name: str = ""
    email: Optional[str] = None
    role: Role = Role.USER
    banned: bool = False
    ban_reason: Optional[str] = None
    ban_expires: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None
    last_login: Optional[datetime] = None


class UserCreateRequest(BaseModel):
    """Request to create a new user account."""
    username: str = Field(..., min_length=3, max_length=50, description="Unique username")
    email: Optional[str] = Field(None, max_length=255, description="Email address")
    password: str = Field(..., min_length=12, max_length=128, description="Password (min 12 chars, mixed case + digit)")
    role: Role = Field(default=Role.USER, description="Role for this user")

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        return _validate_username(v)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _validate_password(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return _validate_email(v) or None


class SignupRequest(BaseModel):
    """Public registration and first-time setup form."""
    username: str = Field(..., min_length=3, max_length=50)
    email: Optional[str] = Field(None, max_length=255)
    password: str = Field(..., min_length=12, max_length=128)
    password_confirmation: str = Field(..., description="Must match password")

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        return _validate_username(v)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _validate_password(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return _validate_email(v) or None

    @model_validator(mode="after")
    def passwords_match(self) -> "SignupRequest":
        if self.password != self.password_confirmation:
            raise ValueError("Passwords do not match")
        return self


class UserUpdateRequest(BaseModel):
    """
    Admin edit of a user account.

    Only fields present in the request body are considered; an explicit
    empty email clears it.
    """
    username: Optional[str] = Field(None, min_length=3, max_length=50)
    email: Optional[str] = Field(None, max_length=255)
    role: Optional[Role] = None
    banned: Optional[bool] = None
    ban_reason: Optional[str] = Field(None, max_length=500)
    new_password: Optional[str] = Field(None, min_length=12, max_length=128)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _validate_username(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return _validate_email(v)

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _validate_password(v)


class ProfileUpdateRequest(BaseModel):
    """Self-service profile edit."""
    username: Optional[str] = Field(None, min_length=3, max_length=50)
    email: Optional[str] = Field(None, max_length=255)
    new_password: Optional[str] = Field(None, min_length=12, max_length=128)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _validate_username(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return _validate_email(v)

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _validate_password(v)


class LoginRequest(BaseModel):
    """Request to authenticate with username and password."""
    username: str = Field(..., description="Username")
    password: str = Field(..., description="Password")


class LoginResponse(BaseModel):
    """Response after successful login."""
    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer")
    expires_in: int = Field(..., description="Token lifetime in seconds")
    role: Role
    user: User
    suggestions: List[dict] = Field(default_factory=lambda: [
        {
            "action": "Use Authorization: Bearer <token> header",
            "reason": "Include the JWT in subsequent requests for stateless auth",
            "priority": "high"
        }
    ])


class UserListResponse(BaseModel):
    """Response for listing users."""
    users: List[User]
    total: int = Field(..., description="Total number of users, across all pages")
    page: int = 1
    limit: int = Field(20, description="Page size; 0 means all users")
    suggestions: List[dict] = Field(default_factory=list)


class SetupStatusResponse(BaseModel):
    """Whether first-time setup still has to run."""
    setup_required: bool
    first_time_setup_completed: bool
    has_users: bool
    suggestions: List[dict] = Field(default_factory=list)


class SetupResponse(BaseModel):
    """Result of first-time setup."""
    user: User
    message: str
    suggestions: List[dict] = Field(default_factory=list)


class UserStatsResponse(BaseModel):
    """User statistics for the admin dashboard."""
    total_users: int
    computed_at: datetime = Field(..., description="When the numbers were computed; they are cached for a minute")
    suggestions: List[dict] = Field(default_factory=list)


class SessionInfoResponse(BaseModel):
    """Who the caller is, if anyone."""
    authenticated: bool
    user_id: Optional[str] = None
    role: Optional[Role] = None
    auth_method: str = "none"
