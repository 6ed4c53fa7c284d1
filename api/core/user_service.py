"""
User management service.

Handles user creation, authentication, partial updates and deletion.
Passwords are hashed with bcrypt. Updates write only the columns that
actually change (see core.change_detection).
"""

import logging
from datetime import datetime
from typing import Any

import bcrypt

from core.change_detection import NOT_PROVIDED, FieldComparator, create_field_map, empty_to_null, get_changed_fields
from core.database import get_database
from models.auth import AuthContext, Role, User

logger = logging.getLogger(__name__)

USER_UPDATE_FIELDS = ["email", "role", "username", "banned"]


def _username_fields(value: Any, current: dict, update: dict) -> dict:
    return {
        "username": value.lower(),
        "display_username": value,
        "name": value,
    }


def _ban_fields(value: Any, current: dict, update: dict) -> dict:
    reason = update.get("ban_reason")
    return {
        "banned": bool(value),
        "ban_reason": (reason or None) if value else None,
        "ban_expires": None,
    }


USER_FIELD_COMPARATORS = create_field_map(USER_UPDATE_FIELDS)({
    "email": FieldComparator(transform=empty_to_null),
    "role": FieldComparator(),
    # one username edit rewrites every name column
    "username": FieldComparator(map=_username_fields),
    # a new ban reason alone re-applies the ban
    "banned": FieldComparator(map=_ban_fields, depends_on=["ban_reason"]),
})


class UserServiceError(Exception):
    """User service error with user-friendly message."""

    def __init__(self, message: str, code: str = "user_error"):
        self.message = message
        self.code = code
        super().__init__(message)


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


class UserService:
    """User account management service."""

    def __init__(self):
        self.db = get_database()

    @staticmethod
    def _hash_password(password: str) -> str:
        """Hash a password using bcrypt."""
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")

    @staticmethod
    def _verify_password(password: str, password_hash: str) -> bool:
        """Verify a password against a bcrypt hash."""
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))

    def _row_to_user(self, row: dict) -> User:
        """Convert a database row to a User model."""
        return User(
            id=row["id"],
            username=row["username"],
            display_username=row["display_username"],
            name=row["name"],
            email=row["email"],
            role=Role(row["role"]),
            banned=bool(row["banned"]),
            ban_reason=row["ban_reason"],
            ban_expires=_parse_timestamp(row["ban_expires"]),
            created_at=_parse_timestamp(row["created_at"]),
            updated_at=_parse_timestamp(row["updated_at"]),
            last_login=_parse_timestamp(row["last_login"]),
        )

    async def create_user(
        self,
        username: str,
        password: str,
        role: Role = Role.USER,
        email: str | None = None,
    ) -> User:
        """
        Create a new user account.

        The username is stored lowercased; the submitted spelling is kept
        as display_username and name.

        Raises:
            UserServiceError: If the username or email is already taken.
        """
        existing = await self.db.fetch_one("SELECT id FROM users WHERE username = ?", (username.lower(),))
        if existing:
            raise UserServiceError(f"Username '{username}' already exists", code="username_exists")

        email = email or None
        if email:
            existing = await self.db.fetch_one("SELECT id FROM users WHERE email = ?", (email,))
            if existing:
                raise UserServiceError(f"Email '{email}' is already registered", code="email_exists")

        now = datetime.utcnow()
        user = User(
            username=username.lower(),
            display_username=username,
            name=username,
            email=email,
            role=role,
            created_at=now,
            updated_at=now,
        )

        await self.db.insert(
            "users",
            {
                "id": user.id,
                "username": user.username,
                "display_username": user.display_username,
                "name": user.name,
                "email": user.email,
                "password_hash": self._hash_password(password),
                "role": user.role.value,
                "banned": False,
                "ban_reason": None,
                "ban_expires": None,
                "created_at": now.isoformat(),
                "updated_at": now.isoformat(),
                "last_login": None,
            },
        )

        logger.info(f"Created user '{user.username}' (id={user.id}, role={role.value})")
        return user

    async def authenticate(self, username: str, password: str) -> AuthContext | None:
        """
        Authenticate a user by username and password.

        Returns AuthContext on success, None on failure. Banned users are
        rejected until their ban expires.
        """
        row = await self.db.fetch_one("SELECT * FROM users WHERE username = ?", (username.lower(),))

        if not row:
            return None

        if row["banned"]:
            ban_expires = _parse_timestamp(row["ban_expires"])
            if ban_expires is None or datetime.utcnow() < ban_expires:
                logger.debug(f"Rejected login for banned user: {username}")
                return None

        if not self._verify_password(password, row["password_hash"]):
            return None

        await self.db.update("users", row["id"], {"last_login": datetime.utcnow().isoformat()})

        return AuthContext(
            user_id=row["id"],
            role=Role(row["role"]),
            auth_method="jwt",
        )

    async def get_user(self, user_id: str) -> User | None:
        """Get a user by ID."""
        row = await self.db.fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))
        if not row:
            return None
        return self._row_to_user(row)

    async def list_users(self, page: int = 1, limit: int = 20) -> tuple[list[User], int]:
        """
        List users, newest first, one page at a time.

        Returns the page of users and the total user count. A limit of 0
        or less returns every user.
        """
        total = await self.db.count("users")

        if limit <= 0:
            rows = await self.db.fetch_all("SELECT * FROM users ORDER BY created_at DESC")
        else:
            offset = (max(page, 1) - 1) * limit
            rows = await self.db.fetch_all(
                "SELECT * FROM users ORDER BY created_at DESC LIMIT ? OFFSET ?",
                (limit, offset),
            )
        return [self._row_to_user(row) for row in rows], total

    async def update_user(
        self,
        request_user: AuthContext,
        user_id: str,
        email: Any = NOT_PROVIDED,
        username: Any = NOT_PROVIDED,
        role: Any = NOT_PROVIDED,
        banned: Any = NOT_PROVIDED,
        ban_reason: Any = NOT_PROVIDED,
        new_password: str | None = None,
    ) -> dict[str, Any]:
        """
        Apply a partial update to a user and return the written patch.

        Fields left as NOT_PROVIDED are not touched. An empty email clears
        it. Users may edit themselves but not their own role; editing
        anyone else requires the admin role.

        Raises:
            UserServiceError: If the user is missing, the caller lacks
                permission, or the new email/username is taken.
        """
        is_self = request_user.user_id == user_id
        if not is_self and not request_user.role.has_permission(Role.ADMIN):
            raise UserServiceError("You do not have permission to edit this user", code="forbidden")

        if isinstance(role, Role):
            role = role.value

        async with self.db.transaction() as conn:
            cursor = await conn.execute(
                "SELECT id, email, username, role, banned, ban_reason, ban_expires FROM users WHERE id = ?",
                (user_id,),
            )
            row = await cursor.fetchone()
            if row is None:
                raise UserServiceError(f"User with ID {user_id} not found", code="user_not_found")

            current = dict(row)
            current["banned"] = bool(current["banned"])

            if is_self and role is not NOT_PROVIDED and current["role"] != role:
                raise UserServiceError("You cannot change your own role", code="cannot_change_own_role")

            if email and email != current["email"]:
                cursor = await conn.execute("SELECT id FROM users WHERE email = ? AND id != ?", (email, user_id))
                if await cursor.fetchone():
                    raise UserServiceError(f"Another user with email '{email}' already exists", code="email_exists")

            if username and username != current["username"]:
                cursor = await conn.execute(
                    "SELECT id FROM users WHERE username = ? AND id != ?", (username.lower(), user_id)
                )
                if await cursor.fetchone():
                    raise UserServiceError(
                        f"Another user with username '{username}' already exists", code="username_exists"
                    )

            changes = get_changed_fields(
                current,
                {
                    "email": email,
                    "role": role,
                    "username": username,
                    "banned": banned,
                    "ban_reason": ban_reason,
                },
                USER_FIELD_COMPARATORS,
                USER_UPDATE_FIELDS,
            )
            logger.debug(f"Updating user {user_id} with fields: {changes}")

            patch = dict(changes)
            if new_password:
                patch["password_hash"] = self._hash_password(new_password)

            if patch:
                patch["updated_at"] = datetime.utcnow().isoformat()
                set_clause = ", ".join(f"{column} = ?" for column in patch)
                await conn.execute(
                    f"UPDATE users SET {set_clause} WHERE id = ?",
                    tuple(patch.values()) + (user_id,),
                )

        if changes or new_password:
            logger.info(f"Updated user {user_id}: {sorted(changes)}{' + password' if new_password else ''}")
        return changes

    async def delete_user(self, request_user: AuthContext, user_id: str) -> bool:
        """
        Delete a user account.

        Raises:
            UserServiceError: If the caller tries to delete their own account.
        """
        if request_user.user_id == user_id:
            raise UserServiceError("You cannot delete your own account", code="cannot_delete_self")

        result = await self.db.delete("users", user_id)
        if result:
            logger.info(f"Deleted user {user_id}")
        return result

    async def has_any_users(self) -> bool:
        """Check if any users exist in the database."""
        count = await self.db.count("users")
        return count > 0


# Singleton
_user_service: UserService | None = None


def get_user_service() -> UserService:
    """Get the global user service instance."""
    global _user_service
    if _user_service is None:
        _user_service = UserService()
    return _user_service
