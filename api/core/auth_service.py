"""
Authentication service for JWT session tokens.

Tokens are issued after a successful username/password login and carry
the user id and role; validation is stateless.
"""

import logging
import uuid
from datetime import datetime, timedelta

import jwt

from config import settings
from models.auth import AuthContext, Role

logger = logging.getLogger(__name__)


class AuthService:
    """JWT issuing and validation."""

    def create_jwt_token(
        self,
        auth_context: AuthContext,
        expires_in_override: int | None = None,
    ) -> tuple[str, int]:
        """
        Create a JWT token encoding the given auth context.

        Returns:
            Tuple of (token_string, expires_in_seconds)

        Raises:
            ValueError: If JWT_SECRET_KEY is not configured.
        """
        secret = settings.jwt_secret_key
        if not secret:
            raise ValueError("JWT_SECRET_KEY must be configured to issue tokens. Set it in environment variables.")

        expires_in = expires_in_override or settings.jwt_expiry_minutes * 60
        now = datetime.utcnow()

        payload = {
            "sub": auth_context.user_id or "anonymous",
            "role": auth_context.role.value,
            "iat": now,
            "exp": now + timedelta(seconds=expires_in),
            "jti": str(uuid.uuid4()),
        }
        if auth_context.user_id:
            payload["user_id"] = auth_context.user_id

        token = jwt.encode(payload, secret, algorithm=settings.jwt_algorithm)
        return token, expires_in

    def validate_jwt_token(self, token: str) -> AuthContext | None:
        """
        Validate a JWT token and return auth context.

        Returns None if the token is invalid or expired.
        """
        secret = settings.jwt_secret_key
        if not secret:
            return None

        try:
            payload = jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
        except jwt.ExpiredSignatureError:
            logger.debug("Rejected expired JWT token")
            return None
        except jwt.InvalidTokenError as e:
            logger.debug(f"Rejected invalid JWT token: {e}")
            return None

        try:
            role = Role(payload["role"])
        except (KeyError, ValueError):
            logger.debug("Rejected JWT token with unknown role")
            return None

        return AuthContext(
            user_id=payload.get("user_id"),
            role=role,
            auth_method="jwt",
        )


# Singleton
_auth_service: AuthService | None = None


def get_auth_service() -> AuthService:
    """Get the global auth service instance."""
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService()
    return _auth_service
