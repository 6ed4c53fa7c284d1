"""
Unit tests for user administration and profile endpoints.

Tests request model validation and the HTTP behavior of the
/admin/users and /profile routes with mocked services.
"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from core.auth_dependency import get_current_auth
from core.user_service import UserServiceError
from main import app
from models.auth import AuthContext, Role, User

MOCK_USER = User(id="usr-123", username="alice", display_username="Alice", name="Alice", role=Role.USER)


@pytest.fixture
def client():
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.fixture(autouse=True)
def _clear_overrides():
    yield
    app.dependency_overrides.clear()


def _as(ctx: AuthContext):
    app.dependency_overrides[get_current_auth] = lambda: ctx


def _make_user_service(user: User | None = MOCK_USER):
    svc = MagicMock()
    svc.get_user = AsyncMock(return_value=user)
    svc.list_users = AsyncMock(return_value=([user], 1) if user else ([], 0))
    svc.create_user = AsyncMock(return_value=user)
    svc.update_user = AsyncMock(return_value={})
    svc.delete_user = AsyncMock(return_value=True)
    return svc


# --- Model Validation Tests ---


class TestUserCreateValidation:
    """Test UserCreateRequest validation."""

    def test_valid_user_create(self):
        from models.auth import UserCreateRequest

        req = UserCreateRequest(username="validuser", password="SecurePass123!", email="user@example.com")
        assert req.username == "validuser"
        assert req.role == Role.USER

    def test_username_invalid_chars(self):
        from models.auth import UserCreateRequest

        with pytest.raises(Exception):
            UserCreateRequest(username="user name", password="SecurePass123!")

    def test_password_no_digit(self):
        from models.auth import UserCreateRequest

        with pytest.raises(Exception):
            UserCreateRequest(username="validuser", password="NoDigitsHere!!")

    def test_empty_email_becomes_none(self):
        from models.auth import UserCreateRequest

        req = UserCreateRequest(username="validuser", password="SecurePass123!", email="")
        assert req.email is None

    def test_update_keeps_empty_email(self):
        from models.auth import UserUpdateRequest

        req = UserUpdateRequest(email="")
        assert req.email == ""
        assert req.model_fields_set == {"email"}

    def test_signup_passwords_must_match(self):
        from models.auth import SignupRequest

        with pytest.raises(Exception):
            SignupRequest(username="newuser", password="SecurePass123!", password_confirmation="Different123!")


# --- Admin Endpoint Tests ---


class TestAdminUserEndpoints:
    """Test /admin/users routes."""

    @pytest.mark.asyncio
    async def test_list_users(self, client):
        svc = _make_user_service()
        with patch("endpoints.users.get_user_service", return_value=svc):
            async with client:
                resp = await client.get("/admin/users")

        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 1
        assert body["users"][0]["username"] == "alice"
        assert body["page"] == 1
        assert body["limit"] == 20
        svc.list_users.assert_awaited_once_with(page=1, limit=20)

    @pytest.mark.asyncio
    async def test_list_users_pagination_params(self, client):
        svc = _make_user_service()
        svc.list_users = AsyncMock(return_value=([MOCK_USER], 11))
        with patch("endpoints.users.get_user_service", return_value=svc):
            async with client:
                resp = await client.get("/admin/users?page=2&limit=5")

        assert resp.status_code == 200
        body = resp.json()
        assert (body["page"], body["limit"], body["total"]) == (2, 5, 11)
        svc.list_users.assert_awaited_once_with(page=2, limit=5)

    @pytest.mark.asyncio
    async def test_list_users_negative_limit_reported_as_zero(self, client):
        svc = _make_user_service()
        with patch("endpoints.users.get_user_service", return_value=svc):
            async with client:
                resp = await client.get("/admin/users?limit=-1")

        assert resp.status_code == 200
        assert resp.json()["limit"] == 0
        svc.list_users.assert_awaited_once_with(page=1, limit=-1)

    @pytest.mark.asyncio
    async def test_list_users_page_zero_rejected(self, client):
        svc = _make_user_service()
        with patch("endpoints.users.get_user_service", return_value=svc):
            async with client:
                resp = await client.get("/admin/users?page=0")

        assert resp.status_code == 422
        svc.list_users.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_admin_forbidden(self, client):
        _as(AuthContext(user_id="usr-123", role=Role.USER, auth_method="jwt"))
        async with client:
            resp = await client.get("/admin/users")

        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_create_user(self, client):
        svc = _make_user_service()
        with patch("endpoints.users.get_user_service", return_value=svc):
            async with client:
                resp = await client.post(
                    "/admin/users",
                    json={"username": "Alice", "password": "SecurePass123!", "email": "alice@example.com"},
                )

        assert resp.status_code == 201
        svc.create_user.assert_awaited_once()
        assert svc.create_user.call_args.kwargs["username"] == "Alice"

    @pytest.mark.asyncio
    async def test_create_user_conflict(self, client):
        svc = _make_user_service()
        svc.create_user = AsyncMock(side_effect=UserServiceError("Username 'alice' already exists", "username_exists"))
        with patch("endpoints.users.get_user_service", return_value=svc):
            async with client:
                resp = await client.post("/admin/users", json={"username": "alice", "password": "SecurePass123!"})

        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_get_user_not_found(self, client):
        svc = _make_user_service(user=None)
        with patch("endpoints.users.get_user_service", return_value=svc):
            async with client:
                resp = await client.get("/admin/users/usr-missing")

        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_update_passes_only_sent_fields(self, client):
        svc = _make_user_service()
        with patch("endpoints.users.get_user_service", return_value=svc):
            async with client:
                resp = await client.put("/admin/users/usr-123", json={"email": "", "banned": True})

        assert resp.status_code == 200
        args, kwargs = svc.update_user.call_args
        assert args[1] == "usr-123"
        assert kwargs == {"email": "", "banned": True}

    @pytest.mark.asyncio
    async def test_update_own_role_rejected(self, client):
        svc = _make_user_service()
        svc.update_user = AsyncMock(
            side_effect=UserServiceError("You cannot change your own role", "cannot_change_own_role")
        )
        with patch("endpoints.users.get_user_service", return_value=svc):
            async with client:
                resp = await client.put("/admin/users/usr-123", json={"role": "user"})

        assert resp.status_code == 400
        assert resp.json()["detail"] == "You cannot change your own role"

    @pytest.mark.asyncio
    async def test_delete_user(self, client):
        svc = _make_user_service()
        with patch("endpoints.users.get_user_service", return_value=svc):
            async with client:
                resp = await client.delete("/admin/users/usr-123")

        assert resp.status_code == 200
        assert resp.json()["success"] is True

    @pytest.mark.asyncio
    async def test_delete_self_rejected(self, client):
        _as(AuthContext(user_id="usr-123", role=Role.ADMIN, auth_method="jwt"))
        svc = _make_user_service()
        svc.delete_user = AsyncMock(side_effect=UserServiceError("You cannot delete your own account", "cannot_delete_self"))
        with patch("endpoints.users.get_user_service", return_value=svc):
            async with client:
                resp = await client.delete("/admin/users/usr-123")

        assert resp.status_code == 400


class TestAdminStatsEndpoints:
    """Test /admin/stats routes."""

    @staticmethod
    def _make_stats_service(total_users: int = 3):
        svc = MagicMock()
        svc.get_user_stats = AsyncMock(
            return_value={"total_users": total_users, "computed_at": datetime(2024, 1, 1, 12, 0, 0)}
        )
        svc.clear_stats_cache = MagicMock()
        return svc

    @pytest.mark.asyncio
    async def test_user_stats(self, client):
        svc = self._make_stats_service()
        with patch("endpoints.stats.get_stats_service", return_value=svc):
            async with client:
                resp = await client.get("/admin/stats")

        assert resp.status_code == 200
        body = resp.json()
        assert body["total_users"] == 3
        assert body["suggestions"] == []
        svc.clear_stats_cache.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_install_suggests_setup(self, client):
        svc = self._make_stats_service(total_users=0)
        with patch("endpoints.stats.get_stats_service", return_value=svc):
            async with client:
                resp = await client.get("/admin/stats")

        assert resp.json()["suggestions"][0]["priority"] == "high"

    @pytest.mark.asyncio
    async def test_refresh_clears_cache(self, client):
        svc = self._make_stats_service()
        with patch("endpoints.stats.get_stats_service", return_value=svc):
            async with client:
                resp = await client.post("/admin/stats/refresh")

        assert resp.status_code == 200
        svc.clear_stats_cache.assert_called_once()
        svc.get_user_stats.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_non_admin_forbidden(self, client):
        _as(AuthContext(user_id="usr-123", role=Role.USER, auth_method="jwt"))
        svc = self._make_stats_service()
        with patch("endpoints.stats.get_stats_service", return_value=svc):
            async with client:
                resp = await client.post("/admin/stats/refresh")

        assert resp.status_code == 403
        svc.clear_stats_cache.assert_not_called()


# --- Profile Endpoint Tests ---


class TestProfileEndpoints:
    """Test /profile routes."""

    @pytest.mark.asyncio
    async def test_get_profile(self, client):
        _as(AuthContext(user_id="usr-123", role=Role.USER, auth_method="jwt"))
        svc = _make_user_service()
        with patch("endpoints.profile.get_user_service", return_value=svc):
            async with client:
                resp = await client.get("/profile")

        assert resp.status_code == 200
        assert resp.json()["id"] == "usr-123"

    @pytest.mark.asyncio
    async def test_profile_requires_user(self, client):
        async with client:
            resp = await client.get("/profile")

        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_update_profile_rate_limited(self, client):
        from models.rate_limit import RateLimitResult

        _as(AuthContext(user_id="usr-123", role=Role.USER, auth_method="jwt"))
        rate_limits = MagicMock()
        rate_limits.check_limit = AsyncMock(
            return_value=RateLimitResult(allowed=False, ms_before_next=4200, remaining_points=0)
        )
        svc = _make_user_service()
        with patch("core.auth_dependency.get_rate_limit_service", return_value=rate_limits):
            with patch("endpoints.profile.get_user_service", return_value=svc):
                async with client:
                    resp = await client.put("/profile", json={"email": "new@example.com"})

        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "5"
        svc.update_user.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_profile(self, client):
        from models.rate_limit import RateLimitResult

        ctx = AuthContext(user_id="usr-123", role=Role.USER, auth_method="jwt")
        _as(ctx)
        rate_limits = MagicMock()
        rate_limits.check_limit = AsyncMock(return_value=RateLimitResult(allowed=True, remaining_points=3))
        svc = _make_user_service()
        with patch("core.auth_dependency.get_rate_limit_service", return_value=rate_limits):
            with patch("endpoints.profile.get_user_service", return_value=svc):
                async with client:
                    resp = await client.put("/profile", json={"username": "Alicia"})

        assert resp.status_code == 200
        args, kwargs = svc.update_user.call_args
        assert args[1] == "usr-123"
        assert kwargs == {"username": "Alicia"}
