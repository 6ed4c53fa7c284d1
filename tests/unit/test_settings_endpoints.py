"""
Unit tests for the admin settings endpoints.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from core.auth_dependency import get_current_auth
from core.rate_limiter import RateLimitInitializationError
from main import app
from models.auth import AuthContext, Role
from models.settings import SETTINGS_CONFIG, SettingRecord, SettingsValidationError


def _records(**overrides) -> list[SettingRecord]:
    return [
        SettingRecord(
            key=key,
            value=overrides.get(key, definition.default),
            description=definition.description,
            category=definition.category.value,
        )
        for key, definition in SETTINGS_CONFIG.items()
    ]


def _make_settings_service(**overrides):
    svc = MagicMock()
    svc.get_all_settings = AsyncMock(return_value=_records(**overrides))
    svc.update_settings = AsyncMock(return_value=overrides)
    return svc


def _make_rate_limit_service():
    svc = MagicMock()
    svc.reload = AsyncMock()
    return svc


@pytest.fixture
def client():
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest.fixture(autouse=True)
def _clear_overrides():
    yield
    app.dependency_overrides.clear()


class TestListSettings:
    """Test GET /admin/settings."""

    @pytest.mark.asyncio
    async def test_lists_records_and_values(self, client):
        svc = _make_settings_service()
        with patch("endpoints.admin_settings.get_settings_service", return_value=svc):
            async with client:
                resp = await client.get("/admin/settings")

        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == len(SETTINGS_CONFIG)
        assert body["values"]["searchResultsLimit"] == 50
        assert body["values"]["rateLimitingUnauthenticatedGlobalLimit"] == 20

    @pytest.mark.asyncio
    async def test_requires_admin(self, client):
        app.dependency_overrides[get_current_auth] = lambda: AuthContext(user_id="usr-1", role=Role.USER)
        async with client:
            resp = await client.get("/admin/settings")

        assert resp.status_code == 403


class TestUpdateSettings:
    """Test PUT /admin/settings."""

    @pytest.mark.asyncio
    async def test_update_sends_only_provided_keys_and_reloads(self, client):
        svc = _make_settings_service(rateLimitingAuthedEnabled=True, rateLimitingAuthedLimit=5)
        rate_limits = _make_rate_limit_service()

        with patch("endpoints.admin_settings.get_settings_service", return_value=svc):
            with patch("endpoints.admin_settings.get_rate_limit_service", return_value=rate_limits):
                async with client:
                    resp = await client.put(
                        "/admin/settings",
                        json={"rateLimitingAuthedEnabled": True, "rateLimitingAuthedLimit": 5},
                    )

        assert resp.status_code == 200
        sent = svc.update_settings.call_args[0][0]
        assert sent == {"rateLimitingAuthedEnabled": True, "rateLimitingAuthedLimit": 5}
        rate_limits.reload.assert_awaited_once()
        assert resp.json()["values"]["rateLimitingAuthedLimit"] == 5

    @pytest.mark.asyncio
    async def test_out_of_range_value_rejected_by_request_model(self, client):
        svc = _make_settings_service()
        with patch("endpoints.admin_settings.get_settings_service", return_value=svc):
            async with client:
                resp = await client.put("/admin/settings", json={"rateLimitingAuthedLimit": 0})

        assert resp.status_code == 422
        svc.update_settings.assert_not_called()

    @pytest.mark.asyncio
    async def test_service_validation_error_maps_to_422(self, client):
        svc = _make_settings_service()
        svc.update_settings = AsyncMock(
            side_effect=SettingsValidationError("searchResultsLimit", "Input should be less than or equal to 1000")
        )
        rate_limits = _make_rate_limit_service()

        with patch("endpoints.admin_settings.get_settings_service", return_value=svc):
            with patch("endpoints.admin_settings.get_rate_limit_service", return_value=rate_limits):
                async with client:
                    resp = await client.put("/admin/settings", json={"searchResultsLimit": 10})

        assert resp.status_code == 422
        assert resp.json()["detail"]["key"] == "searchResultsLimit"
        rate_limits.reload.assert_not_called()

    @pytest.mark.asyncio
    async def test_reload_failure_is_reported_not_raised(self, client):
        svc = _make_settings_service(rateLimitingAuthedEnabled=True)
        rate_limits = _make_rate_limit_service()
        rate_limits.reload = AsyncMock(side_effect=RateLimitInitializationError("settings unreadable"))

        with patch("endpoints.admin_settings.get_settings_service", return_value=svc):
            with patch("endpoints.admin_settings.get_rate_limit_service", return_value=rate_limits):
                async with client:
                    resp = await client.put("/admin/settings", json={"rateLimitingAuthedEnabled": True})

        assert resp.status_code == 200
        suggestions = resp.json()["suggestions"]
        assert len(suggestions) == 1
        assert suggestions[0]["priority"] == "high"

    @pytest.mark.asyncio
    async def test_first_time_setup_flag_not_editable(self, client):
        svc = _make_settings_service()
        rate_limits = _make_rate_limit_service()

        with patch("endpoints.admin_settings.get_settings_service", return_value=svc):
            with patch("endpoints.admin_settings.get_rate_limit_service", return_value=rate_limits):
                async with client:
                    resp = await client.put("/admin/settings", json={"firstTimeSetupCompleted": False})

        assert resp.status_code == 200
        assert svc.update_settings.call_args[0][0] == {}
