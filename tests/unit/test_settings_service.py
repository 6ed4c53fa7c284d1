"""
Unit tests for the settings service.

Uses a real temporary SQLite database so seeding, upserts and the
all-or-nothing bulk update are exercised end to end.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.database import deserialize_json
from core.settings_service import SettingsService
from models.settings import SETTING_DEFAULT_VALUES, SettingKey, SettingsValidationError


async def _stored(db) -> dict:
    rows = await db.fetch_all("SELECT key, value_json FROM settings")
    return {row["key"]: deserialize_json(row["value_json"]) for row in rows}


class TestInitialization:
    """Test default seeding and coalesced initialization."""

    @pytest.mark.asyncio
    async def test_seeds_every_default(self, db, settings_service):
        await settings_service.initialize()

        assert await _stored(db) == SETTING_DEFAULT_VALUES
        assert settings_service.initialized is True

    @pytest.mark.asyncio
    async def test_seeded_rows_carry_description_and_category(self, db, settings_service):
        await settings_service.initialize()

        row = await db.fetch_one("SELECT * FROM settings WHERE key = ?", ("searchResultsLimit",))
        assert row["category"] == "Search"
        assert row["description"] == "Maximum number of search results to return"

    @pytest.mark.asyncio
    async def test_second_initialize_writes_nothing(self, db, settings_service):
        await settings_service.initialize()

        fresh = SettingsService(db=db)
        fresh.db = MagicMock(wraps=db)
        fresh.db.transaction = MagicMock(wraps=db.transaction)
        await fresh.initialize()
        await fresh.initialize()

        fresh.db.transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_existing_values_are_kept(self, db, settings_service):
        await db.execute(
            "INSERT INTO settings (key, value_json) VALUES (?, ?)",
            ("publicRegistration", "true"),
        )

        await settings_service.initialize()

        assert await settings_service.get(SettingKey.PUBLIC_REGISTRATION) is True
        stored = await _stored(db)
        assert stored["publicRegistration"] is True
        assert stored["searchResultsLimit"] == 50

    @pytest.mark.asyncio
    async def test_concurrent_initialize_runs_once(self, db):
        service = SettingsService(db=db)
        original = service._run_initialization
        calls = []

        async def counted():
            calls.append(1)
            await asyncio.sleep(0.01)
            await original()

        service._run_initialization = counted

        await asyncio.gather(*(service.initialize() for _ in range(5)))

        assert len(calls) == 1
        assert service.initialized is True

    @pytest.mark.asyncio
    async def test_failure_propagates_and_retries(self, db):
        service = SettingsService(db=db)
        service.db = MagicMock()
        service.db.fetch_all = AsyncMock(side_effect=RuntimeError("db down"))

        with pytest.raises(RuntimeError):
            await service.initialize()
        assert service.initialized is False

        service.db = db
        await service.initialize()
        assert service.initialized is True


class TestReads:
    """Test cached reads."""

    @pytest.mark.asyncio
    async def test_get_returns_default(self, settings_service):
        assert await settings_service.get(SettingKey.SEARCH_RESULTS_LIMIT) == 50
        assert await settings_service.get("searchResultsLimit") == 50

    @pytest.mark.asyncio
    async def test_get_serves_from_cache(self, db, settings_service):
        await settings_service.initialize()
        await db.execute("UPDATE settings SET value_json = ? WHERE key = ?", ("99", "searchResultsLimit"))

        assert await settings_service.get(SettingKey.SEARCH_RESULTS_LIMIT) == 50

    @pytest.mark.asyncio
    async def test_cache_miss_falls_back_to_default(self, db, settings_service):
        await settings_service.initialize()
        await db.execute("DELETE FROM settings WHERE key = ?", ("searchResultsLimit",))
        settings_service._cache.pop("searchResultsLimit")

        assert await settings_service.get(SettingKey.SEARCH_RESULTS_LIMIT) == 50

    @pytest.mark.asyncio
    async def test_cache_miss_reads_stored_row_and_caches_it(self, db, settings_service):
        await settings_service.initialize()
        await db.execute("UPDATE settings SET value_json = ? WHERE key = ?", ("77", "searchResultsLimit"))
        settings_service._cache.pop("searchResultsLimit")

        assert await settings_service.get(SettingKey.SEARCH_RESULTS_LIMIT) == 77
        assert settings_service._cache["searchResultsLimit"] == 77

        # later reads come from the cache, not storage
        await db.execute("UPDATE settings SET value_json = ? WHERE key = ?", ("88", "searchResultsLimit"))
        assert await settings_service.get(SettingKey.SEARCH_RESULTS_LIMIT) == 77

    @pytest.mark.asyncio
    async def test_get_setting_object(self, settings_service):
        record = await settings_service.get_setting_object(SettingKey.PUBLIC_REGISTRATION)

        assert record.key == "publicRegistration"
        assert record.value is False
        assert record.category == "System"

    @pytest.mark.asyncio
    async def test_get_all_settings(self, settings_service):
        records = await settings_service.get_all_settings()
        assert {r.key for r in records} == set(SETTING_DEFAULT_VALUES)


class TestWrites:
    """Test single and bulk updates."""

    @pytest.mark.asyncio
    async def test_update_setting_by_key(self, db, settings_service):
        value = await settings_service.update_setting_by_key(SettingKey.RATE_LIMITING_AUTHED_LIMIT, 42)

        assert value == 42
        assert await settings_service.get(SettingKey.RATE_LIMITING_AUTHED_LIMIT) == 42
        assert (await _stored(db))["rateLimitingAuthedLimit"] == 42

    @pytest.mark.asyncio
    async def test_update_setting_by_key_rejects_invalid(self, db, settings_service):
        with pytest.raises(SettingsValidationError):
            await settings_service.update_setting_by_key(SettingKey.RATE_LIMITING_AUTHED_LIMIT, 0)

        assert await settings_service.get(SettingKey.RATE_LIMITING_AUTHED_LIMIT) == 20
        assert (await _stored(db))["rateLimitingAuthedLimit"] == 20

    @pytest.mark.asyncio
    async def test_update_settings_bulk(self, db, settings_service):
        updated = await settings_service.update_settings(
            {
                "rateLimitingAuthedEnabled": True,
                "rateLimitingAuthedLimit": 5,
                "publicRegistration": None,
            }
        )

        assert updated == {"rateLimitingAuthedEnabled": True, "rateLimitingAuthedLimit": 5}
        stored = await _stored(db)
        assert stored["rateLimitingAuthedEnabled"] is True
        assert stored["rateLimitingAuthedLimit"] == 5
        assert stored["publicRegistration"] is False

    @pytest.mark.asyncio
    async def test_update_settings_is_all_or_nothing(self, db, settings_service):
        with pytest.raises(SettingsValidationError) as exc_info:
            await settings_service.update_settings(
                {
                    "rateLimitingAuthedEnabled": True,
                    "rateLimitingAuthedLimit": 0,
                }
            )

        assert exc_info.value.key == "rateLimitingAuthedLimit"
        assert await settings_service.get(SettingKey.RATE_LIMITING_AUTHED_ENABLED) is False
        assert (await _stored(db))["rateLimitingAuthedEnabled"] is False

    @pytest.mark.asyncio
    async def test_storage_failure_leaves_cache_untouched(self, db, settings_service):
        await settings_service.initialize()

        class BrokenConnection:
            async def execute(self, *args):
                raise RuntimeError("disk full")

        from contextlib import asynccontextmanager

        @asynccontextmanager
        async def broken_transaction():
            yield BrokenConnection()

        settings_service.db = MagicMock(wraps=db)
        settings_service.db.transaction = broken_transaction

        with pytest.raises(RuntimeError):
            await settings_service.update_settings({"publicRegistration": True})

        assert await settings_service.get(SettingKey.PUBLIC_REGISTRATION) is False

    @pytest.mark.asyncio
    async def test_empty_update_is_noop(self, settings_service):
        assert await settings_service.update_settings({}) == {}


class TestDeletes:
    """Test deletion and cache reset."""

    @pytest.mark.asyncio
    async def test_delete_setting_by_key(self, db, settings_service):
        await settings_service.initialize()

        assert await settings_service.delete_setting_by_key(SettingKey.PUBLIC_REGISTRATION) is True
        assert "publicRegistration" not in await _stored(db)

    @pytest.mark.asyncio
    async def test_delete_settings_reseeds_on_next_get(self, db, settings_service):
        await settings_service.update_setting_by_key(SettingKey.SEARCH_RESULTS_LIMIT, 10)

        count = await settings_service.delete_settings()
        assert count == len(SETTING_DEFAULT_VALUES)
        assert settings_service.initialized is False

        assert await settings_service.get(SettingKey.SEARCH_RESULTS_LIMIT) == 50
        assert await _stored(db) == SETTING_DEFAULT_VALUES

    @pytest.mark.asyncio
    async def test_reset_cache_reloads_from_storage(self, db, settings_service):
        await settings_service.initialize()
        await db.execute("UPDATE settings SET value_json = ? WHERE key = ?", ("99", "searchResultsLimit"))

        await settings_service.reset_cache()

        assert await settings_service.get(SettingKey.SEARCH_RESULTS_LIMIT) == 99
