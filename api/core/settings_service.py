"""
Application settings service.

Serves the persisted key/value settings declared in models.settings from
an in-memory cache. Missing keys are seeded with their defaults on first
access; writes are validated against each key's schema before anything
reaches the database.
"""

import asyncio
import logging
from enum import Enum
from typing import Any

from core.database import Database, deserialize_json, get_database, serialize_json
from models.settings import (
    SETTING_CATEGORY_VALUES,
    SETTING_DESCRIPTIONS,
    SettingKey,
    SettingRecord,
    get_setting_config,
    get_settings_entries,
    setting_key_name,
    validate_setting,
)

logger = logging.getLogger(__name__)

_INSERT_IF_ABSENT = (
    "INSERT INTO settings (key, value_json, description, category) VALUES (?, ?, ?, ?) "
    "ON CONFLICT(key) DO NOTHING"
)
_UPSERT = (
    "INSERT INTO settings (key, value_json, description, category) VALUES (?, ?, ?, ?) "
    "ON CONFLICT(key) DO UPDATE SET value_json = excluded.value_json"
)


class SettingsInitState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class SettingsService:
    """Cached access to application settings."""

    def __init__(self, db: Database | None = None):
        self.db = db or get_database()
        self._cache: dict[str, Any] = {}
        self._state = SettingsInitState.UNINITIALIZED
        self._init_task: asyncio.Task | None = None

    @property
    def initialized(self) -> bool:
        return self._state is SettingsInitState.READY

    @staticmethod
    def _row_to_record(row: dict) -> SettingRecord:
        return SettingRecord(
            key=row["key"],
            value=deserialize_json(row["value_json"]),
            description=row["description"],
            category=row["category"],
        )

    @staticmethod
    def _row_params(name: str, value: Any) -> tuple:
        category = SETTING_CATEGORY_VALUES.get(name)
        return (
            name,
            serialize_json(value),
            SETTING_DESCRIPTIONS.get(name),
            category.value if category else None,
        )

    # --- Initialization ---

    async def _run_initialization(self) -> None:
        logger.info("Initializing default settings...")
        try:
            rows = await self.db.fetch_all("SELECT key FROM settings")
            existing_keys = {row["key"] for row in rows}

            missing = [(key, d) for key, d in get_settings_entries() if key not in existing_keys]
            if missing:
                async with self.db.transaction() as conn:
                    for key, definition in missing:
                        await conn.execute(_INSERT_IF_ABSENT, self._row_params(key, definition.default))
                logger.info(f"Initialized {len(missing)} default settings")

            all_rows = await self.db.fetch_all("SELECT key, value_json FROM settings")
            for row in all_rows:
                self._cache[row["key"]] = deserialize_json(row["value_json"])

            self._state = SettingsInitState.READY
        except Exception as e:
            self._state = SettingsInitState.FAILED
            logger.error(f"Failed to initialize settings: {e}")
            raise
        finally:
            self._init_task = None

    async def initialize(self) -> None:
        """
        Seed missing settings with defaults and fill the cache.

        Idempotent; concurrent callers share one in-flight initialization.
        Errors propagate to every waiting caller and the next call retries.
        """
        if self._state is SettingsInitState.READY:
            return

        if self._init_task is None:
            self._state = SettingsInitState.INITIALIZING
            self._init_task = asyncio.ensure_future(self._run_initialization())

        await asyncio.shield(self._init_task)

    async def _wait_for_initialization_to_finish(self) -> None:
        task = self._init_task
        if task is None:
            return
        try:
            await asyncio.shield(task)
        except Exception as e:
            logger.warning(f"Previous settings initialization failed: {e}")

    # --- Reads ---

    async def get(self, key: SettingKey | str) -> Any:
        """Get a setting value, falling back to its declared default when the row is missing."""
        await self.initialize()
        name = setting_key_name(key)

        if name in self._cache:
            return self._cache[name]

        row = await self.db.fetch_one("SELECT value_json FROM settings WHERE key = ?", (name,))
        if row is None:
            definition = get_setting_config(name)
            return definition.default if definition else None

        value = deserialize_json(row["value_json"])
        self._cache[name] = value
        return value

    async def get_setting_object(self, key: SettingKey | str) -> SettingRecord | None:
        """Get the full stored row for a key, refreshing the cache."""
        await self.initialize()
        name = setting_key_name(key)

        row = await self.db.fetch_one("SELECT * FROM settings WHERE key = ?", (name,))
        if row is None:
            return None

        record = self._row_to_record(row)
        self._cache[name] = record.value
        return record

    async def get_all_settings(self) -> list[SettingRecord]:
        """Get every stored setting row."""
        await self.initialize()
        rows = await self.db.fetch_all("SELECT * FROM settings ORDER BY category, key")
        return [self._row_to_record(row) for row in rows]

    # --- Writes ---

    async def update_setting_by_key(self, key: SettingKey | str, value: Any) -> Any:
        """
        Validate and store a single setting, returning the stored value.

        Raises:
            SettingsValidationError: If the value fails the key's schema.
        """
        await self.initialize()
        name = setting_key_name(key)

        validated = validate_setting(name, value)
        await self.db.execute(_UPSERT, self._row_params(name, validated))

        self._cache[name] = validated
        logger.info(f"Updated setting {name}")
        return validated

    async def update_settings(self, settings_data: dict[str, Any]) -> dict[str, Any]:
        """
        Validate and upsert several settings atomically.

        Every value is validated before any write, so a bad value leaves
        both storage and cache untouched. The cache is updated after commit.

        Raises:
            SettingsValidationError: If any value fails its schema.
        """
        await self.initialize()

        validated: dict[str, Any] = {}
        for key, value in settings_data.items():
            if value is None:
                continue
            name = setting_key_name(key)
            validated[name] = validate_setting(name, value)

        if not validated:
            return {}

        async with self.db.transaction() as conn:
            for name, value in validated.items():
                await conn.execute(_UPSERT, self._row_params(name, value))

        self._cache.update(validated)
        logger.info(f"Updated settings: {list(validated.keys())}")
        return validated

    async def delete_setting_by_key(self, key: SettingKey | str) -> bool:
        """Delete a single stored setting and drop it from the cache."""
        name = setting_key_name(key)
        deleted = await self.db.delete("settings", name, id_column="key")
        self._cache.pop(name, None)
        return deleted

    async def delete_settings(self) -> int:
        """Delete every stored setting. The next access re-seeds defaults."""
        await self._wait_for_initialization_to_finish()
        count = await self.db.execute("DELETE FROM settings")
        self._cache.clear()
        self._state = SettingsInitState.UNINITIALIZED
        return count

    async def reset_cache(self) -> None:
        """Drop the cache so the next access reloads (and re-seeds) from storage."""
        await self._wait_for_initialization_to_finish()
        self._cache.clear()
        self._state = SettingsInitState.UNINITIALIZED


# Singleton
_settings_service: SettingsService | None = None


def get_settings_service() -> SettingsService:
    """Get the global settings service instance."""
    global _settings_service
    if _settings_service is None:
        _settings_service = SettingsService()
    return _settings_service


async def get_setting(key: SettingKey | str) -> Any:
    """Read a setting value through the global settings service."""
    return await get_settings_service().get(key)
