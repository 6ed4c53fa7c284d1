"""
SQLite database management for users and application settings.

Provides async database operations using aiosqlite. Every helper opens
its own short-lived connection; multi-statement writes that must be
atomic go through transaction().
"""

import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite

from config import settings

logger = logging.getLogger(__name__)

# Database schema
SCHEMA = """
-- Settings table: system-wide key/value configuration
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value_json TEXT,
    description TEXT,
    category TEXT
);

-- Users table
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL UNIQUE,
    display_username TEXT,
    name TEXT NOT NULL,
    email TEXT UNIQUE,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'user',

    banned BOOLEAN NOT NULL DEFAULT FALSE,
    ban_reason TEXT,
    ban_expires TIMESTAMP,

    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
    last_login TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_users_role ON users(role);
CREATE INDEX IF NOT EXISTS idx_users_created_at ON users(created_at);
"""


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or settings.database_path

    async def initialize(self) -> None:
        """Initialize database and create tables if needed."""
        # Ensure parent directory exists
        db_dir = Path(self.db_path).parent
        db_dir.mkdir(parents=True, exist_ok=True)

        async with self.connection() as db:
            await db.executescript(SCHEMA)
            await db.commit()

        logger.info(f"Database initialized at {self.db_path}")

    @asynccontextmanager
    async def connection(self):
        """Get a database connection context manager."""
        conn = await aiosqlite.connect(self.db_path)
        conn.row_factory = aiosqlite.Row
        try:
            yield conn
        finally:
            await conn.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Run a block of statements atomically.

        Commits when the block exits normally and rolls back if it raises.
        """
        async with self.connection() as db:
            await db.execute("BEGIN")
            try:
                yield db
            except BaseException:
                await db.rollback()
                raise
            await db.commit()

    async def execute(
        self,
        query: str,
        params: tuple = ()
    ) -> int:
        """Execute a write query and return the affected row count."""
        async with self.connection() as db:
            cursor = await db.execute(query, params)
            await db.commit()
            return cursor.rowcount

    async def fetch_one(
        self,
        query: str,
        params: tuple = ()
    ) -> Optional[Dict[str, Any]]:
        """Execute a query and fetch one result."""
        async with self.connection() as db:
            cursor = await db.execute(query, params)
            row = await cursor.fetchone()
            if row:
                return dict(row)
            return None

    async def fetch_all(
        self,
        query: str,
        params: tuple = ()
    ) -> List[Dict[str, Any]]:
        """Execute a query and fetch all results."""
        async with self.connection() as db:
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]

    async def insert(
        self,
        table: str,
        data: Dict[str, Any]
    ) -> str:
        """Insert a row and return the id."""
        columns = list(data.keys())
        placeholders = ", ".join(["?" for _ in columns])
        columns_str = ", ".join(columns)

        query = f"INSERT INTO {table} ({columns_str}) VALUES ({placeholders})"
        values = tuple(data.values())

        async with self.connection() as db:
            await db.execute(query, values)
            await db.commit()

        return data.get("id", "")

    async def update(
        self,
        table: str,
        id_value: str,
        data: Dict[str, Any],
        id_column: str = "id"
    ) -> bool:
        """Update a row by id."""
        set_clause = ", ".join([f"{k} = ?" for k in data.keys()])
        query = f"UPDATE {table} SET {set_clause} WHERE {id_column} = ?"
        values = tuple(data.values()) + (id_value,)

        async with self.connection() as db:
            cursor = await db.execute(query, values)
            await db.commit()
            return cursor.rowcount > 0

    async def delete(
        self,
        table: str,
        id_value: str,
        id_column: str = "id"
    ) -> bool:
        """Delete a row by id."""
        query = f"DELETE FROM {table} WHERE {id_column} = ?"

        async with self.connection() as db:
            cursor = await db.execute(query, (id_value,))
            await db.commit()
            return cursor.rowcount > 0

    async def count(
        self,
        table: str,
        where_clause: str = "",
        params: tuple = ()
    ) -> int:
        """Count rows in a table."""
        query = f"SELECT COUNT(*) as count FROM {table}"
        if where_clause:
            query += f" WHERE {where_clause}"

        result = await self.fetch_one(query, params)
        return result["count"] if result else 0


def serialize_json(data: Any) -> str:
    """Serialize a value to a JSON string for storage."""
    return json.dumps(data)


def deserialize_json(data: Optional[str]) -> Any:
    """Deserialize a JSON string from storage."""
    if data is None:
        return None
    return json.loads(data)


# Singleton database instance
_db_instance: Optional[Database] = None


def get_database() -> Database:
    """Get the global database instance."""
    global _db_instance
    if _db_instance is None:
        _db_instance = Database()
    return _db_instance


async def initialize_database() -> Database:
    """Initialize and return the database instance."""
    db = get_database()
    await db.initialize()
    return db
