"""
Global test fixtures.

Disables authentication and loosens the coarse HTTP flood limit for all
tests, and provides a temporary SQLite database plus services bound to it.
"""

import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Configure the environment before any app imports
os.environ["AUTH_ENABLED"] = "false"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-with-enough-length-for-hs256"
os.environ["HTTP_RATE_LIMIT"] = "10000/minute"
os.environ["HTTP_RATE_LIMIT_LOGIN"] = "10000/minute"

sys.path.insert(0, str(Path(__file__).parent.parent / "api"))


@pytest_asyncio.fixture
async def db(tmp_path):
    """Initialized Database on a temporary file."""
    from core.database import Database

    database = Database(str(tmp_path / "test.db"))
    await database.initialize()
    return database


@pytest.fixture
def settings_service(db):
    """SettingsService backed by the temporary database."""
    from core.settings_service import SettingsService

    return SettingsService(db=db)


@pytest.fixture
def user_service(db):
    """UserService backed by the temporary database."""
    from core.user_service import UserService

    service = UserService()
    service.db = db
    return service


@pytest.fixture
def admin_ctx():
    from models.auth import AuthContext, Role

    return AuthContext(user_id="usr-admin", role=Role.ADMIN, auth_method="jwt")
