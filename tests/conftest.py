from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from config import Settings
from crud import AccountRepository, PayrollRepository
from database import Database
from ledger import KeyedLocks, PayrollLedger
from main import create_app

SECRET = "test-signing-secret-0123456789"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "Admin-pass-1"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        secret_key=SECRET,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        environment="testing",
        rate_limit_enabled=False,
        first_admin_email=ADMIN_EMAIL,
        first_admin_password=ADMIN_PASSWORD,
        log_level="WARNING",
    )


@pytest.fixture
def client(settings):
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
async def database(anyio_backend, tmp_path):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await database.create_tables()
    yield database
    await database.dispose()


@pytest.fixture
async def db(database):
    async with database.session_factory() as session:
        yield session


@pytest.fixture
def ledger(db) -> PayrollLedger:
    return PayrollLedger(AccountRepository(db), PayrollRepository(db), locks=KeyedLocks())
