# obsidian_pm/conftest.py
import os
import sys
import pytest
from pathlib import Path

# Tests never read a developer .env or validate production settings
os.environ.setdefault("ENV", "test")
os.environ.setdefault("SKIP_ENV_VALIDATION", "1")

# Add project root to PYTHONPATH
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture(scope="session")
def db_url(tmp_path_factory):
    """
    Provide a database URL for tests.

    Uses TEST_DATABASE_URL when set (e.g. a disposable Postgres), otherwise a
    SQLite file in the session temp dir.
    """
    return os.getenv("TEST_DATABASE_URL") or f"sqlite:///{tmp_path_factory.mktemp('db') / 'obsidian_test.db'}"


@pytest.fixture(scope="session", autouse=True)
def create_tables(db_url):
    """
    Create all database tables before running tests.

    Runs once per test session.
    """
    from obsidian_pm.core.database import init_engine, create_all_tables

    init_engine(db_url)
    create_all_tables()
    yield


@pytest.fixture(scope="function", autouse=True)
def reset_db(create_tables):
    """
    Clear all tables before each test so every test starts from an empty store.
    """
    from obsidian_pm.core.database import get_engine, metadata

    engine = get_engine()
    with engine.begin() as conn:
        # Delete children before parents
        for table in reversed(metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture(autouse=True)
def app_settings(monkeypatch):
    """Billing is configured by default; tests opt out by clearing the key."""
    from obsidian_pm.core.config import settings

    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_test_123")
    monkeypatch.setattr(settings, "STRIPE_PRICE_ID", "price_pro_123")
    monkeypatch.setattr(settings, "NOTIFY_TIMEZONE", "UTC")
    yield settings


@pytest.fixture
def fake_provider():
    from obsidian_pm.tests.mocks import FakeBillingProvider

    return FakeBillingProvider()
