# roadtrip/conftest.py
import os
from datetime import datetime, timezone

import pytest

from roadtrip.core.database import build_engine, create_all_tables, drop_all_tables
from roadtrip.core.errors import TransactionAbortedError
from roadtrip.features.accounts.service import AccountService
from roadtrip.features.catalog.service import DEFAULT_CATALOG
from roadtrip.features.quotas.service import QuotaGate
from roadtrip.features.resources.service import ResourceService
from roadtrip.features.storage.store import InMemoryStore
from roadtrip.features.storage.store_sql import SqlStore
from roadtrip.features.subscriptions.service import SubscriptionService


FIXED_NOW = datetime(2025, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def pg_url():
    """
    PostgreSQL URL for concurrency tests.

    Returns TEST_DATABASE_URL from environment, or None if not set.
    """
    return os.getenv("TEST_DATABASE_URL")


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def sqlite_store():
    """SQL store on a private in-memory SQLite database."""
    engine = build_engine("sqlite://")
    create_all_tables(engine)
    yield SqlStore(engine)
    drop_all_tables(engine)
    engine.dispose()


@pytest.fixture(params=["memory", "sqlite"])
def store(request):
    """Runs the test once per store implementation."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def catalog():
    return DEFAULT_CATALOG


@pytest.fixture
def subscriptions(store, catalog):
    return SubscriptionService(store, catalog)


@pytest.fixture
def gate(store, subscriptions):
    return QuotaGate(store, subscriptions)


@pytest.fixture
def accounts(store, subscriptions):
    return AccountService(store, subscriptions)


@pytest.fixture
def resources(gate):
    return ResourceService(gate)


@pytest.fixture
def make_account(accounts, now):
    """Create an account at the fixed clock; returns the Account."""
    counter = {"n": 0}

    def _make(email=None, when=None):
        counter["n"] += 1
        return accounts.create_account(
            {"email": email or f"traveller{counter['n']}@example.com", "first_name": "Test"},
            now=when or now,
        )

    return _make


@pytest.fixture
def failing(monkeypatch):
    """Patch an attribute so calling it raises TransactionAbortedError."""
    def _fail(target, name):
        def _boom(*args, **kwargs):
            raise TransactionAbortedError("injected failure")
        monkeypatch.setattr(target, name, _boom)
    return _fail
