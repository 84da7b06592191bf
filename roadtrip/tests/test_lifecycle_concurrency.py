"""
Parallel lifecycle operations on one user must behave as if run one by one.

Runs on the in-memory store, a file-backed SQLite database (shared between
threads, unlike the in-memory SQLite fixture) and PostgreSQL when
TEST_DATABASE_URL is set. The store writes are slowed down so that, without
per-user serialization, every thread would pass its "current subscription?"
check before any of them writes.
"""
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from uuid import uuid4

import pytest

from roadtrip.core.database import build_engine, create_all_tables
from roadtrip.core.errors import AppError, ConflictError, NoActiveSubscriptionError
from roadtrip.features.accounts.service import AccountService
from roadtrip.features.roles.service import BASE_ROLE, plan_to_role
from roadtrip.features.storage.store import InMemoryStore
from roadtrip.features.storage.store_sql import SqlStore
from roadtrip.features.subscriptions.service import SubscriptionService
from roadtrip.models.subscription import Subscription


ATTEMPTS = 4


@pytest.fixture(params=["memory", "sqlite_file", "postgres"])
def shared_store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryStore()
        return

    if request.param == "sqlite_file":
        url = f"sqlite:///{tmp_path / 'roadtrip.db'}"
    else:
        url = os.getenv("TEST_DATABASE_URL")
        if not url:
            pytest.skip("PostgreSQL not configured")

    engine = build_engine(url)
    create_all_tables(engine)
    yield SqlStore(engine)
    engine.dispose()


@pytest.fixture
def slow_writes(monkeypatch, shared_store):
    """Delay a transaction method so concurrent callers overlap."""
    with shared_store.transaction() as tx:
        tx_class = type(tx)

    def _slow(name, delay=0.2):
        original = getattr(tx_class, name)

        def slowed(self, *args, **kwargs):
            time.sleep(delay)
            return original(self, *args, **kwargs)

        monkeypatch.setattr(tx_class, name, slowed)

    return _slow


def race(*calls):
    """Start every call at once; return each result or the AppError it raised."""
    barrier = threading.Barrier(len(calls))

    def attempt(fn):
        barrier.wait()
        try:
            return fn()
        except AppError as e:
            return e

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return list(pool.map(attempt, calls))


def snapshot(store, user_id, now):
    with store.transaction() as tx:
        user = tx.get_user(user_id)
        current = [s for s in tx.list_subscriptions(user_id) if s.is_current(now)]
    return user, current


def new_account(store, subscriptions, now):
    return AccountService(store, subscriptions).create_account(
        {"email": f"parallel-{uuid4().hex}@example.com"}, now=now
    )


def test_parallel_reactivate_has_one_winner(shared_store, slow_writes, now):
    subscriptions = SubscriptionService(shared_store)
    user_id = new_account(shared_store, subscriptions, now).user.id
    subscriptions.cancel(user_id, now=now)
    slow_writes("insert_subscription")

    outcomes = race(*[
        lambda: subscriptions.reactivate(user_id, "premium", "card", now=now)
        for _ in range(ATTEMPTS)
    ])

    winners = [o for o in outcomes if isinstance(o, Subscription)]
    assert len(winners) == 1
    assert all(isinstance(o, ConflictError) for o in outcomes if o not in winners)

    user, current = snapshot(shared_store, user_id, now)
    assert [s.id for s in current] == [winners[0].id]
    assert user.active_subscription_id == winners[0].id


def test_parallel_cancel_has_one_winner(shared_store, slow_writes, now):
    subscriptions = SubscriptionService(shared_store)
    user_id = new_account(shared_store, subscriptions, now).user.id
    slow_writes("save_subscription")

    outcomes = race(*[lambda: subscriptions.cancel(user_id, now=now) for _ in range(ATTEMPTS)])

    assert sum(1 for o in outcomes if isinstance(o, Subscription)) == 1
    assert sum(1 for o in outcomes if isinstance(o, NoActiveSubscriptionError)) == ATTEMPTS - 1

    user, current = snapshot(shared_store, user_id, now)
    assert current == []
    assert user.active_subscription_id is None


def test_change_plan_and_cancel_do_not_interleave(shared_store, slow_writes, now):
    subscriptions = SubscriptionService(shared_store)
    user_id = new_account(shared_store, subscriptions, now).user.id
    slow_writes("save_subscription")

    outcomes = race(
        lambda: subscriptions.change_plan(user_id, "premium", "card", now=now),
        lambda: subscriptions.cancel(user_id, now=now),
    )

    assert isinstance(outcomes[1], Subscription)
    assert isinstance(outcomes[0], (Subscription, NoActiveSubscriptionError))

    # Either order ends canceled, with the user reference matching
    user, current = snapshot(shared_store, user_id, now)
    assert current == []
    assert user.active_subscription_id is None
    assert user.role is BASE_ROLE


def test_parallel_plan_changes_keep_user_in_step(shared_store, slow_writes, now):
    subscriptions = SubscriptionService(shared_store)
    user_id = new_account(shared_store, subscriptions, now).user.id
    slow_writes("save_subscription")

    race(*[
        lambda plan=plan: subscriptions.change_plan(user_id, plan, "card", now=now)
        for plan in ("standard", "premium", "enterprise", "free")
    ])

    user, current = snapshot(shared_store, user_id, now)
    assert len(current) == 1
    assert user.active_subscription_id == current[0].id
    assert user.role is plan_to_role(current[0].plan)
