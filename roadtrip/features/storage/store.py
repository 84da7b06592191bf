"""
roadtrip/features/storage/store.py

In-memory unit-of-work store, plus store selection.

Transactions are serialized behind one re-entrant lock and work on a
copy-on-write snapshot of the collections: commit swaps the snapshot in,
any exception discards it. Records are frozen pydantic models, so shallow
dict copies are enough to isolate a transaction.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Tuple, TypeVar

from roadtrip.core.errors import ConflictError, NotFoundError
from roadtrip.features.storage.contracts import KIND_COLLECTIONS
from roadtrip.models.quota import ResourceKind
from roadtrip.models.records import Collection, OwnedRecord
from roadtrip.models.subscription import Subscription
from roadtrip.models.user import User


logger = logging.getLogger(__name__)

T = TypeVar("T")


class _State:
    def __init__(self) -> None:
        self.users: Dict[str, User] = {}
        self.subscriptions: Dict[str, Subscription] = {}
        self.records: Dict[Collection, Dict[str, OwnedRecord]] = {c: {} for c in Collection}
        self.guards: Dict[Tuple[str, ResourceKind], int] = {}

    def copy(self) -> "_State":
        clone = _State()
        clone.users = dict(self.users)
        clone.subscriptions = dict(self.subscriptions)
        clone.records = {c: dict(rows) for c, rows in self.records.items()}
        clone.guards = dict(self.guards)
        return clone


class InMemoryTransaction:
    def __init__(self, state: _State) -> None:
        self._state = state

    # User directory

    def get_user(self, user_id: str) -> Optional[User]:
        return self._state.users.get(user_id)

    def find_user_by_email(self, email: str) -> Optional[User]:
        wanted = email.lower()
        for user in self._state.users.values():
            if user.email == wanted:
                return user
        return None

    def insert_user(self, user: User) -> None:
        if user.id in self._state.users:
            raise ConflictError(f"User {user.id} already exists", details={"field": "id"})
        if self.find_user_by_email(user.email):
            raise ConflictError("Email already registered", details={"field": "email"})
        self._state.users[user.id] = user

    def update_user(self, user_id: str, **values) -> User:
        user = self._state.users.get(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})
        updated = user.model_copy(update=values)
        self._state.users[user_id] = updated
        return updated

    def delete_user(self, user_id: str) -> int:
        return 1 if self._state.users.pop(user_id, None) else 0

    def lock_user(self, user_id: str) -> None:
        # The store lock already serializes whole transactions
        pass

    # Subscriptions

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        return self._state.subscriptions.get(subscription_id)

    def list_subscriptions(self, user_id: str) -> List[Subscription]:
        rows = [s for s in self._state.subscriptions.values() if s.user_id == user_id]
        return sorted(rows, key=lambda s: (s.created_at, s.id))

    def insert_subscription(self, subscription: Subscription) -> None:
        if subscription.id in self._state.subscriptions:
            raise ConflictError(f"Subscription {subscription.id} already exists")
        self._state.subscriptions[subscription.id] = subscription

    def save_subscription(self, subscription: Subscription) -> None:
        if subscription.id not in self._state.subscriptions:
            raise NotFoundError(f"Subscription {subscription.id} not found")
        self._state.subscriptions[subscription.id] = subscription

    def delete_subscriptions(self, user_id: str) -> int:
        doomed = [sid for sid, s in self._state.subscriptions.items() if s.user_id == user_id]
        for sid in doomed:
            del self._state.subscriptions[sid]
        return len(doomed)

    # Owned records and counting

    def insert_record(self, collection: Collection, record: OwnedRecord) -> None:
        rows = self._state.records[collection]
        if record.id in rows:
            raise ConflictError(f"Record {record.id} already exists in {collection.value}")
        rows[record.id] = record

    def delete_records(self, collection: Collection, user_id: str) -> int:
        rows = self._state.records[collection]
        doomed = [rid for rid, r in rows.items() if r.user_id == user_id]
        for rid in doomed:
            del rows[rid]
        return len(doomed)

    def count_by_owner(self, user_id: str, kind: ResourceKind) -> int:
        rows = self._state.records[KIND_COLLECTIONS[kind]].values()
        return sum(1 for r in rows if r.user_id == user_id)

    def count_by_owner_since(self, user_id: str, kind: ResourceKind, since: datetime) -> int:
        rows = self._state.records[KIND_COLLECTIONS[kind]].values()
        return sum(1 for r in rows if r.user_id == user_id and r.created_at >= since)

    # Reservation serialization

    def seed_quota_guards(self, user_id: str, now: datetime) -> None:
        for kind in ResourceKind:
            self._state.guards.setdefault((user_id, kind), 0)

    def acquire_quota_guard(self, user_id: str, kind: ResourceKind, now: datetime) -> int:
        # The store lock already serializes whole transactions
        version = self._state.guards.get((user_id, kind), 0) + 1
        self._state.guards[(user_id, kind)] = version
        return version

    def delete_quota_guards(self, user_id: str) -> int:
        doomed = [key for key in self._state.guards if key[0] == user_id]
        for key in doomed:
            del self._state.guards[key]
        return len(doomed)


class InMemoryStore:
    """
    Process-local store with all-or-nothing transactions.

    A transaction opened while another is active on the same thread joins it;
    only the outermost one commits.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._state = _State()
        self._active: Optional[InMemoryTransaction] = None

    @contextmanager
    def transaction(self) -> Iterator[InMemoryTransaction]:
        with self._lock:
            if self._active is not None:
                yield self._active
                return

            working = self._state.copy()
            tx = InMemoryTransaction(working)
            self._active = tx
            try:
                yield tx
            except BaseException:
                logger.debug("[store] in-memory transaction rolled back")
                raise
            else:
                self._state = working
            finally:
                self._active = None

    def run_in_transaction(self, fn: Callable[[InMemoryTransaction], T]) -> T:
        with self.transaction() as tx:
            return fn(tx)


# Store selection

_store_instance = None


def get_store(database_url: Optional[str] = None):
    """
    Return the process-wide store.

    A configured database URL selects the SQL store (tables are created if
    missing); otherwise the in-memory store is used. Connection failures
    propagate rather than silently degrading to memory.
    """
    global _store_instance
    if _store_instance is None:
        from roadtrip.core.database import get_database_url

        url = database_url or get_database_url()
        if url:
            from roadtrip.core.database import create_all_tables, init_engine
            from roadtrip.features.storage.store_sql import SqlStore

            engine = init_engine(url)
            create_all_tables(engine)
            _store_instance = SqlStore(engine)
        else:
            logger.warning("[store] no DATABASE_URL configured, using in-memory store")
            _store_instance = InMemoryStore()
    return _store_instance


def reset_store() -> None:
    """
    Reset the store instance.

    FOR TESTING ONLY - forces re-initialization on next get_store() call.
    """
    global _store_instance
    _store_instance = None
