"""
roadtrip/features/storage/contracts.py

Unit-of-work protocol shared by the in-memory and SQL stores.

A `Store` hands out `StoreTransaction` objects; everything done through one
transaction commits or rolls back together. The transaction object doubles as
the user directory, the resource counter and the payment ledger.
"""
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Callable, List, Optional, Protocol, TypeVar

from roadtrip.models.quota import ResourceKind
from roadtrip.models.records import Collection, OwnedRecord
from roadtrip.models.subscription import Subscription
from roadtrip.models.user import User


T = TypeVar("T")

# Which collection holds the records of each quota-limited kind
KIND_COLLECTIONS = {
    ResourceKind.TRIP: Collection.TRIPS,
    ResourceKind.AI_CONSULTATION: Collection.AI_INTERACTIONS,
}


class StoreTransaction(Protocol):
    # User directory
    def get_user(self, user_id: str) -> Optional[User]: ...
    def find_user_by_email(self, email: str) -> Optional[User]: ...
    def insert_user(self, user: User) -> None: ...
    def update_user(self, user_id: str, **values) -> User:
        """Raises NotFoundError if the user does not exist."""
        ...
    def delete_user(self, user_id: str) -> int: ...
    def lock_user(self, user_id: str) -> None:
        """Hold the user's row until this transaction ends.

        Lifecycle operations on the same user are serialized by it; a missing
        user is not an error here.
        """
        ...

    # Subscriptions
    def get_subscription(self, subscription_id: str) -> Optional[Subscription]: ...
    def list_subscriptions(self, user_id: str) -> List[Subscription]:
        """All subscriptions of a user, oldest first."""
        ...
    def insert_subscription(self, subscription: Subscription) -> None: ...
    def save_subscription(self, subscription: Subscription) -> None: ...
    def delete_subscriptions(self, user_id: str) -> int: ...

    # Owned records and counting
    def insert_record(self, collection: Collection, record: OwnedRecord) -> None: ...
    def delete_records(self, collection: Collection, user_id: str) -> int: ...
    def count_by_owner(self, user_id: str, kind: ResourceKind) -> int: ...
    def count_by_owner_since(self, user_id: str, kind: ResourceKind, since: datetime) -> int: ...

    # Reservation serialization
    def seed_quota_guards(self, user_id: str, now: datetime) -> None: ...
    def acquire_quota_guard(self, user_id: str, kind: ResourceKind, now: datetime) -> int:
        """Atomically bump the (user, kind) guard and return its new version.

        Concurrent transactions touching the same guard are serialized until
        the holder commits or rolls back.
        """
        ...
    def delete_quota_guards(self, user_id: str) -> int: ...


class Store(Protocol):
    def transaction(self) -> AbstractContextManager[StoreTransaction]: ...

    def run_in_transaction(self, fn: Callable[[StoreTransaction], T]) -> T: ...
