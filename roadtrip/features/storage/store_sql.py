"""
roadtrip/features/storage/store_sql.py

SQLAlchemy Core store (PostgreSQL in production, SQLite for local runs).

Maintains the same interface as the in-memory store. One transaction maps to
one Session with `session.begin()`; storage failures are translated into the
engine's error taxonomy at the transaction boundary.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, List, Optional, TypeVar

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from roadtrip.core.database import (
    ai_interactions,
    favorites,
    payments,
    quota_guards,
    subscriptions,
    trips,
    users,
)
from roadtrip.core.errors import ConflictError, NotFoundError, TransactionAbortedError
from roadtrip.features.storage.contracts import KIND_COLLECTIONS
from roadtrip.models.plan import FeatureSet
from roadtrip.models.quota import ResourceKind
from roadtrip.models.records import Collection, OwnedRecord
from roadtrip.models.subscription import PaymentEntry, PaymentInfo, Subscription, UsageStats
from roadtrip.models.user import User


logger = logging.getLogger(__name__)

T = TypeVar("T")

COLLECTION_TABLES = {
    Collection.TRIPS: trips,
    Collection.AI_INTERACTIONS: ai_interactions,
    Collection.FAVORITES: favorites,
    Collection.PAYMENTS: payments,
}


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything is stored as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _user_from_row(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        role=row.role,
        is_admin=bool(row.is_admin),
        active_subscription_id=row.active_subscription_id,
        created_at=_aware(row.created_at),
    )


def _subscription_values(sub: Subscription) -> dict:
    return {
        "id": sub.id,
        "user_id": sub.user_id,
        "plan": sub.plan.value,
        "status": sub.status.value,
        "start_date": sub.start_date,
        "end_date": sub.end_date,
        "trial_ends_at": sub.trial_ends_at,
        "canceled_at": sub.canceled_at,
        "cancel_reason": sub.cancel_reason,
        "auto_renew": sub.auto_renew,
        "payment_info": sub.payment_info.model_dump(mode="json"),
        "payment_history": [entry.model_dump(mode="json") for entry in sub.payment_history],
        "features": sub.features.model_dump(mode="json"),
        "usage_stats": sub.usage_stats.model_dump(mode="json"),
        "created_at": sub.created_at,
        "updated_at": sub.updated_at,
    }


def _subscription_from_row(row) -> Subscription:
    return Subscription(
        id=row.id,
        user_id=row.user_id,
        plan=row.plan,
        status=row.status,
        start_date=_aware(row.start_date),
        end_date=_aware(row.end_date),
        trial_ends_at=_aware(row.trial_ends_at),
        canceled_at=_aware(row.canceled_at),
        cancel_reason=row.cancel_reason,
        auto_renew=bool(row.auto_renew),
        payment_info=PaymentInfo.model_validate(row.payment_info or {}),
        payment_history=tuple(PaymentEntry.model_validate(e) for e in (row.payment_history or [])),
        features=FeatureSet.model_validate(row.features),
        usage_stats=UsageStats.model_validate(row.usage_stats or {}),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


class SqlTransaction:
    def __init__(self, session: Session) -> None:
        self.session = session

    # User directory

    def get_user(self, user_id: str) -> Optional[User]:
        row = self.session.execute(select(users).where(users.c.id == user_id)).first()
        return _user_from_row(row) if row else None

    def find_user_by_email(self, email: str) -> Optional[User]:
        row = self.session.execute(select(users).where(users.c.email == email.lower())).first()
        return _user_from_row(row) if row else None

    def insert_user(self, user: User) -> None:
        self.session.execute(
            insert(users).values(
                id=user.id,
                email=user.email,
                first_name=user.first_name,
                last_name=user.last_name,
                role=user.role.value,
                is_admin=user.is_admin,
                active_subscription_id=user.active_subscription_id,
                created_at=user.created_at,
            )
        )

    def update_user(self, user_id: str, **values) -> User:
        converted = {k: getattr(v, "value", v) for k, v in values.items()}
        result = self.session.execute(update(users).where(users.c.id == user_id).values(**converted))
        if result.rowcount == 0:
            raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})
        return self.get_user(user_id)

    def delete_user(self, user_id: str) -> int:
        return self.session.execute(delete(users).where(users.c.id == user_id)).rowcount

    def lock_user(self, user_id: str) -> None:
        # A self-assigning UPDATE takes the row lock in PostgreSQL and the
        # database write lock in SQLite, both held until commit
        self.session.execute(update(users).where(users.c.id == user_id).values(id=users.c.id))

    # Subscriptions

    def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        row = self.session.execute(
            select(subscriptions).where(subscriptions.c.id == subscription_id)
        ).first()
        return _subscription_from_row(row) if row else None

    def list_subscriptions(self, user_id: str) -> List[Subscription]:
        rows = self.session.execute(
            select(subscriptions)
            .where(subscriptions.c.user_id == user_id)
            .order_by(subscriptions.c.created_at, subscriptions.c.id)
        ).all()
        return [_subscription_from_row(row) for row in rows]

    def insert_subscription(self, subscription: Subscription) -> None:
        self.session.execute(insert(subscriptions).values(**_subscription_values(subscription)))

    def save_subscription(self, subscription: Subscription) -> None:
        values = _subscription_values(subscription)
        sub_id = values.pop("id")
        result = self.session.execute(
            update(subscriptions).where(subscriptions.c.id == sub_id).values(**values)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"Subscription {sub_id} not found")

    def delete_subscriptions(self, user_id: str) -> int:
        return self.session.execute(
            delete(subscriptions).where(subscriptions.c.user_id == user_id)
        ).rowcount

    # Owned records and counting

    def insert_record(self, collection: Collection, record: OwnedRecord) -> None:
        table = COLLECTION_TABLES[collection]
        self.session.execute(
            insert(table).values(
                id=record.id,
                user_id=record.user_id,
                subscription_id=record.subscription_id,
                data=record.data,
                created_at=record.created_at,
            )
        )

    def delete_records(self, collection: Collection, user_id: str) -> int:
        table = COLLECTION_TABLES[collection]
        return self.session.execute(delete(table).where(table.c.user_id == user_id)).rowcount

    def count_by_owner(self, user_id: str, kind: ResourceKind) -> int:
        table = COLLECTION_TABLES[KIND_COLLECTIONS[kind]]
        return self.session.execute(
            select(func.count()).select_from(table).where(table.c.user_id == user_id)
        ).scalar_one()

    def count_by_owner_since(self, user_id: str, kind: ResourceKind, since: datetime) -> int:
        table = COLLECTION_TABLES[KIND_COLLECTIONS[kind]]
        return self.session.execute(
            select(func.count())
            .select_from(table)
            .where(table.c.user_id == user_id)
            .where(table.c.created_at >= since)
        ).scalar_one()

    # Reservation serialization

    def seed_quota_guards(self, user_id: str, now: datetime) -> None:
        for kind in ResourceKind:
            self.session.execute(
                insert(quota_guards).values(user_id=user_id, kind=kind.value, version=0, updated_at=now)
            )

    def acquire_quota_guard(self, user_id: str, kind: ResourceKind, now: datetime) -> int:
        # The UPDATE takes the row lock that serializes concurrent reservations
        guard = (quota_guards.c.user_id == user_id) & (quota_guards.c.kind == kind.value)
        result = self.session.execute(
            update(quota_guards).where(guard).values(version=quota_guards.c.version + 1, updated_at=now)
        )
        if result.rowcount == 0:
            # Users created outside the account coordinator have no guards yet
            self.session.execute(
                insert(quota_guards).values(user_id=user_id, kind=kind.value, version=1, updated_at=now)
            )
            return 1
        return self.session.execute(select(quota_guards.c.version).where(guard)).scalar_one()

    def delete_quota_guards(self, user_id: str) -> int:
        return self.session.execute(
            delete(quota_guards).where(quota_guards.c.user_id == user_id)
        ).rowcount


class SqlStore:
    """
    SQL-backed store.

    A transaction opened while another is active on the same thread joins it.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        self._local = threading.local()

    @contextmanager
    def transaction(self) -> Iterator[SqlTransaction]:
        active = getattr(self._local, "tx", None)
        if active is not None:
            yield active
            return

        session = self._session_factory()
        tx = SqlTransaction(session)
        self._local.tx = tx
        try:
            with session.begin():
                yield tx
        except IntegrityError as e:
            logger.warning("[store] integrity violation, transaction rolled back", extra={"error": str(e.orig)})
            raise ConflictError("Write conflicts with existing data") from e
        except SQLAlchemyError as e:
            logger.error("[store] transaction aborted", exc_info=True)
            raise TransactionAbortedError("Storage failure; no changes were written") from e
        finally:
            self._local.tx = None
            session.close()

    def run_in_transaction(self, fn: Callable[[SqlTransaction], T]) -> T:
        with self.transaction() as tx:
            return fn(tx)
