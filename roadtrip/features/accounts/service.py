"""
roadtrip/features/accounts/service.py

Account lifecycle coordinator.

Registration and account deletion each span several collections; both run as
a single store transaction so a failure at any step leaves nothing behind.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Union
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from roadtrip.core.errors import ConflictError, NotFoundError, ValidationError
from roadtrip.features.subscriptions.service import SubscriptionService
from roadtrip.features.subscriptions.status import normalize_now
from roadtrip.features.storage.contracts import Store
from roadtrip.models.records import Collection, DeletionReport
from roadtrip.models.user import Account, AccountCredentials, User


logger = logging.getLogger(__name__)


def parse_credentials(credentials: Union[AccountCredentials, Dict[str, Any]]) -> AccountCredentials:
    if isinstance(credentials, AccountCredentials):
        return credentials
    try:
        return AccountCredentials.model_validate(credentials)
    except PydanticValidationError as e:
        fields = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid account details", details={"fields": fields}) from e


class AccountService:
    def __init__(self, store: Store, subscriptions: SubscriptionService):
        self.store = store
        self.subscriptions = subscriptions

    def create_account(
        self,
        credentials: Union[AccountCredentials, Dict[str, Any]],
        *,
        now: Optional[datetime] = None,
    ) -> Account:
        """
        Register a user with a linked free subscription.

        User row, subscription, role/active link and quota guards are written
        together or not at all.
        """
        creds = parse_credentials(credentials)
        now = normalize_now(now)

        with self.store.transaction() as tx:
            if tx.find_user_by_email(creds.email) is not None:
                raise ConflictError("Email already registered", details={"field": "email"})

            user_id = str(uuid4())
            tx.insert_user(User(
                id=user_id,
                email=creds.email,
                first_name=creds.first_name,
                last_name=creds.last_name,
                created_at=now,
            ))
            subscription = self.subscriptions.create_default(user_id, now=now, tx=tx)
            tx.seed_quota_guards(user_id, now)
            user = tx.get_user(user_id)

        logger.info(
            "[accounts] created",
            extra={"user_id": user.id, "subscription_id": subscription.id},
        )
        return Account(user=user, subscription=subscription)

    def get_account(self, user_id: str, *, now: Optional[datetime] = None) -> Account:
        now = normalize_now(now)
        with self.store.transaction() as tx:
            user = tx.get_user(user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})
            subscription = self.subscriptions.current_in(tx, user_id, now)
        return Account(user=user, subscription=subscription)

    def delete_account(self, user_id: str) -> DeletionReport:
        """
        Remove the user and every record they own.

        Raises NotFoundError when the user does not exist, so a repeated call
        reports the missing account instead of succeeding silently.
        """
        with self.store.transaction() as tx:
            tx.lock_user(user_id)
            if tx.get_user(user_id) is None:
                raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})

            removed = {c.value: tx.delete_records(c, user_id) for c in Collection}
            report = DeletionReport(
                user_id=user_id,
                subscriptions=tx.delete_subscriptions(user_id),
                quota_guards=tx.delete_quota_guards(user_id),
                users=tx.delete_user(user_id),
                **removed,
            )

        logger.info("[accounts] deleted", extra=report.model_dump())
        return report
