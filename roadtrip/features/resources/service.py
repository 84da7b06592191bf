"""
roadtrip/features/resources/service.py

Quota-gated creation of user-owned resources.

Trips and AI consultations go through the quota gate and raise
QuotaExceededError when the plan limit is reached. Favorites are unlimited
and only need an existing user.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

from roadtrip.core.errors import NotFoundError
from roadtrip.features.quotas.service import QuotaGate
from roadtrip.features.subscriptions.status import normalize_now
from roadtrip.models.quota import QuotaDecision, ResourceKind
from roadtrip.models.records import Collection, OwnedRecord


logger = logging.getLogger(__name__)


class ResourceService:
    def __init__(self, gate: QuotaGate):
        self.gate = gate

    def create_trip(
        self, user_id: str, data: Optional[Dict[str, Any]] = None, *, now: Optional[datetime] = None
    ) -> QuotaDecision:
        decision = self.gate.check_and_reserve(user_id, ResourceKind.TRIP, data, now=now)
        return decision.raise_for_denial()

    def record_ai_consultation(
        self, user_id: str, data: Optional[Dict[str, Any]] = None, *, now: Optional[datetime] = None
    ) -> QuotaDecision:
        decision = self.gate.check_and_reserve(user_id, ResourceKind.AI_CONSULTATION, data, now=now)
        return decision.raise_for_denial()

    def add_favorite(
        self, user_id: str, data: Optional[Dict[str, Any]] = None, *, now: Optional[datetime] = None
    ) -> OwnedRecord:
        now = normalize_now(now)
        record = OwnedRecord(id=str(uuid4()), user_id=user_id, created_at=now, data=dict(data or {}))

        with self.gate.store.transaction() as tx:
            if tx.get_user(user_id) is None:
                raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})
            tx.insert_record(Collection.FAVORITES, record)

        logger.info("[resources] favorite added", extra={"user_id": user_id, "record_id": record.id})
        return record
