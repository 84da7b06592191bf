"""
roadtrip/models/records.py

Records owned by a user outside the subscription itself. They only matter to
the engine for counting and for the cascading account delete.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class Collection(str, Enum):
    TRIPS = "trips"
    AI_INTERACTIONS = "ai_interactions"
    FAVORITES = "favorites"
    PAYMENTS = "payments"


class OwnedRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    created_at: datetime
    data: Dict[str, Any] = Field(default_factory=dict)
    subscription_id: Optional[str] = None


class DeletionReport(BaseModel):
    """Rows removed per collection by an account delete."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    users: int
    subscriptions: int
    trips: int
    ai_interactions: int
    favorites: int
    payments: int
    quota_guards: int

    @property
    def total(self) -> int:
        return (
            self.users + self.subscriptions + self.trips + self.ai_interactions
            + self.favorites + self.payments + self.quota_guards
        )
