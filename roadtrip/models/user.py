"""
roadtrip/models/user.py

User directory records and registration input.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from roadtrip.models.subscription import Subscription


class Role(str, Enum):
    """Entitlement role projected from the plan. Not a privilege."""
    USER = "user"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class User(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str
    email: str
    created_at: datetime
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Role = Role.USER
    # Assigned by operators only, independent of any plan
    is_admin: bool = False
    active_subscription_id: Optional[str] = None


class AccountCredentials(BaseModel):
    """Registration input. Email is the identifying credential."""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.lower()


class Account(BaseModel):
    """User profile with the subscription in effect, if any."""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    user: User
    subscription: Optional[Subscription] = None
