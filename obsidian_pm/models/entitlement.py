"""
obsidian_pm/models/entitlement.py

Entitlement model: a user's paid-feature access level.

The billing reconciler is the only writer. Feature gating elsewhere in the
app reads `tier` and nothing else.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class Tier(str, Enum):
    FREE = "free"
    PAID = "paid"


class Entitlement(BaseModel):
    """
    Entitlement for a single user.

    Lifecycle:
    - created implicitly on first read with tier=free
    - free -> paid only on provider evidence of an active subscription
    - paid -> free only on provider evidence of cancellation
    - never deleted
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    tier: Tier = Tier.FREE
    billing_customer_ref: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def is_paid(self) -> bool:
        return self.tier == Tier.PAID
