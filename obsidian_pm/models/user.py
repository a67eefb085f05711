"""
obsidian_pm/models/user.py

Local record of an authenticated user. Identity is owned by the external
auth provider; this row exists so entitlements and notifications have an
owner to hang off.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


def fallback_display_name(user_id: str) -> str:
    """Stable placeholder shown until the user picks a name."""
    return f"User {user_id[-6:]}"


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    display_name: str
    status: str = "active"
    created_at: Optional[datetime] = None
