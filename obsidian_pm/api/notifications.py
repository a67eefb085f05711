"""
Notifications API.

- GET  /api/notifications: the caller's feed
- POST /api/notifications/check-deadlines: run the milestone deadline generator
- POST /api/notifications/check-subscription: run subscription expiry reminders

The check endpoints are fired on dashboard load; they never fail the page for
a missing notification.
"""
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from obsidian_pm.core.auth import get_current_user_id
from obsidian_pm.core.errors import ValidationError
from obsidian_pm.features.billing.expiry import check_subscription_expiry
from obsidian_pm.features.billing.provider import BillingProvider
from obsidian_pm.features.billing.service import get_provider
from obsidian_pm.features.milestones.deadlines import check_milestone_deadlines
from obsidian_pm.features.notifications.service import list_notifications
from obsidian_pm.models.notification import Notification


router = APIRouter(prefix="/api/notifications", tags=["notifications"])


class NotificationListResponse(BaseModel):
    notifications: List[Notification]


class DeadlineCheckResponse(BaseModel):
    created: int
    skipped: int
    failed: int
    message: str


class SubscriptionCheckResponse(BaseModel):
    created: int


def _parse_now(now: Optional[str]) -> Optional[datetime]:
    if not now:
        return None
    try:
        return datetime.fromisoformat(now.replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid 'now' timestamp: {now}")


@router.get("", response_model=NotificationListResponse)
async def get_notifications(
    user_id: str = Depends(get_current_user_id),
    limit: int = Query(50, ge=1, le=200),
    unread_only: bool = Query(False),
):
    return {"notifications": list_notifications(user_id, limit=limit, unread_only=unread_only)}


@router.post("/check-deadlines", response_model=DeadlineCheckResponse)
async def check_deadlines(
    user_id: str = Depends(get_current_user_id),
    now: Optional[str] = Query(None, description="Optional ISO timestamp for deterministic runs"),
):
    """
    Generate milestone deadline alerts for the caller.

    **Deterministic:** same milestones + same 'now' day always produce the same alerts,
    and repeated calls on the same day create nothing new.
    """
    result = check_milestone_deadlines(user_id, now=_parse_now(now))
    return {
        "created": result.created,
        "skipped": result.skipped,
        "failed": result.failed,
        "message": result.message,
    }


@router.post("/check-subscription", response_model=SubscriptionCheckResponse)
async def check_subscription(
    user_id: str = Depends(get_current_user_id),
    provider: Optional[BillingProvider] = Depends(get_provider),
    now: Optional[str] = Query(None, description="Optional ISO timestamp for deterministic runs"),
):
    if provider is None:
        return {"created": 0}
    created = check_subscription_expiry(provider, user_id, now=_parse_now(now))
    return {"created": len(created)}
