"""
Subscription expiry reminders.

Warns a paying user as the current period approaches its end:
- 1 < days <= 7  -> "Subscription Expiring Soon"
- days == 1      -> "Subscription Expiring Tomorrow"

A period ending within the current day (0 days) gets no reminder.

Each reminder is issued at most once per reminder window (the last
`window + 1` days), so repeated dashboard loads stay quiet.
"""
from datetime import datetime, timedelta
from typing import List, Optional

from obsidian_pm.core.clock import normalize_now
from obsidian_pm.core.logging import log_event
from obsidian_pm.features.billing.provider import BillingProvider, BillingProviderError
from obsidian_pm.features.billing.service import get_subscription_status
from obsidian_pm.features.notifications.service import create_notification, find_recent_notification
from obsidian_pm.models.notification import Notification, NotificationKind


BILLING_LINK = "/dashboard/account?tab=billing"

SOON_TITLE = "Subscription Expiring Soon"
TOMORROW_TITLE = "Subscription Expiring Tomorrow"


def reminder_for(days_until_expiration: Optional[int]):
    """(title, window_days) for a remaining-days count, or None."""
    if not days_until_expiration:
        return None
    if 1 < days_until_expiration <= 7:
        return SOON_TITLE, 7
    if days_until_expiration == 1:
        return TOMORROW_TITLE, 1
    return None


def check_subscription_expiry(
    provider: BillingProvider,
    user_id: str,
    now: Optional[datetime] = None,
) -> List[Notification]:
    """Create the expiry reminder due for this user, if any."""
    current = normalize_now(now)
    try:
        status = get_subscription_status(provider, user_id, now=current)
    except BillingProviderError as e:
        log_event(
            "warning",
            "billing.expiry.provider_failed",
            user_id=user_id,
            error_code="provider_error",
            extra={"error": e},
        )
        return []

    reminder = reminder_for(status["days_until_expiration"])
    if reminder is None:
        return []

    title, window_days = reminder
    since = current - timedelta(days=window_days + 1)
    if find_recent_notification(user_id, title, BILLING_LINK, since=since):
        return []

    plural = "s" if window_days > 1 else ""
    notification = create_notification(
        user_id,
        NotificationKind.WARNING,
        title,
        f"Your subscription is ending in {window_days} day{plural}. "
        "Please renew to avoid losing access to Pro features.",
        link=BILLING_LINK,
        now=current,
    )
    return [notification] if notification else []
