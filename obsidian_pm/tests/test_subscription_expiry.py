from datetime import datetime, timedelta, timezone

import pytest

from obsidian_pm.features.billing.expiry import (
    SOON_TITLE,
    TOMORROW_TITLE,
    check_subscription_expiry,
    reminder_for,
)
from obsidian_pm.features.billing.provider import SubscriptionSnapshot
from obsidian_pm.features.entitlements.service import mark_paid
from obsidian_pm.features.notifications.service import list_notifications
from obsidian_pm.models.notification import NotificationKind


NOW = datetime(2025, 4, 20, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "days,expected",
    [
        (None, None),
        (30, None),
        (8, None),
        (7, (SOON_TITLE, 7)),
        (2, (SOON_TITLE, 7)),
        (1, (TOMORROW_TITLE, 1)),
        (0, None),
        (-1, None),
    ],
)
def test_reminder_windows(days, expected):
    assert reminder_for(days) == expected


def _paid_with_period_end(fake_provider, ends_at):
    mark_paid("user_alice", "cus_alice")
    fake_provider.subscriptions["cus_alice"] = [
        SubscriptionSnapshot(subscription_id="sub_1", status="active", current_period_end=ends_at)
    ]


def test_expiring_soon_once_per_window(fake_provider):
    _paid_with_period_end(fake_provider, NOW + timedelta(days=5))

    [n] = check_subscription_expiry(fake_provider, "user_alice", now=NOW)
    assert n.title == SOON_TITLE
    assert n.kind == NotificationKind.WARNING
    assert n.message.startswith("Your subscription is ending in 7 days.")

    # Next day, still inside the window: no repeat
    assert check_subscription_expiry(fake_provider, "user_alice", now=NOW + timedelta(days=1)) == []
    assert len(list_notifications("user_alice")) == 1


def test_expiring_tomorrow(fake_provider):
    _paid_with_period_end(fake_provider, NOW + timedelta(hours=20))

    [n] = check_subscription_expiry(fake_provider, "user_alice", now=NOW)
    assert n.title == TOMORROW_TITLE
    assert "1 day." in n.message


def test_period_ending_now_creates_nothing(fake_provider):
    _paid_with_period_end(fake_provider, NOW)
    assert check_subscription_expiry(fake_provider, "user_alice", now=NOW) == []
    assert list_notifications("user_alice") == []


def test_far_from_expiry_creates_nothing(fake_provider):
    _paid_with_period_end(fake_provider, NOW + timedelta(days=25))
    assert check_subscription_expiry(fake_provider, "user_alice", now=NOW) == []


def test_provider_error_is_quiet(fake_provider):
    mark_paid("user_alice", "cus_alice")
    fake_provider.fail_lookups()
    assert check_subscription_expiry(fake_provider, "user_alice", now=NOW) == []
