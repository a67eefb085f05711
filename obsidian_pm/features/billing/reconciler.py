"""
Entitlement reconciler.

Keeps the local entitlement tier in line with the billing provider through
two independent trigger paths:

- push: signed provider webhooks (process_webhook_event)
- pull: the user's browser returning from checkout (sync_after_checkout)

Both paths converge on entitlements.service.mark_paid, a pure assignment,
so redelivery, reordering and push/pull races all land on the same state.
The pull path never demotes a user; only an explicit cancellation event on
the push path does.
"""
import hashlib
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional
from sqlalchemy import insert, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from obsidian_pm.core.clock import normalize_now, utc_now
from obsidian_pm.core.database import get_db_session, billing_events
from obsidian_pm.core.errors import PersistenceError
from obsidian_pm.core.logging import log_event
from obsidian_pm.features.billing.provider import (
    CHECKOUT_COMPLETED,
    SUBSCRIPTION_DELETED,
    SUBSCRIPTION_UPDATED,
    BillingEvent,
    BillingProvider,
    BillingProviderError,
)
from obsidian_pm.features.entitlements.service import (
    find_user_by_customer_ref,
    get_entitlement,
    mark_free,
    mark_paid,
)
from obsidian_pm.features.notifications.service import notify_once_per_day
from obsidian_pm.models.notification import NotificationKind


BILLING_LINK = "/dashboard/account?tab=billing"
ACCOUNT_LINK = "/dashboard/account"

WELCOME_TITLE = "Welcome to Pro!"
WELCOME_MESSAGE = "Your subscription has been successfully upgraded. Enjoy unlimited access."
ENDED_TITLE = "Subscription Ended"
ENDED_MESSAGE = "Your Pro subscription has ended. You have been downgraded to the Free plan."
CANCELED_TITLE = "Subscription Canceled"


@dataclass(frozen=True)
class WebhookOutcome:
    event_id: str
    event_type: str
    user_id: Optional[str]
    action: str  # upgraded | downgraded | cancel_notice | ignored | missing_user | unknown_customer


@dataclass(frozen=True)
class SyncResult:
    upgraded: bool
    reason: str  # upgraded | no_customer | already_paid | no_active_subscription | provider_error | persistence_error


# --- push path ---------------------------------------------------------------

def _record_event(event: BillingEvent, body: bytes) -> bool:
    """
    Append the verified event to the audit log.

    Returns False when the event id was already recorded (redelivery).
    The caller still applies the event: state writes are idempotent and the
    earlier attempt may have failed half way.
    """
    try:
        with get_db_session() as session:
            session.execute(
                insert(billing_events).values(
                    stripe_event_id=event.event_id,
                    event_type=event.event_type,
                    user_id=event.user_id,
                    payload_hash=hashlib.sha256(body).hexdigest(),
                    processed=False,
                    created_at=utc_now(),
                )
            )
        return True
    except IntegrityError:
        return False


def _mark_event(event_id: str, error: Optional[str] = None) -> None:
    values = {"error": error} if error else {"processed": True, "processed_at": utc_now(), "error": None}
    with get_db_session() as session:
        session.execute(
            update(billing_events)
            .where(billing_events.c.stripe_event_id == event_id)
            .values(**values)
        )


def _apply_checkout_completed(event: BillingEvent) -> str:
    if not event.user_id:
        # Nothing to retry with: the identifying field is absent from the payload
        log_event(
            "error",
            "billing.webhook.missing_user",
            event_type=event.event_type,
            error_code="webhook_missing_user",
            extra={"event_id": event.event_id, "customer_id": event.customer_id},
        )
        return "missing_user"

    mark_paid(event.user_id, event.customer_id)
    return "upgraded"


def _apply_subscription_deleted(event: BillingEvent, now: datetime) -> str:
    user_id = find_user_by_customer_ref(event.customer_id) if event.customer_id else None
    if not user_id:
        log_event(
            "warning",
            "billing.webhook.unknown_customer",
            event_type=event.event_type,
            extra={"event_id": event.event_id, "customer_id": event.customer_id},
        )
        return "unknown_customer"

    mark_free(user_id)
    notify_once_per_day(user_id, NotificationKind.INFO, ENDED_TITLE, ENDED_MESSAGE, link=BILLING_LINK, now=now)
    return "downgraded"


def _apply_subscription_updated(event: BillingEvent, now: datetime) -> str:
    if not event.cancel_at_period_end:
        return "ignored"

    user_id = find_user_by_customer_ref(event.customer_id) if event.customer_id else None
    if not user_id:
        log_event(
            "warning",
            "billing.webhook.unknown_customer",
            event_type=event.event_type,
            extra={"event_id": event.event_id, "customer_id": event.customer_id},
        )
        return "unknown_customer"

    if event.current_period_end:
        ends = event.current_period_end
        message = f"Your subscription will end on {ends:%B} {ends.day}, {ends.year}."
    else:
        message = "Your subscription will end at the close of the current billing period."
    notify_once_per_day(user_id, NotificationKind.WARNING, CANCELED_TITLE, message, link=BILLING_LINK, now=now)
    return "cancel_notice"


def process_webhook_event(
    provider: BillingProvider,
    headers: Dict[str, str],
    body: bytes,
    now: Optional[datetime] = None,
) -> WebhookOutcome:
    """
    Verify and apply one provider webhook.

    Raises:
        BillingWebhookError: signature or payload rejected; nothing was written
        PersistenceError: a datastore write failed; the provider should retry
    """
    current = normalize_now(now)

    # Nothing in the payload is trusted before this returns
    event = provider.handle_webhook(headers, body)

    try:
        first_delivery = _record_event(event, body)
        if not first_delivery:
            log_event(
                "info",
                "billing.webhook.redelivery",
                user_id=event.user_id,
                event_type=event.event_type,
                extra={"event_id": event.event_id},
            )

        if event.event_type == CHECKOUT_COMPLETED:
            action = _apply_checkout_completed(event)
        elif event.event_type == SUBSCRIPTION_DELETED:
            action = _apply_subscription_deleted(event, current)
        elif event.event_type == SUBSCRIPTION_UPDATED:
            action = _apply_subscription_updated(event, current)
        else:
            action = "ignored"

        _mark_event(event.event_id)
    except SQLAlchemyError as e:
        log_event(
            "error",
            "billing.webhook.persistence_failed",
            user_id=event.user_id,
            event_type=event.event_type,
            error_code="persistence_error",
            extra={"event_id": event.event_id, "error": e},
            exc_info=True,
        )
        try:
            _mark_event(event.event_id, error=str(e))
        except SQLAlchemyError as mark_error:
            log_event(
                "warning",
                "billing.webhook.audit_update_failed",
                event_type=event.event_type,
                extra={"event_id": event.event_id, "error": mark_error},
            )
        raise PersistenceError(f"Failed to apply billing event {event.event_id}") from e

    log_event(
        "info",
        "billing.webhook.applied",
        user_id=event.user_id,
        event_type=event.event_type,
        extra={"event_id": event.event_id, "action": action},
    )
    return WebhookOutcome(
        event_id=event.event_id,
        event_type=event.event_type,
        user_id=event.user_id,
        action=action,
    )


# --- pull path ---------------------------------------------------------------

def sync_after_checkout(
    provider: BillingProvider,
    user_id: str,
    now: Optional[datetime] = None,
) -> SyncResult:
    """
    Best-effort upgrade when the user lands back from a successful checkout.

    Never raises: provider and datastore failures are logged and reported in
    the result so the page still renders. The webhook remains the backstop.
    """
    current = normalize_now(now)
    try:
        entitlement = get_entitlement(user_id)
        if not entitlement.billing_customer_ref:
            return SyncResult(upgraded=False, reason="no_customer")

        try:
            subscriptions = provider.list_active_subscriptions(entitlement.billing_customer_ref, limit=1)
        except BillingProviderError as e:
            log_event(
                "warning",
                "billing.sync.provider_failed",
                user_id=user_id,
                error_code="provider_error",
                extra={"error": e},
            )
            return SyncResult(upgraded=False, reason="provider_error")

        if not any(sub.is_active for sub in subscriptions):
            # Absence of data is not evidence of cancellation
            return SyncResult(upgraded=False, reason="no_active_subscription")

        if entitlement.is_paid:
            return SyncResult(upgraded=False, reason="already_paid")

        # Once paid, later syncs stop at already_paid; welcome goes out first
        notify_once_per_day(
            user_id,
            NotificationKind.SUCCESS,
            WELCOME_TITLE,
            WELCOME_MESSAGE,
            link=ACCOUNT_LINK,
            now=current,
        )
        mark_paid(user_id, entitlement.billing_customer_ref)
    except SQLAlchemyError as e:
        log_event(
            "error",
            "billing.sync.persistence_failed",
            user_id=user_id,
            error_code="persistence_error",
            extra={"error": e},
            exc_info=True,
        )
        return SyncResult(upgraded=False, reason="persistence_error")

    log_event("info", "billing.sync.upgraded", user_id=user_id)
    return SyncResult(upgraded=True, reason="upgraded")
