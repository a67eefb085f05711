"""
Billing service: provider construction, customer bookkeeping, checkout and
portal sessions, and the subscription status shown on the account page.

Functions take the provider as an argument; get_provider() builds one from
settings per request and is the FastAPI dependency routes inject.
"""
from datetime import datetime
from typing import Optional, Dict, Any

from obsidian_pm.core.clock import days_until, normalize_now
from obsidian_pm.core.config import settings
from obsidian_pm.core.errors import BillingDisabledError, NotFoundError, ValidationError
from obsidian_pm.features.billing.provider import BillingProvider
from obsidian_pm.features.billing.stripe_provider import StripeProvider
from obsidian_pm.features.entitlements.service import get_entitlement, set_customer_ref


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(settings.STRIPE_SECRET_KEY)


def get_provider() -> Optional[BillingProvider]:
    """Build the billing provider from settings, or None if billing is disabled."""
    if not billing_enabled():
        return None
    return StripeProvider()


def require_provider(provider: Optional[BillingProvider]) -> BillingProvider:
    if provider is None:
        raise BillingDisabledError("Stripe is not configured. Set STRIPE_SECRET_KEY environment variable.")
    return provider


def ensure_customer_for_user(
    provider: BillingProvider,
    user_id: str,
    email: Optional[str] = None,
    name: Optional[str] = None
) -> str:
    """
    Ensure a billing customer exists for the user.

    Returns:
        Stripe customer ID

    Raises:
        BillingProviderError: If customer creation fails
    """
    entitlement = get_entitlement(user_id)
    if entitlement.billing_customer_ref:
        return entitlement.billing_customer_ref

    customer_id = provider.ensure_customer(user_id, email, name)
    set_customer_ref(user_id, customer_id)
    return customer_id


def start_checkout(
    provider: BillingProvider,
    user_id: str,
    success_url: str,
    cancel_url: str,
    email: Optional[str] = None,
    price_id: Optional[str] = None,
) -> str:
    """
    Start checkout session for the paid tier.

    Returns:
        Checkout URL

    Raises:
        ValidationError: If no Stripe price is configured
        BillingProviderError: If checkout creation fails
    """
    price = price_id or settings.STRIPE_PRICE_ID
    if not price:
        raise ValidationError("No Stripe price configured for the paid tier")

    customer_id = ensure_customer_for_user(provider, user_id, email=email)

    return provider.create_checkout_session(
        customer_id=customer_id,
        price_id=price,
        success_url=success_url,
        cancel_url=cancel_url,
        metadata={"userId": user_id},
    )


def start_portal(provider: BillingProvider, user_id: str, return_url: str) -> str:
    """
    Start billing portal session for customer self-service.

    Raises:
        NotFoundError: If the user never checked out
        BillingProviderError: If portal creation fails
    """
    entitlement = get_entitlement(user_id)
    if not entitlement.billing_customer_ref:
        raise NotFoundError("No billing account found. Please upgrade first.")

    return provider.create_portal_session(
        customer_id=entitlement.billing_customer_ref,
        return_url=return_url,
    )


def get_subscription_status(
    provider: BillingProvider,
    user_id: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Get the user's provider-side subscription status.

    Returns:
        {
            "status": str ("free" when no customer or subscription),
            "days_until_expiration": int | None,
            "current_period_end": datetime | None,
            "cancel_at_period_end": bool
        }

    Raises:
        BillingProviderError: If the provider lookup fails
    """
    free = {
        "status": "free",
        "days_until_expiration": None,
        "current_period_end": None,
        "cancel_at_period_end": False,
    }

    entitlement = get_entitlement(user_id)
    if not entitlement.billing_customer_ref:
        return free

    subscription = provider.latest_subscription(entitlement.billing_customer_ref)
    if subscription is None:
        return free

    days = None
    if subscription.current_period_end:
        days = days_until(normalize_now(now), subscription.current_period_end)

    return {
        "status": subscription.status,
        "days_until_expiration": days,
        "current_period_end": subscription.current_period_end,
        "cancel_at_period_end": subscription.cancel_at_period_end,
    }
