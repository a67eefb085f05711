"""
Billing routes, mounted under /api.

- POST /billing/webhook   provider push (signed)
- POST /billing/sync      browser returned from checkout (pull)
- POST /billing/checkout  start a subscription checkout
- POST /billing/portal    open the self-service portal
- GET  /billing/status    local tier plus provider subscription state
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Request, HTTPException
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from obsidian_pm.core.auth import get_current_user_id
from obsidian_pm.features.billing.provider import BillingProvider, BillingProviderError, BillingWebhookError
from obsidian_pm.features.billing.reconciler import process_webhook_event, sync_after_checkout
from obsidian_pm.features.billing.service import (
    get_provider,
    get_subscription_status,
    require_provider,
    start_checkout,
    start_portal,
)
from obsidian_pm.features.entitlements.service import get_entitlement


logger = logging.getLogger("obsidian")

router = APIRouter(prefix="/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    """Request to create checkout session."""
    success_url: str
    cancel_url: str
    email: Optional[str] = None


class PortalRequest(BaseModel):
    """Request to create portal session."""
    return_url: str


class UrlResponse(BaseModel):
    url: str


class SyncResponse(BaseModel):
    upgraded: bool
    reason: str
    tier: Optional[str] = None  # None when the entitlement could not be read


class BillingStatusResponse(BaseModel):
    """User billing status."""
    enabled: bool
    tier: str
    status: Optional[str]
    days_until_expiration: Optional[int]
    current_period_end: Optional[str]  # ISO8601
    cancel_at_period_end: bool


@router.post("/webhook")
async def handle_webhook(request: Request, provider: Optional[BillingProvider] = Depends(get_provider)):
    """
    Handle Stripe webhook events.

    Signature verification uses STRIPE_WEBHOOK_SECRET. A verified event with
    no resolvable user is acknowledged (and logged) so it is not redelivered.

    Errors:
        400: Invalid signature, missing secret, or bad payload
        500: Datastore failure (provider will retry)
        503: Billing disabled
    """
    provider = require_provider(provider)

    # Read raw body (required for signature verification)
    body = await request.body()
    headers = dict(request.headers)

    try:
        outcome = process_webhook_event(provider, headers, body)
    except BillingWebhookError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"received": True, "event_id": outcome.event_id, "action": outcome.action}


@router.post("/sync", response_model=SyncResponse)
async def sync_subscription(
    user_id: str = Depends(get_current_user_id),
    provider: Optional[BillingProvider] = Depends(get_provider),
):
    """
    Reconcile after the browser returns from checkout.

    Always 200: failures are reported in `reason`, never as an error page.
    """
    if provider is None:
        result_reason, upgraded = "billing_disabled", False
    else:
        result = sync_after_checkout(provider, user_id)
        result_reason, upgraded = result.reason, result.upgraded

    try:
        tier = get_entitlement(user_id).tier.value
    except SQLAlchemyError as e:
        logger.warning("billing.sync.tier_read_failed", extra={"user_id": user_id, "error": str(e)})
        tier = None
    return {"upgraded": upgraded, "reason": result_reason, "tier": tier}


@router.post("/checkout", response_model=UrlResponse)
async def create_checkout(
    request: CheckoutRequest,
    user_id: str = Depends(get_current_user_id),
    provider: Optional[BillingProvider] = Depends(get_provider),
):
    """
    Create Stripe checkout session.

    Errors:
        503: Billing disabled (STRIPE_SECRET_KEY not set)
        400: No price configured
        502: Stripe API error
    """
    provider = require_provider(provider)
    try:
        url = start_checkout(
            provider,
            user_id,
            success_url=request.success_url,
            cancel_url=request.cancel_url,
            email=request.email,
        )
    except BillingProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"url": url}


@router.post("/portal", response_model=UrlResponse)
async def create_portal(
    request: PortalRequest,
    user_id: str = Depends(get_current_user_id),
    provider: Optional[BillingProvider] = Depends(get_provider),
):
    """
    Create Stripe billing portal session.

    Errors:
        503: Billing disabled
        404: Customer not found (user never checked out)
        502: Stripe API error
    """
    provider = require_provider(provider)
    try:
        url = start_portal(provider, user_id, return_url=request.return_url)
    except BillingProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"url": url}


@router.get("/status", response_model=BillingStatusResponse)
async def get_status(
    user_id: str = Depends(get_current_user_id),
    provider: Optional[BillingProvider] = Depends(get_provider),
):
    """
    Get user's billing status.

    The local tier is always returned; provider fields are null when billing
    is disabled or the provider cannot be reached.
    """
    tier = get_entitlement(user_id).tier.value
    status = None
    if provider is not None:
        try:
            status = get_subscription_status(provider, user_id)
        except BillingProviderError as e:
            logger.warning("billing.status.provider_failed", extra={"user_id": user_id, "error": str(e)})
            status = None

    if status is None:
        return {
            "enabled": provider is not None,
            "tier": tier,
            "status": None,
            "days_until_expiration": None,
            "current_period_end": None,
            "cancel_at_period_end": False,
        }

    period_end = status["current_period_end"]
    return {
        "enabled": True,
        "tier": tier,
        "status": status["status"],
        "days_until_expiration": status["days_until_expiration"],
        "current_period_end": period_end.isoformat() if period_end else None,
        "cancel_at_period_end": status["cancel_at_period_end"],
    }
