"""
Stripe billing provider implementation.

Implements BillingProvider protocol on top of an explicitly constructed
stripe.StripeClient (no module-level api_key).
Handles webhook signature verification and event parsing.
"""
import json
from typing import Dict, Any, List, Optional
from datetime import datetime, timezone
import stripe

from obsidian_pm.core.config import settings
from obsidian_pm.features.billing.provider import (
    BillingEvent,
    BillingProviderError,
    BillingWebhookError,
    SubscriptionSnapshot,
)


def _timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _period_end(subscription: Any) -> Optional[int]:
    value = getattr(subscription, "current_period_end", None)
    if value:
        return value
    # Newer API versions carry the period on the subscription items
    try:
        return subscription["items"]["data"][0]["current_period_end"]
    except (KeyError, IndexError, TypeError):
        return None


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key (defaults to STRIPE_SECRET_KEY setting)
            webhook_secret: Stripe webhook secret (defaults to STRIPE_WEBHOOK_SECRET setting)
            client: Pre-built StripeClient (tests pass a mock)
        """
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

        if client is None:
            if not self.secret_key:
                raise BillingProviderError("STRIPE_SECRET_KEY not configured")
            client = stripe.StripeClient(self.secret_key)
        self._client = client

    @property
    def _api(self) -> Any:
        # stripe>=12 groups the v1 services under client.v1
        return getattr(self._client, "v1", self._client)

    def ensure_customer(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
        """Create Stripe customer tagged with the user id."""
        params: Dict[str, Any] = {"metadata": {"userId": user_id}}
        if email:
            params["email"] = email
        if name:
            params["name"] = name
        try:
            customer = self._api.customers.create(params=params)
            return customer.id
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe customer creation failed: {e}")

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> str:
        """Create Stripe checkout session."""
        try:
            session = self._api.checkout.sessions.create(
                params={
                    "customer": customer_id,
                    "line_items": [{"price": price_id, "quantity": 1}],
                    "mode": "subscription",
                    "success_url": success_url,
                    "cancel_url": cancel_url,
                    "metadata": metadata or {},
                }
            )
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}")
        if not session.url:
            raise BillingProviderError("Stripe checkout session has no URL")
        return session.url

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create Stripe billing portal session."""
        try:
            session = self._api.billing_portal.sessions.create(
                params={"customer": customer_id, "return_url": return_url}
            )
            return session.url
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe portal session creation failed: {e}")

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingEvent:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            payload = body.decode("utf-8")
            stripe.WebhookSignature.verify_header(payload, sig_header, self.webhook_secret)
            event = json.loads(payload)
        except UnicodeDecodeError as e:
            raise BillingWebhookError(f"Invalid payload encoding: {e}")
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}")
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")

        if not isinstance(event, dict) or "type" not in event or "id" not in event:
            raise BillingWebhookError("Invalid payload: missing event id or type")

        return self._parse_event(event)

    def _parse_event(self, event: Dict[str, Any]) -> BillingEvent:
        """Parse Stripe event into normalized BillingEvent."""
        event_type = event["type"]
        data = (event.get("data") or {}).get("object") or {}
        metadata = data.get("metadata") or {}

        result = BillingEvent(
            event_id=event["id"],
            event_type=event_type,
            user_id=metadata.get("userId") or metadata.get("user_id"),
            customer_id=data.get("customer"),
            metadata=metadata,
        )

        if event_type == "checkout.session.completed":
            result.subscription_id = data.get("subscription")
            result.status = "active"
        elif event_type.startswith("customer.subscription."):
            result.subscription_id = data.get("id")
            result.status = data.get("status")
            result.current_period_end = _timestamp(_period_end(data))
            result.cancel_at_period_end = bool(data.get("cancel_at_period_end", False))

        return result

    def _snapshot(self, subscription: Any) -> SubscriptionSnapshot:
        return SubscriptionSnapshot(
            subscription_id=subscription.id,
            status=subscription.status,
            current_period_end=_timestamp(_period_end(subscription)),
            cancel_at_period_end=bool(getattr(subscription, "cancel_at_period_end", False)),
        )

    def list_active_subscriptions(self, customer_id: str, limit: int = 1) -> List[SubscriptionSnapshot]:
        try:
            page = self._api.subscriptions.list(
                params={"customer": customer_id, "status": "active", "limit": limit}
            )
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription lookup failed: {e}")
        return [self._snapshot(sub) for sub in page.data]

    def latest_subscription(self, customer_id: str) -> Optional[SubscriptionSnapshot]:
        try:
            page = self._api.subscriptions.list(
                params={"customer": customer_id, "status": "all", "limit": 1}
            )
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription lookup failed: {e}")
        if not page.data:
            return None
        return self._snapshot(page.data[0])
