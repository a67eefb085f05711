"""
Billing provider interface and the normalized shapes it returns.

The Stripe implementation lives in stripe_provider.py; tests substitute an
in-memory provider.
"""
from typing import Protocol, Dict, Any, List, Optional
from dataclasses import dataclass, field
from datetime import datetime


# Provider event types the reconciler acts on
CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


@dataclass
class BillingEvent:
    """A verified, normalized provider event."""
    event_id: str
    event_type: str
    user_id: Optional[str]
    customer_id: Optional[str]
    subscription_id: Optional[str] = None
    status: Optional[str] = None  # active, canceled, past_due, etc.
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SubscriptionSnapshot:
    """Provider-side view of one subscription."""
    subscription_id: str
    status: str
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class BillingProvider(Protocol):
    """
    What the reconciler, expiry checker and billing service need from a
    payment provider. Lookups raise BillingProviderError on network or auth
    failure; webhook parsing raises BillingWebhookError.
    """

    def ensure_customer(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
        """Create a provider customer tagged with `user_id`; returns its id."""
        ...

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> str:
        """Hosted subscription checkout; returns the URL to redirect to."""
        ...

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Hosted self-service page; returns its URL."""
        ...

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingEvent:
        """
        Authenticate `body` against the signature in `headers` and normalize it.

        Nothing in the payload may be trusted before this returns.
        """
        ...

    def list_active_subscriptions(self, customer_id: str, limit: int = 1) -> List[SubscriptionSnapshot]:
        ...

    def latest_subscription(self, customer_id: str) -> Optional[SubscriptionSnapshot]:
        """Newest subscription in any status, or None."""
        ...


class BillingProviderError(Exception):
    """Provider call failed or provider is misconfigured."""


class BillingWebhookError(BillingProviderError):
    """Webhook rejected: missing secret or signature, bad signature, unparseable payload."""
