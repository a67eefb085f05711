"""
Stripe provider: signature verification, event parsing, API error mapping.

Webhook tests sign payloads with the real Stripe scheme; API calls go to a
mocked StripeClient.
"""
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
import stripe

from obsidian_pm.features.billing.provider import BillingProviderError, BillingWebhookError
from obsidian_pm.features.billing.stripe_provider import StripeProvider
from obsidian_pm.tests.mocks import sign_stripe_payload, stripe_event


SECRET = "whsec_unit_test"
PERIOD_END = 1746057600  # 2025-05-01T00:00:00Z


@pytest.fixture
def client():
    return Mock()


@pytest.fixture
def provider(client):
    return StripeProvider(secret_key="sk_test_123", webhook_secret=SECRET, client=client)


def _signed(payload: str, secret: str = SECRET):
    return {"stripe-signature": sign_stripe_payload(secret, payload)}, payload.encode("utf-8")


def test_checkout_completed_is_parsed(provider):
    payload = stripe_event(
        "evt_1",
        "checkout.session.completed",
        {"customer": "cus_1", "subscription": "sub_1", "metadata": {"userId": "user_alice"}},
    )
    headers, body = _signed(payload)

    event = provider.handle_webhook(headers, body)

    assert event.event_id == "evt_1"
    assert event.event_type == "checkout.session.completed"
    assert event.user_id == "user_alice"
    assert event.customer_id == "cus_1"
    assert event.subscription_id == "sub_1"
    assert event.status == "active"


def test_subscription_updated_is_parsed(provider):
    payload = stripe_event(
        "evt_2",
        "customer.subscription.updated",
        {
            "id": "sub_1",
            "customer": "cus_1",
            "status": "active",
            "cancel_at_period_end": True,
            "items": {"data": [{"current_period_end": PERIOD_END}]},
            "metadata": {},
        },
    )
    headers, body = _signed(payload)

    event = provider.handle_webhook(headers, body)

    assert event.user_id is None
    assert event.subscription_id == "sub_1"
    assert event.cancel_at_period_end is True
    assert event.current_period_end == datetime(2025, 5, 1, tzinfo=timezone.utc)


def test_wrong_secret_is_rejected(provider):
    payload = stripe_event("evt_1", "checkout.session.completed", {"metadata": {"userId": "u"}})
    headers, body = _signed(payload, secret="whsec_attacker")

    with pytest.raises(BillingWebhookError, match="Invalid signature"):
        provider.handle_webhook(headers, body)


def test_tampered_body_is_rejected(provider):
    payload = stripe_event("evt_1", "checkout.session.completed", {"metadata": {"userId": "u"}})
    headers, _ = _signed(payload)
    tampered = payload.replace('"u"', '"admin"').encode("utf-8")

    with pytest.raises(BillingWebhookError):
        provider.handle_webhook(headers, tampered)


def test_missing_signature_header(provider):
    with pytest.raises(BillingWebhookError, match="Missing"):
        provider.handle_webhook({}, b"{}")


def test_missing_webhook_secret(client, monkeypatch):
    from obsidian_pm.core.config import settings

    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", None)
    provider = StripeProvider(secret_key="sk_test_123", client=client)
    payload = stripe_event("evt_1", "checkout.session.completed", {})
    headers, body = _signed(payload)

    with pytest.raises(BillingWebhookError, match="not configured"):
        provider.handle_webhook(headers, body)


def test_signed_payload_without_id_is_rejected(provider):
    payload = '{"type": "checkout.session.completed"}'
    headers, body = _signed(payload)

    with pytest.raises(BillingWebhookError, match="missing event id"):
        provider.handle_webhook(headers, body)


def test_provider_requires_secret_key(monkeypatch):
    from obsidian_pm.core.config import settings

    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", None)
    with pytest.raises(BillingProviderError):
        StripeProvider()


def test_ensure_customer_tags_user(provider, client):
    client.v1.customers.create.return_value = Mock(id="cus_new")

    assert provider.ensure_customer("user_alice", email="a@example.com") == "cus_new"
    params = client.v1.customers.create.call_args.kwargs["params"]
    assert params["metadata"] == {"userId": "user_alice"}
    assert params["email"] == "a@example.com"
    assert "name" not in params


def test_checkout_session_url(provider, client):
    client.v1.checkout.sessions.create.return_value = Mock(url="https://checkout.stripe.com/c/1")

    url = provider.create_checkout_session(
        customer_id="cus_1",
        price_id="price_1",
        success_url="http://x/ok",
        cancel_url="http://x/cancel",
        metadata={"userId": "user_alice"},
    )

    assert url == "https://checkout.stripe.com/c/1"
    params = client.v1.checkout.sessions.create.call_args.kwargs["params"]
    assert params["mode"] == "subscription"
    assert params["line_items"] == [{"price": "price_1", "quantity": 1}]
    assert params["metadata"] == {"userId": "user_alice"}


def test_stripe_errors_become_provider_errors(provider, client):
    client.v1.billing_portal.sessions.create.side_effect = stripe.StripeError("boom")

    with pytest.raises(BillingProviderError, match="portal"):
        provider.create_portal_session("cus_1", "http://x")


def _subscription(status="active", cancel=False):
    return Mock(id="sub_1", status=status, current_period_end=PERIOD_END, cancel_at_period_end=cancel)


def test_list_active_subscriptions(provider, client):
    client.v1.subscriptions.list.return_value = Mock(data=[_subscription()])

    [snapshot] = provider.list_active_subscriptions("cus_1")

    assert snapshot.is_active
    assert snapshot.current_period_end == datetime(2025, 5, 1, tzinfo=timezone.utc)
    params = client.v1.subscriptions.list.call_args.kwargs["params"]
    assert params == {"customer": "cus_1", "status": "active", "limit": 1}


def test_latest_subscription_none(provider, client):
    client.v1.subscriptions.list.return_value = Mock(data=[])
    assert provider.latest_subscription("cus_1") is None


def test_latest_subscription_any_status(provider, client):
    client.v1.subscriptions.list.return_value = Mock(data=[_subscription(status="past_due", cancel=True)])

    snapshot = provider.latest_subscription("cus_1")

    assert snapshot.status == "past_due"
    assert snapshot.is_active is False
    assert snapshot.cancel_at_period_end is True
    assert client.v1.subscriptions.list.call_args.kwargs["params"]["status"] == "all"


def test_subscription_lookup_error(provider, client):
    client.v1.subscriptions.list.side_effect = stripe.StripeError("network")
    with pytest.raises(BillingProviderError):
        provider.list_active_subscriptions("cus_1")
