from __future__ import annotations

from datetime import datetime, timezone
from urllib.parse import parse_qs

import httpx
import pytest

import woozy.api.main as api_main
from woozy.billing.checkout import create_checkout_session, create_portal_session
from woozy.billing.plans import is_add_on, load_plans, plan_feature, price_id_for, tier_from_price_id
from woozy.billing.stripe_client import (
    StripeClient,
    StripeWebhookError,
    compute_signature,
    encode_form,
    get_stripe_client,
    parse_event,
    verify_signature,
)
from woozy.core.config import get_settings
from woozy.core.errors import ConfigurationError, UpstreamError, ValidationError
from woozy.core.rate_limit import RateLimitDecision
import woozy.core.rate_limit as rate_limit
from woozy.storage.models import User


class _FakeStripe:
    """Minimal Stripe REST double keyed by request path."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, dict]] = []
        self.checkout_status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        form = {key: values[0] for key, values in parse_qs(request.content.decode("utf-8")).items()}
        self.requests.append((request.url.path, form))
        assert request.headers["Authorization"] == "Bearer sk_test_123"
        if request.url.path == "/v1/customers":
            return httpx.Response(200, json={"id": "cus_new_1"})
        if request.url.path == "/v1/checkout/sessions":
            if self.checkout_status != 200:
                return httpx.Response(self.checkout_status, json={"error": {"message": "Your card was declined."}})
            return httpx.Response(200, json={"id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"})
        if request.url.path == "/v1/billing_portal/sessions":
            return httpx.Response(200, json={"url": "https://billing.stripe.test/session"})
        return httpx.Response(404, json={"error": {"message": "Unknown path"}})

    def client(self) -> StripeClient:
        return StripeClient(api_key="sk_test_123", client=httpx.Client(transport=httpx.MockTransport(self.handler)))


def test_plans_file_defines_tiers_and_add_on() -> None:
    plans = load_plans()

    assert {"free", "solo", "pro", "pro_plus", "agency", "brand_bolt"} <= set(plans)
    assert plans["agency"]["max_workspaces"] == -1
    assert plan_feature("pro-plus", "approval_workflows") is True
    assert plan_feature("unknown", "can_post") is False
    assert is_add_on("brand_bolt") is True
    assert is_add_on("pro") is False


def test_price_lookup_validates_tier_period_and_configuration(monkeypatch) -> None:
    monkeypatch.setenv("STRIPE_PRICE_PRO", "price_pro_monthly")
    monkeypatch.setenv("STRIPE_PRICE_PRO_ANNUAL", "price_pro_annual")
    get_settings.cache_clear()

    assert price_id_for("pro") == "price_pro_monthly"
    assert price_id_for("PRO", "annual") == "price_pro_annual"
    assert tier_from_price_id("price_pro_annual") == "pro"
    assert tier_from_price_id("price_unknown") is None

    with pytest.raises(ValidationError):
        price_id_for("platinum")
    with pytest.raises(ValidationError):
        price_id_for("pro", "weekly")
    with pytest.raises(ConfigurationError):
        price_id_for("agency")


def test_checkout_creates_customer_and_session_with_metadata(monkeypatch, seed, session) -> None:
    monkeypatch.setenv("STRIPE_PRICE_PRO", "price_pro_monthly")
    get_settings.cache_clear()
    user = seed.user("buyer@acme.io", full_name="Bea Buyer", subscription_status="inactive")
    stripe = _FakeStripe()

    result = create_checkout_session(
        session,
        user_id=user.id,
        tier="pro",
        workspace_name="  Corner Bakery ",
        stripe=stripe.client(),
    )

    assert result.session_id == "cs_test_1"
    assert result.url == "https://checkout.stripe.test/cs_test_1"
    assert session.get(User, user.id).stripe_customer_id == "cus_new_1"

    paths = [path for path, _ in stripe.requests]
    assert paths == ["/v1/customers", "/v1/checkout/sessions"]
    customer_form = stripe.requests[0][1]
    assert customer_form["email"] == "buyer@acme.io"
    assert customer_form["metadata[userId]"] == user.id

    checkout_form = stripe.requests[1][1]
    assert checkout_form["customer"] == "cus_new_1"
    assert checkout_form["line_items[0][price]"] == "price_pro_monthly"
    assert checkout_form["metadata[userId]"] == user.id
    assert checkout_form["metadata[tier]"] == "pro"
    assert checkout_form["metadata[workspace_name]"] == "Corner Bakery"
    assert checkout_form["success_url"].startswith("https://app.woozy.test/dashboard?payment=success")
    assert checkout_form["cancel_url"] == "https://app.woozy.test/pricing?payment=cancelled"


def test_checkout_reuses_existing_customer_and_surfaces_stripe_errors(monkeypatch, seed, session) -> None:
    monkeypatch.setenv("STRIPE_PRICE_SOLO", "price_solo_monthly")
    get_settings.cache_clear()
    user = seed.user("buyer@acme.io", stripe_customer_id="cus_existing")
    stripe = _FakeStripe()
    stripe.checkout_status = 402

    with pytest.raises(UpstreamError, match="Your card was declined."):
        create_checkout_session(session, user_id=user.id, tier="solo", stripe=stripe.client())

    assert [path for path, _ in stripe.requests] == ["/v1/checkout/sessions"]


def test_checkout_requires_configured_stripe(seed, session) -> None:
    user = seed.user("buyer@acme.io")

    with pytest.raises(ConfigurationError):
        create_checkout_session(session, user_id=user.id, tier="pro", stripe=StripeClient(api_key=""))


def test_portal_requires_billing_account(seed, session) -> None:
    stripe = _FakeStripe()
    newcomer = seed.user("new@acme.io")
    subscriber = seed.user("paid@acme.io", stripe_customer_id="cus_paid")

    with pytest.raises(ValidationError, match="No billing account found"):
        create_portal_session(session, user_id=newcomer.id, stripe=stripe.client())

    url = create_portal_session(session, user_id=subscriber.id, stripe=stripe.client())
    assert url == "https://billing.stripe.test/session"
    assert stripe.requests[0][1]["return_url"] == "https://app.woozy.test/settings"


def test_checkout_route_is_rate_limited(monkeypatch, api_client, seed, auth_headers) -> None:
    monkeypatch.setenv("STRIPE_PRICE_PRO", "price_pro_monthly")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "true")
    get_settings.cache_clear()
    user = seed.user("buyer@acme.io")
    stripe = _FakeStripe()
    api_main.app.dependency_overrides[get_stripe_client] = stripe.client

    allowed = api_client.post("/billing/checkout-session", json={"tier": "pro"}, headers=auth_headers(user))
    assert allowed.status_code == 200
    assert allowed.json() == {"session_id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}

    class _Blocked:
        def check(self, *, action: str, identifier: str, limit: int) -> RateLimitDecision:
            del action, identifier
            return RateLimitDecision(allowed=False, limit=limit, remaining=0, reset_seconds=42)

    monkeypatch.setattr(rate_limit, "get_rate_limiter", lambda: _Blocked())
    blocked = api_client.post("/billing/checkout-session", json={"tier": "pro"}, headers=auth_headers(user))
    assert blocked.status_code == 429
    assert blocked.json()["error_code"] == "rate_limited"
    assert blocked.headers["retry-after"] == "42"
    assert blocked.headers["x-rate-limit-remaining"] == "0"


def test_signature_verification_rules() -> None:
    payload = b'{"id":"evt_1","type":"invoice.paid"}'
    now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    timestamp = int(now.timestamp())
    good = f"t={timestamp},v1=deadbeef,v1={compute_signature('whsec_1', timestamp, payload)}"

    verify_signature(payload=payload, header=good, secret="whsec_1", now=now)

    with pytest.raises(StripeWebhookError, match="mismatch"):
        verify_signature(payload=payload + b" ", header=good, secret="whsec_1", now=now)
    with pytest.raises(StripeWebhookError, match="tolerance"):
        verify_signature(
            payload=payload,
            header=good,
            secret="whsec_1",
            now=datetime(2026, 10, 19, 12, 10, tzinfo=timezone.utc),
        )
    with pytest.raises(StripeWebhookError):
        verify_signature(payload=payload, header="v1=abc", secret="whsec_1", now=now)
    with pytest.raises(StripeWebhookError):
        parse_event(b'{"type":"invoice.paid"}')


def test_form_encoding_flattens_nested_values() -> None:
    encoded = encode_form({"line_items": [{"price": "p1", "quantity": 1}], "allow": True, "skip": None})

    assert encoded == {"line_items[0][price]": "p1", "line_items[0][quantity]": "1", "allow": "true"}
