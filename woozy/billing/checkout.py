"""Stripe Checkout and Customer Portal session creation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from woozy.billing.plans import normalize_tier, price_id_for
from woozy.billing.stripe_client import StripeAPIError, StripeClient
from woozy.core.config import get_settings
from woozy.core.errors import ConfigurationError, NotFound, UpstreamError, ValidationError
from woozy.core.logger import get_logger
from woozy.storage.models import User


logger = get_logger("woozy.billing.checkout")


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str


def _require_stripe(stripe: StripeClient) -> None:
    if not stripe.is_configured:
        raise ConfigurationError("Stripe is not configured")


def _ensure_customer(session: Session, user: User, stripe: StripeClient) -> str:
    if user.stripe_customer_id:
        return user.stripe_customer_id

    try:
        customer_id = stripe.create_customer(email=user.email, name=user.full_name, user_id=user.id)
    except StripeAPIError as exc:
        raise UpstreamError(f"Stripe customer error: {exc}") from exc
    user.stripe_customer_id = customer_id
    session.commit()
    logger.info("stripe_customer_created", user_id=user.id, customer_id=customer_id)
    return customer_id


def create_checkout_session(
    session: Session,
    *,
    user_id: str,
    tier: str,
    stripe: StripeClient,
    billing_period: str = "monthly",
    workspace_name: Optional[str] = None,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> CheckoutSession:
    _require_stripe(stripe)
    price_id = price_id_for(tier, billing_period)

    user = session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    customer_id = _ensure_customer(session, user, stripe)

    metadata = {
        "userId": user.id,
        "tier": normalize_tier(tier),
        "billing_period": billing_period,
    }
    if workspace_name and workspace_name.strip():
        metadata["workspace_name"] = workspace_name.strip()

    app_url = get_settings().app_url.strip().rstrip("/")
    try:
        result = stripe.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            success_url=success_url or f"{app_url}/dashboard?payment=success&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=cancel_url or f"{app_url}/pricing?payment=cancelled",
            metadata=metadata,
        )
    except StripeAPIError as exc:
        raise UpstreamError(f"Stripe checkout error: {exc}") from exc

    logger.info(
        "stripe_checkout_session_created",
        user_id=user.id,
        tier=metadata["tier"],
        billing_period=billing_period,
        session_id=result["session_id"],
    )
    return CheckoutSession(session_id=result["session_id"], url=result["url"])


def create_portal_session(
    session: Session,
    *,
    user_id: str,
    stripe: StripeClient,
    return_url: Optional[str] = None,
) -> str:
    _require_stripe(stripe)
    user = session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    if not user.stripe_customer_id:
        raise ValidationError("No billing account found. Please subscribe first.")

    app_url = get_settings().app_url.strip().rstrip("/")
    try:
        return stripe.create_portal_session(
            customer_id=user.stripe_customer_id,
            return_url=return_url or f"{app_url}/settings",
        )
    except StripeAPIError as exc:
        raise UpstreamError(f"Stripe portal error: {exc}") from exc
