"""Stripe webhook endpoint: idempotent reconciliation of subscription state.

Every delivery is recorded in ``stripe_events`` keyed by the Stripe event id. Events that
were already processed (or deliberately ignored) answer ``duplicate``; events whose earlier
attempt failed are processed again. A row still ``received`` belongs to the delivery that
holds its lease (``attempted_at``); concurrent deliveries answer 409 until the lease
expires. Within checkout handling, the "owner already has a provisioned workspace" check
(taken under a lock on the user row) is what keeps a redelivery from creating a second
workspace or a second provider profile.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from woozy.billing.plans import is_add_on, normalize_tier, tier_from_price_id
from woozy.billing.provisioning import apply_workspace_subscription, provision_workspace
from woozy.billing.stripe_client import StripeWebhookError, event_object, parse_event, verify_signature
from woozy.core.config import get_settings
from woozy.core.logger import get_logger
from woozy.core.metrics import record_stripe_event
from woozy.core.observability import capture_exception
from woozy.publishing.ayrshare_client import AyrshareClient, get_ayrshare_client
from woozy.schemas.billing import StripeWebhookResponse
from woozy.storage.db import get_session
from woozy.storage.models import StripeEvent, User, Workspace
from woozy.workspaces.service import (
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_PAST_DUE,
    canonicalize_subscription_status,
)


EVENT_RECEIVED = "received"
EVENT_PROCESSED = "processed"
EVENT_IGNORED = "ignored"
EVENT_FAILED = "failed"
EVENT_DUPLICATE = "duplicate"
EVENT_IN_PROGRESS = "in_progress"
SETTLED_EVENT_STATUSES = {EVENT_PROCESSED, EVENT_IGNORED}

router = APIRouter(prefix="/billing", tags=["billing"])
logger = get_logger("woozy.billing.webhooks")

Outcome = Tuple[str, str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _record_event(
    session: Session,
    *,
    event_id: str,
    event_type: str,
    payload_json: str,
) -> Tuple[StripeEvent, Optional[str]]:
    """Insert or reclaim the ledger row.

    Returns ``(row, None)`` when this delivery owns the event. Otherwise the second item is
    why it must not be processed: ``duplicate`` for settled events, ``in_progress`` while
    another delivery holds an unexpired lease on the row.
    """

    now = _utcnow()
    stripe_event = StripeEvent(
        event_id=event_id,
        event_type=event_type,
        status=EVENT_RECEIVED,
        payload_json=payload_json,
        attempted_at=now,
    )
    session.add(stripe_event)
    try:
        session.commit()
        return stripe_event, None
    except IntegrityError:
        session.rollback()

    lease_expired_before = now - timedelta(seconds=get_settings().stripe_event_lease_seconds)
    reclaimed = session.execute(
        update(StripeEvent)
        .where(
            StripeEvent.event_id == event_id,
            or_(
                StripeEvent.status == EVENT_FAILED,
                and_(
                    StripeEvent.status == EVENT_RECEIVED,
                    or_(StripeEvent.attempted_at.is_(None), StripeEvent.attempted_at < lease_expired_before),
                ),
            ),
        )
        .values(status=EVENT_RECEIVED, error_message=None, attempted_at=now)
        .execution_options(synchronize_session=False)
    )
    session.commit()

    existing = session.scalar(select(StripeEvent).where(StripeEvent.event_id == event_id))
    if existing is None:  # pragma: no cover
        raise RuntimeError("Failed to persist Stripe event")
    if reclaimed.rowcount == 1:
        logger.info("stripe_event_reprocessing", event_id=event_id)
        return existing, None
    if existing.status in SETTLED_EVENT_STATUSES:
        return existing, EVENT_DUPLICATE
    return existing, EVENT_IN_PROGRESS


def _mark_event_failed(session: Session, event_id: str, error_message: str) -> None:
    stripe_event = session.scalar(select(StripeEvent).where(StripeEvent.event_id == event_id))
    if stripe_event is None:
        return
    stripe_event.status = EVENT_FAILED
    stripe_event.error_message = error_message[:255]
    stripe_event.processed_at = _utcnow()
    session.commit()


def _find_user_by_customer(session: Session, customer_id: Any) -> Optional[User]:
    if not isinstance(customer_id, str) or not customer_id:
        return None
    return session.scalar(select(User).where(User.stripe_customer_id == customer_id))


def _billed_workspaces(session: Session, user: User, customer_id: str) -> list[Workspace]:
    return list(
        session.scalars(
            select(Workspace).where(
                or_(Workspace.stripe_customer_id == customer_id, Workspace.owner_id == user.id)
            )
        ).all()
    )


def _is_replaced_subscription(user: User, subscription_id: Any) -> bool:
    """True when the event is about an older subscription than the one stored on the user."""

    return bool(
        user.stripe_subscription_id
        and isinstance(subscription_id, str)
        and subscription_id
        and subscription_id != user.stripe_subscription_id
    )


def _handle_checkout_completed(
    session: Session,
    *,
    stripe_event: StripeEvent,
    event: Dict[str, Any],
    profiles: AyrshareClient,
) -> Outcome:
    checkout = event_object(event)
    metadata = checkout.get("metadata") or {}
    user_id = metadata.get("userId") or metadata.get("supabase_user_id")
    if not user_id:
        logger.warning("stripe_checkout_missing_user", event_id=stripe_event.event_id)
        return EVENT_IGNORED, "Checkout session has no user id in metadata"

    user = session.get(User, str(user_id))
    if user is None:
        logger.warning("stripe_checkout_unknown_user", event_id=stripe_event.event_id, user_id=str(user_id))
        return EVENT_IGNORED, "Checkout session refers to an unknown user"

    stripe_event.user_id = user.id
    tier = normalize_tier(metadata.get("tier")) or user.subscription_tier
    customer_id = checkout.get("customer") if isinstance(checkout.get("customer"), str) else None
    subscription_id = checkout.get("subscription") if isinstance(checkout.get("subscription"), str) else None

    user.subscription_status = SUBSCRIPTION_ACTIVE
    if customer_id:
        user.stripe_customer_id = customer_id
    user.updated_at = _utcnow()

    if is_add_on(tier):
        user.workspace_add_ons = int(user.workspace_add_ons or 0) + 1
        return EVENT_PROCESSED, "Workspace add-on recorded"

    user.subscription_tier = tier
    if subscription_id:
        user.stripe_subscription_id = subscription_id

    workspace, created_profile = provision_workspace(
        session,
        user=user,
        tier=tier,
        workspace_name=(metadata.get("workspace_name") or get_settings().default_workspace_name).strip(),
        profiles=profiles,
        customer_id=customer_id,
        subscription_id=subscription_id,
        event_id=stripe_event.event_id,
    )
    stripe_event.workspace_id = workspace.id
    if not created_profile:
        return EVENT_PROCESSED, "Workspace already provisioned"
    return EVENT_PROCESSED, "Workspace provisioned with social profile"


def _handle_subscription_updated(
    session: Session,
    *,
    stripe_event: StripeEvent,
    event: Dict[str, Any],
    profiles: AyrshareClient,
) -> Outcome:
    subscription = event_object(event)
    customer_id = subscription.get("customer")
    user = _find_user_by_customer(session, customer_id)
    if user is None:
        return EVENT_IGNORED, "No user linked to Stripe customer"
    stripe_event.user_id = user.id
    if _is_replaced_subscription(user, subscription.get("id")):
        return EVENT_IGNORED, "Event refers to a replaced subscription"

    items = (subscription.get("items") or {}).get("data") or []
    price = (items[0].get("price") or {}) if items and isinstance(items[0], dict) else {}
    tier = tier_from_price_id(price.get("id"))
    if tier and is_add_on(tier):
        return EVENT_IGNORED, "Add-on subscription changes do not affect the tier"

    subscription_status = canonicalize_subscription_status(subscription.get("status"))
    user.subscription_status = subscription_status
    if tier:
        user.subscription_tier = tier
    user.updated_at = _utcnow()
    for workspace in _billed_workspaces(session, user, customer_id):
        apply_workspace_subscription(workspace, subscription_status=subscription_status, tier=tier)
    return EVENT_PROCESSED, f"Subscription {subscription_status}"


def _handle_subscription_deleted(
    session: Session,
    *,
    stripe_event: StripeEvent,
    event: Dict[str, Any],
    profiles: AyrshareClient,
) -> Outcome:
    subscription = event_object(event)
    customer_id = subscription.get("customer")
    user = _find_user_by_customer(session, customer_id)
    if user is None:
        return EVENT_IGNORED, "No user linked to Stripe customer"
    stripe_event.user_id = user.id
    if _is_replaced_subscription(user, subscription.get("id")):
        return EVENT_IGNORED, "Event refers to a replaced subscription"

    # Credentials stay attached so a resubscription restores publishing.
    user.subscription_status = SUBSCRIPTION_CANCELLED
    user.updated_at = _utcnow()
    for workspace in _billed_workspaces(session, user, customer_id):
        apply_workspace_subscription(workspace, subscription_status=SUBSCRIPTION_CANCELLED)
    return EVENT_PROCESSED, "Subscription cancelled"


def _handle_payment_failed(
    session: Session,
    *,
    stripe_event: StripeEvent,
    event: Dict[str, Any],
    profiles: AyrshareClient,
) -> Outcome:
    invoice = event_object(event)
    customer_id = invoice.get("customer")
    user = _find_user_by_customer(session, customer_id)
    if user is None:
        return EVENT_IGNORED, "No user linked to Stripe customer"
    stripe_event.user_id = user.id

    user.subscription_status = SUBSCRIPTION_PAST_DUE
    user.updated_at = _utcnow()
    for workspace in _billed_workspaces(session, user, customer_id):
        apply_workspace_subscription(workspace, subscription_status=SUBSCRIPTION_PAST_DUE)
    return EVENT_PROCESSED, "Payment failure applied"


def _handle_invoice_paid(
    session: Session,
    *,
    stripe_event: StripeEvent,
    event: Dict[str, Any],
    profiles: AyrshareClient,
) -> Outcome:
    invoice = event_object(event)
    if not invoice.get("subscription"):
        return EVENT_IGNORED, "Invoice is not for a subscription"

    customer_id = invoice.get("customer")
    user = _find_user_by_customer(session, customer_id)
    if user is None:
        return EVENT_IGNORED, "No user linked to Stripe customer"
    stripe_event.user_id = user.id

    reactivated = False
    if canonicalize_subscription_status(user.subscription_status) == SUBSCRIPTION_PAST_DUE:
        user.subscription_status = SUBSCRIPTION_ACTIVE
        user.updated_at = _utcnow()
        reactivated = True
    for workspace in _billed_workspaces(session, user, customer_id):
        if canonicalize_subscription_status(workspace.subscription_status) == SUBSCRIPTION_PAST_DUE:
            apply_workspace_subscription(workspace, subscription_status=SUBSCRIPTION_ACTIVE)
            reactivated = True
    if not reactivated:
        return EVENT_IGNORED, "Subscription was not past due"
    return EVENT_PROCESSED, "Subscription reactivated"


_HANDLERS: Dict[str, Callable[..., Outcome]] = {
    "checkout.session.completed": _handle_checkout_completed,
    "customer.subscription.updated": _handle_subscription_updated,
    "customer.subscription.deleted": _handle_subscription_deleted,
    "invoice.payment_failed": _handle_payment_failed,
    "invoice.paid": _handle_invoice_paid,
}


def process_stripe_event(
    session: Session,
    *,
    event: Dict[str, Any],
    payload_bytes: bytes,
    profiles: AyrshareClient,
) -> StripeWebhookResponse:
    event_id = str(event["id"])
    event_type = str(event["type"])

    stripe_event, skipped = _record_event(
        session,
        event_id=event_id,
        event_type=event_type,
        payload_json=payload_bytes.decode("utf-8"),
    )
    if skipped == EVENT_DUPLICATE:
        record_stripe_event(event_type=event_type, status=EVENT_DUPLICATE)
        logger.info("stripe_event_duplicate", event_id=event_id, event_type=event_type)
        return StripeWebhookResponse(
            status=EVENT_DUPLICATE,
            duplicate=True,
            event_id=event_id,
            event_type=event_type,
            message="Event already processed",
        )
    if skipped == EVENT_IN_PROGRESS:
        record_stripe_event(event_type=event_type, status=EVENT_IN_PROGRESS)
        logger.warning("stripe_event_in_progress", event_id=event_id, event_type=event_type)
        return StripeWebhookResponse(
            status=EVENT_IN_PROGRESS,
            duplicate=False,
            event_id=event_id,
            event_type=event_type,
            message="Event is being processed by another delivery",
        )

    try:
        handler = _HANDLERS.get(event_type)
        if handler is None:
            final_status, message = EVENT_IGNORED, "Unsupported Stripe event type"
        else:
            final_status, message = handler(session, stripe_event=stripe_event, event=event, profiles=profiles)

        stripe_event.status = final_status
        stripe_event.error_message = None if final_status == EVENT_PROCESSED else message[:255]
        stripe_event.processed_at = _utcnow()
        session.commit()
    except Exception as exc:
        session.rollback()
        _mark_event_failed(session, event_id, str(exc) or exc.__class__.__name__)
        capture_exception(exc)
        record_stripe_event(event_type=event_type, status=EVENT_FAILED)
        logger.exception("stripe_event_failed", event_id=event_id, event_type=event_type)
        return StripeWebhookResponse(
            status=EVENT_FAILED,
            duplicate=False,
            event_id=event_id,
            event_type=event_type,
            message="Processing failed",
        )

    record_stripe_event(event_type=event_type, status=final_status)
    logger.info("stripe_event_processed", event_id=event_id, event_type=event_type, status=final_status)
    return StripeWebhookResponse(
        status=final_status,
        duplicate=False,
        event_id=event_id,
        event_type=event_type,
        message=message,
    )


@router.post("/webhook", response_model=StripeWebhookResponse)
async def stripe_webhook(
    request: Request,
    response: Response,
    session: Session = Depends(get_session),
    profiles: AyrshareClient = Depends(get_ayrshare_client),
) -> StripeWebhookResponse:
    settings = get_settings()
    if not settings.stripe_webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Stripe webhook secret is not configured",
        )

    payload_bytes = await request.body()
    try:
        verify_signature(
            payload=payload_bytes,
            header=request.headers.get("stripe-signature", ""),
            secret=settings.stripe_webhook_secret,
            tolerance_seconds=settings.stripe_signature_tolerance_seconds,
        )
        event = parse_event(payload_bytes)
    except StripeWebhookError as exc:
        logger.warning("stripe_webhook_rejected", error=str(exc))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    result = process_stripe_event(session, event=event, payload_bytes=payload_bytes, profiles=profiles)
    if result.status == EVENT_FAILED:
        # Non-2xx makes Stripe redeliver; the ledger row is picked up again on retry.
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    elif result.status == EVENT_IN_PROGRESS:
        # Another delivery holds the lease; Stripe redelivers non-2xx answers.
        response.status_code = status.HTTP_409_CONFLICT
    return result
