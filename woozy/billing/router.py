"""Authenticated billing routes: checkout, customer portal and development provisioning."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from woozy.auth.dependencies import require_auth_context
from woozy.auth.jwt import AuthContext
from woozy.billing.checkout import create_checkout_session, create_portal_session
from woozy.billing.provisioning import provision_development_profile
from woozy.billing.stripe_client import StripeClient, get_stripe_client
from woozy.core.config import get_settings
from woozy.core.rate_limit import enforce_rate_limit
from woozy.publishing.ayrshare_client import AyrshareClient, get_ayrshare_client
from woozy.schemas.billing import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    PortalSessionRequest,
    PortalSessionResponse,
    ProvisionProfileRequest,
    ProvisionProfileResponse,
)
from woozy.storage.db import get_session
from woozy.workspaces.service import effective_subscription_status


router = APIRouter(prefix="/billing", tags=["billing"])


@router.post("/checkout-session", response_model=CheckoutSessionResponse)
def checkout_session_endpoint(
    payload: CheckoutSessionRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
    stripe: StripeClient = Depends(get_stripe_client),
) -> CheckoutSessionResponse:
    enforce_rate_limit(
        action="checkout",
        identifier=auth.user_id,
        limit=get_settings().checkout_rate_limit_per_minute,
    )
    result = create_checkout_session(
        session,
        user_id=auth.user_id,
        tier=payload.tier,
        billing_period=payload.billing_period,
        workspace_name=payload.workspace_name,
        success_url=payload.success_url,
        cancel_url=payload.cancel_url,
        stripe=stripe,
    )
    return CheckoutSessionResponse(session_id=result.session_id, url=result.url)


@router.post("/portal-session", response_model=PortalSessionResponse)
def portal_session_endpoint(
    payload: PortalSessionRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
    stripe: StripeClient = Depends(get_stripe_client),
) -> PortalSessionResponse:
    enforce_rate_limit(
        action="portal",
        identifier=auth.user_id,
        limit=get_settings().portal_rate_limit_per_minute,
    )
    url = create_portal_session(session, user_id=auth.user_id, return_url=payload.return_url, stripe=stripe)
    return PortalSessionResponse(url=url)


@router.post("/provision-profile", response_model=ProvisionProfileResponse)
def provision_profile_endpoint(
    payload: ProvisionProfileRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
    profiles: AyrshareClient = Depends(get_ayrshare_client),
) -> ProvisionProfileResponse:
    workspace, created = provision_development_profile(
        session,
        user_id=auth.user_id,
        workspace_name=payload.workspace_name,
        profiles=profiles,
    )
    return ProvisionProfileResponse(
        workspace_id=workspace.id,
        profile_key_present=bool(workspace.profile_key),
        subscription_status=effective_subscription_status(session, workspace),
        subscription_tier=workspace.subscription_tier,
        created=created,
    )
