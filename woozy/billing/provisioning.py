"""Attaching a provider profile (the publishing credential) to a user's workspace."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from woozy.core.config import get_settings
from woozy.core.errors import Forbidden, NotFound, UpstreamError
from woozy.core.logger import get_logger
from woozy.publishing.ayrshare_client import AyrshareAPIError, AyrshareClient
from woozy.storage.db import side_session
from woozy.storage.models import ReconciliationTask, User, Workspace
from woozy.workspaces.service import SUBSCRIPTION_ACTIVE, create_workspace_with_owner, owned_workspaces


DEVELOPMENT_TIER = "agency"

logger = get_logger("woozy.billing.provisioning")


def apply_workspace_subscription(
    workspace: Workspace,
    *,
    subscription_status: str,
    tier: Optional[str] = None,
    customer_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
) -> None:
    workspace.subscription_status = subscription_status
    if tier:
        workspace.subscription_tier = tier
    if customer_id:
        workspace.stripe_customer_id = customer_id
    if subscription_id:
        workspace.stripe_subscription_id = subscription_id
    workspace.updated_at = datetime.now(timezone.utc)


def record_orphaned_profile(
    session: Session,
    *,
    user_id: str,
    workspace_id: Optional[str],
    event_id: Optional[str],
    profile_key: str,
    profile_ref_id: Optional[str],
    error: Exception,
) -> None:
    """Persist a reconciliation task outside the caller's (rolled back) transaction."""

    with side_session(session) as side:
        side.add(
            ReconciliationTask(
                user_id=user_id,
                workspace_id=workspace_id,
                stripe_event_id=event_id,
                profile_key=profile_key,
                profile_ref_id=profile_ref_id,
                error_message=str(error)[:255],
            )
        )
    logger.error(
        "reconciliation_task_recorded",
        user_id=user_id,
        workspace_id=workspace_id,
        event_id=event_id,
        profile_ref_id=profile_ref_id,
        error=str(error),
    )


def provision_workspace(
    session: Session,
    *,
    user: User,
    tier: str,
    workspace_name: str,
    profiles: AyrshareClient,
    customer_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
    event_id: Optional[str] = None,
) -> Tuple[Workspace, bool]:
    """Make sure ``user`` owns a workspace with a publishing credential.

    Returns ``(workspace, created_profile)``. A workspace that already has a credential is
    reused untouched apart from its subscription fields. Otherwise the first owned workspace
    gets a new profile, or a workspace is created when the user owns none. Commits on
    success; if the local write fails after the remote profile exists, a reconciliation
    task is recorded and the error re-raised.
    """

    # Serializes concurrent provisioning for the same user (a no-op on SQLite).
    session.execute(select(User.id).where(User.id == user.id).with_for_update())
    owned = owned_workspaces(session, user.id)
    provisioned = next((workspace for workspace in owned if (workspace.profile_key or "").strip()), None)
    if provisioned is not None:
        apply_workspace_subscription(
            provisioned,
            subscription_status=SUBSCRIPTION_ACTIVE,
            tier=tier,
            customer_id=customer_id,
            subscription_id=subscription_id,
        )
        session.commit()
        return provisioned, False

    target = owned[0] if owned else None
    try:
        profile_key, ref_id = profiles.create_profile(title=target.name if target else workspace_name)
    except AyrshareAPIError as exc:
        raise UpstreamError(f"Failed to create social profile: {exc}") from exc

    user_id = user.id
    target_id = target.id if target else None
    try:
        if target is None:
            target = create_workspace_with_owner(
                session,
                owner=user,
                name=workspace_name,
                subscription_tier=tier,
                created_from_payment=event_id is not None,
            )
        target.profile_key = profile_key
        target.profile_ref_id = ref_id
        apply_workspace_subscription(
            target,
            subscription_status=SUBSCRIPTION_ACTIVE,
            tier=tier,
            customer_id=customer_id,
            subscription_id=subscription_id,
        )
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        record_orphaned_profile(
            session,
            user_id=user_id,
            workspace_id=target_id,
            event_id=event_id,
            profile_key=profile_key,
            profile_ref_id=ref_id,
            error=exc,
        )
        raise

    logger.info(
        "workspace_profile_attached",
        user_id=user_id,
        workspace_id=target.id,
        created_workspace=target_id is None,
        profile_ref_id=ref_id,
    )
    return target, True


def is_allowlisted(user: User) -> bool:
    return bool(user.is_allowlisted) or user.email.strip().lower() in get_settings().allowlisted_email_set


def provision_development_profile(
    session: Session,
    *,
    user_id: str,
    profiles: AyrshareClient,
    workspace_name: Optional[str] = None,
) -> Tuple[Workspace, bool]:
    """Billing bypass for allow-listed accounts: activate them and attach a credential."""

    user = session.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    if not is_allowlisted(user):
        raise Forbidden("This account is not eligible for profile provisioning")

    user.subscription_status = SUBSCRIPTION_ACTIVE
    user.subscription_tier = DEVELOPMENT_TIER
    user.is_allowlisted = True
    user.updated_at = datetime.now(timezone.utc)
    name = (workspace_name or "").strip() or get_settings().default_workspace_name
    workspace, created = provision_workspace(
        session,
        user=user,
        tier=DEVELOPMENT_TIER,
        workspace_name=name,
        profiles=profiles,
    )
    logger.info("development_profile_provisioned", user_id=user_id, workspace_id=workspace.id, created=created)
    return workspace, created
