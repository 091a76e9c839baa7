"""Workspace membership, subscription capability and legacy ingress helpers."""

from __future__ import annotations

from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from woozy.core.errors import ConfigurationError, Forbidden, NotFound, ValidationError
from woozy.core.logger import get_logger
from woozy.storage.models import User, Workspace, WorkspaceMember
from woozy.workspaces.permissions import (
    CAPABILITY_FLAGS,
    ROLE_OWNER,
    ROLES,
    has_capability,
    normalize_role,
)


SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_INACTIVE = "inactive"
SUBSCRIPTION_PAST_DUE = "past_due"
SUBSCRIPTION_CANCELLED = "cancelled"

logger = get_logger("woozy.workspaces")


def canonicalize_subscription_status(status: str | None) -> str:
    normalized = str(status or "").strip().lower()
    if normalized == "canceled":
        return SUBSCRIPTION_CANCELLED
    return normalized or SUBSCRIPTION_INACTIVE


def get_workspace(session: Session, workspace_id: str) -> Workspace:
    workspace = session.get(Workspace, workspace_id)
    if workspace is None:
        raise NotFound("Workspace not found")
    return workspace


def get_member(session: Session, workspace_id: str, user_id: str) -> Optional[WorkspaceMember]:
    return session.scalar(
        select(WorkspaceMember).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == user_id,
        )
    )


def require_membership(session: Session, workspace_id: str, user_id: str) -> WorkspaceMember:
    get_workspace(session, workspace_id)
    member = get_member(session, workspace_id, user_id)
    if member is None:
        raise Forbidden("Not a workspace member")
    return member


def list_members(session: Session, workspace_id: str) -> list[WorkspaceMember]:
    return list(
        session.scalars(
            select(WorkspaceMember)
            .where(WorkspaceMember.workspace_id == workspace_id)
            .order_by(WorkspaceMember.joined_at, WorkspaceMember.id)
        ).all()
    )


def owned_workspaces(session: Session, user_id: str) -> list[Workspace]:
    return list(
        session.scalars(
            select(Workspace)
            .join(WorkspaceMember, WorkspaceMember.workspace_id == Workspace.id)
            .where(WorkspaceMember.user_id == user_id, WorkspaceMember.role == ROLE_OWNER)
            .order_by(Workspace.created_at, Workspace.id)
        ).all()
    )


def resolve_workspace_id(session: Session, *, workspace_id: str | None, user_id: str) -> str:
    """Normalize legacy user-scoped requests into a workspace id.

    Older clients send only the user id and expect the credential of the workspace that
    user owns. New clients always send the workspace id.
    """

    if workspace_id:
        return workspace_id

    owned = owned_workspaces(session, user_id)
    if not owned:
        raise ValidationError("workspace_id is required")
    logger.info("legacy_user_scope_resolved", user_id=user_id, workspace_id=owned[0].id)
    return owned[0].id


def effective_subscription_status(session: Session, workspace: Workspace) -> str:
    if workspace.subscription_status:
        return canonicalize_subscription_status(workspace.subscription_status)
    if workspace.owner_id:
        owner = session.get(User, workspace.owner_id)
        if owner is not None:
            return canonicalize_subscription_status(owner.subscription_status)
    return SUBSCRIPTION_INACTIVE


def is_publish_eligible(session: Session, workspace: Workspace) -> bool:
    credential = (workspace.profile_key or "").strip()
    return bool(credential) and effective_subscription_status(session, workspace) == SUBSCRIPTION_ACTIVE


def require_publish_credential(session: Session, workspace: Workspace) -> str:
    """Return the workspace credential or fail before any network call is made."""

    credential = (workspace.profile_key or "").strip()
    if not credential:
        raise ConfigurationError(
            "This workspace has no social media profile configured. Please connect your social accounts first."
        )
    status = effective_subscription_status(session, workspace)
    if status != SUBSCRIPTION_ACTIVE:
        raise ConfigurationError(
            f"This workspace subscription is {status}. Reactivate billing before publishing.",
            details={"subscription_status": status},
        )
    return credential


def create_workspace_with_owner(
    session: Session,
    *,
    owner: User,
    name: str,
    subscription_tier: str = "free",
    created_from_payment: bool = False,
) -> Workspace:
    """Stage a workspace plus its owner membership. The caller commits."""

    workspace = Workspace(
        name=name,
        owner_id=owner.id,
        subscription_tier=subscription_tier,
        created_from_payment=created_from_payment,
    )
    session.add(workspace)
    session.flush()
    session.add(WorkspaceMember(workspace_id=workspace.id, user_id=owner.id, role=ROLE_OWNER))
    session.flush()
    return workspace


def update_member(
    session: Session,
    *,
    workspace_id: str,
    actor_id: str,
    target_user_id: str,
    role: str | None = None,
    overrides: Dict[str, Optional[bool]] | None = None,
) -> WorkspaceMember:
    actor = require_membership(session, workspace_id, actor_id)
    if not has_capability(actor, "can_manage_team"):
        raise Forbidden("Insufficient permissions. can_manage_team required.")

    target = get_member(session, workspace_id, target_user_id)
    if target is None:
        raise NotFound("Member not found")

    if role is not None:
        new_role = str(role).strip().lower()
        if new_role not in ROLES:
            raise ValidationError(f"Invalid role. Must be one of: {', '.join(ROLES)}")
        if new_role == ROLE_OWNER or normalize_role(target.role) == ROLE_OWNER:
            raise ValidationError("Ownership cannot be assigned or removed through a role change")
        target.role = new_role

    for flag, value in (overrides or {}).items():
        if flag not in CAPABILITY_FLAGS:
            raise ValidationError(f"Unknown capability flag: {flag}")
        setattr(target, flag, value)

    session.commit()
    logger.info(
        "workspace_member_updated",
        workspace_id=workspace_id,
        actor_id=actor_id,
        target_user_id=target_user_id,
        role=target.role,
    )
    return target


def leave_workspace(session: Session, *, workspace_id: str, user_id: str) -> None:
    member = require_membership(session, workspace_id, user_id)
    if normalize_role(member.role) == ROLE_OWNER:
        raise ValidationError("Workspace owners cannot leave their workspace")
    session.delete(member)
    session.commit()
    logger.info("workspace_member_left", workspace_id=workspace_id, user_id=user_id)
