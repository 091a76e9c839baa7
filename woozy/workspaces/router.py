"""Workspace membership API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from woozy.auth.dependencies import require_auth_context
from woozy.auth.jwt import AuthContext
from woozy.core.logger import bind_workspace
from woozy.schemas.workspaces import (
    LeaveWorkspaceResponse,
    MemberListResponse,
    MemberResponse,
    MemberUpdateRequest,
)
from woozy.storage.db import get_session
from woozy.storage.models import WorkspaceMember
from woozy.workspaces.permissions import CAPABILITY_FLAGS, effective_capabilities, normalize_role
from woozy.workspaces.service import leave_workspace, list_members, require_membership, update_member


router = APIRouter(prefix="/workspaces", tags=["workspaces"])


def _member_response(member: WorkspaceMember) -> MemberResponse:
    capabilities = effective_capabilities(member)
    user = member.user
    return MemberResponse(
        user_id=member.user_id,
        email=user.email if user is not None else None,
        display_name=user.display_name if user is not None else "User",
        role=normalize_role(member.role),
        can_manage_team=capabilities.can_manage_team,
        can_manage_settings=capabilities.can_manage_settings,
        can_delete_posts=capabilities.can_delete_posts,
        can_approve_posts=capabilities.can_approve_posts,
        joined_at=member.joined_at,
    )


@router.get("/{workspace_id}/members", response_model=MemberListResponse)
def list_members_endpoint(
    workspace_id: str,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> MemberListResponse:
    bind_workspace(workspace_id)
    require_membership(session, workspace_id, auth.user_id)
    return MemberListResponse(
        workspace_id=workspace_id,
        items=[_member_response(member) for member in list_members(session, workspace_id)],
    )


@router.patch("/{workspace_id}/members/{user_id}", response_model=MemberResponse)
def update_member_endpoint(
    workspace_id: str,
    user_id: str,
    payload: MemberUpdateRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> MemberResponse:
    bind_workspace(workspace_id)
    changes = payload.model_dump(exclude_unset=True)
    member = update_member(
        session,
        workspace_id=workspace_id,
        actor_id=auth.user_id,
        target_user_id=user_id,
        role=changes.pop("role", None),
        overrides={flag: changes[flag] for flag in CAPABILITY_FLAGS if flag in changes},
    )
    return _member_response(member)


@router.post("/{workspace_id}/leave", response_model=LeaveWorkspaceResponse)
def leave_workspace_endpoint(
    workspace_id: str,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> LeaveWorkspaceResponse:
    bind_workspace(workspace_id)
    leave_workspace(session, workspace_id=workspace_id, user_id=auth.user_id)
    return LeaveWorkspaceResponse(workspace_id=workspace_id)
