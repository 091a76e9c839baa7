"""Approval routing decision for newly submitted posts."""

from __future__ import annotations

from typing import Literal

from sqlalchemy.orm import Session

from woozy.workspaces.permissions import is_client_approver, is_final_approver
from woozy.workspaces.service import list_members


PolicyDecision = Literal["publish_immediately", "require_internal_review", "require_client_review"]

PUBLISH_IMMEDIATELY = "publish_immediately"
REQUIRE_INTERNAL_REVIEW = "require_internal_review"
REQUIRE_CLIENT_REVIEW = "require_client_review"


def resolve(session: Session, workspace_id: str, is_scheduled: bool) -> str:
    """Pick the review path from the workspace's current membership.

    Immediate posts never wait for review. Scheduled posts go to internal review when any
    final approver exists, otherwise to client review when any client approver exists.
    Client review is never entered directly when a final approver is present.
    """

    if not is_scheduled:
        return PUBLISH_IMMEDIATELY

    members = list_members(session, workspace_id)
    if any(is_final_approver(member) for member in members):
        return REQUIRE_INTERNAL_REVIEW
    if any(is_client_approver(member) for member in members):
        return REQUIRE_CLIENT_REVIEW
    return PUBLISH_IMMEDIATELY
