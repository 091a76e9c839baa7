"""Canonical approval and post lifecycle states with legacy aliases."""

from __future__ import annotations

from typing import Dict, Literal, Tuple


ApprovalStatus = Literal[
    "pending_internal",
    "pending_client",
    "changes_requested",
    "approved",
    "rejected",
]

APPROVAL_PENDING_INTERNAL = "pending_internal"
APPROVAL_PENDING_CLIENT = "pending_client"
APPROVAL_CHANGES_REQUESTED = "changes_requested"
APPROVAL_APPROVED = "approved"
APPROVAL_REJECTED = "rejected"

LEGACY_APPROVAL_PENDING = "pending"

APPROVAL_STATUSES: Tuple[str, ...] = (
    APPROVAL_PENDING_INTERNAL,
    APPROVAL_PENDING_CLIENT,
    APPROVAL_CHANGES_REQUESTED,
    APPROVAL_APPROVED,
    APPROVAL_REJECTED,
)
PENDING_CLIENT_STATUSES: Tuple[str, ...] = (APPROVAL_PENDING_CLIENT, LEGACY_APPROVAL_PENDING)
TERMINAL_APPROVAL_STATUSES = {APPROVAL_APPROVED, APPROVAL_REJECTED}

POST_PENDING_APPROVAL = "pending_approval"
POST_PUBLISHING = "publishing"
POST_SCHEDULED = "scheduled"
POST_POSTED = "posted"
POST_FAILED = "failed"

PUBLISHED_POST_STATUSES = {POST_SCHEDULED, POST_POSTED}

ROUTE_INTERNAL = "internal"
ROUTE_CLIENT = "client"

ACTION_APPROVE = "approve"
ACTION_REJECT = "reject"
ACTION_CHANGES_REQUESTED = "changes_requested"
ACTION_FORWARD_TO_CLIENT = "forward_to_client"
ACTION_MARK_RESOLVED = "mark_resolved"

APPROVAL_ACTIONS: Tuple[str, ...] = (
    ACTION_APPROVE,
    ACTION_REJECT,
    ACTION_CHANGES_REQUESTED,
    ACTION_FORWARD_TO_CLIENT,
    ACTION_MARK_RESOLVED,
)
COMMENT_REQUIRED_ACTIONS = {ACTION_REJECT, ACTION_CHANGES_REQUESTED}

DEFAULT_ACTION_COMMENTS: Dict[str, str] = {
    ACTION_APPROVE: "Post approved",
    ACTION_REJECT: "Post rejected",
    ACTION_CHANGES_REQUESTED: "Post marked for changes",
    ACTION_FORWARD_TO_CLIENT: "Forwarded Post",
    ACTION_MARK_RESOLVED: "Post changes resolved - ready for re-approval",
}


def canonicalize_approval_status(status: str | None) -> str | None:
    """Map stored values onto the canonical set. ``pending`` is the legacy client stage."""

    normalized = str(status or "").strip().lower()
    if not normalized:
        return None
    if normalized == LEGACY_APPROVAL_PENDING:
        return APPROVAL_PENDING_CLIENT
    if normalized not in APPROVAL_STATUSES:
        raise ValueError(f"Unknown approval status: {status}")
    return normalized


def stored_statuses_for(status: str) -> Tuple[str, ...]:
    """All stored spellings of a canonical status, for conditional updates."""

    if status == APPROVAL_PENDING_CLIENT:
        return PENDING_CLIENT_STATUSES
    return (status,)


def route_entry_status(route: str) -> str:
    if route == ROUTE_CLIENT:
        return APPROVAL_PENDING_CLIENT
    return APPROVAL_PENDING_INTERNAL
