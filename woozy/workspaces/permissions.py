"""Workspace role defaults, capability overrides and approver predicates.

Every permission decision in the service layer goes through ``has_capability`` or one of
the approver predicates below; routes never inspect roles directly.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Optional, Protocol, Tuple


ROLE_OWNER = "owner"
ROLE_ADMIN = "admin"
ROLE_EDITOR = "editor"
ROLE_VIEW_ONLY = "view_only"
ROLE_CLIENT = "client"

ROLES: Tuple[str, ...] = (ROLE_OWNER, ROLE_ADMIN, ROLE_EDITOR, ROLE_VIEW_ONLY, ROLE_CLIENT)
CLIENT_ROLES: Tuple[str, ...] = (ROLE_CLIENT, ROLE_VIEW_ONLY)
CONTRIBUTOR_ROLES: Tuple[str, ...] = (ROLE_OWNER, ROLE_ADMIN, ROLE_EDITOR)

LEGACY_ROLE_ALIASES: Dict[str, str] = {
    "member": ROLE_EDITOR,
    "viewer": ROLE_VIEW_ONLY,
}

CAPABILITY_FLAGS: Tuple[str, ...] = (
    "can_manage_team",
    "can_manage_settings",
    "can_delete_posts",
    "can_approve_posts",
)


@dataclass(frozen=True)
class Capabilities:
    can_manage_team: bool = False
    can_manage_settings: bool = False
    can_delete_posts: bool = False
    can_approve_posts: bool = False


# Owners approve by virtue of the role (see can_review_internal) and do not count as a
# final approver for routing unless the flag is set explicitly.
_ROLE_DEFAULTS: Dict[str, Capabilities] = {
    ROLE_OWNER: Capabilities(True, True, True, False),
    ROLE_ADMIN: Capabilities(True, True, True, True),
    ROLE_EDITOR: Capabilities(False, False, False, False),
    ROLE_VIEW_ONLY: Capabilities(False, False, False, True),
    ROLE_CLIENT: Capabilities(False, False, False, True),
}


class MemberLike(Protocol):
    role: str
    can_manage_team: Optional[bool]
    can_manage_settings: Optional[bool]
    can_delete_posts: Optional[bool]
    can_approve_posts: Optional[bool]


def normalize_role(role: str | None) -> str:
    normalized = str(role or "").strip().lower()
    normalized = LEGACY_ROLE_ALIASES.get(normalized, normalized)
    if normalized in ROLES:
        return normalized
    return ROLE_VIEW_ONLY


def capabilities_for(role: str | None) -> Capabilities:
    return _ROLE_DEFAULTS[normalize_role(role)]


def merge_overrides(base: Capabilities, overrides: Dict[str, Optional[bool]] | None = None) -> Capabilities:
    """Apply explicit per-member flags on top of role defaults. ``None`` keeps the default."""

    if not overrides:
        return base
    changes = {
        key: bool(value)
        for key, value in overrides.items()
        if key in CAPABILITY_FLAGS and value is not None
    }
    return replace(base, **changes)


def effective_capabilities(member: MemberLike) -> Capabilities:
    overrides = {flag: getattr(member, flag, None) for flag in CAPABILITY_FLAGS}
    return merge_overrides(capabilities_for(member.role), overrides)


def has_capability(member: MemberLike | None, flag: str) -> bool:
    if member is None:
        return False
    if flag not in CAPABILITY_FLAGS:
        raise ValueError(f"Unknown capability flag: {flag}")
    return bool(getattr(effective_capabilities(member), flag))


def is_owner(member: MemberLike | None) -> bool:
    return member is not None and normalize_role(member.role) == ROLE_OWNER


def is_final_approver(member: MemberLike | None) -> bool:
    if member is None:
        return False
    return normalize_role(member.role) not in CLIENT_ROLES and has_capability(member, "can_approve_posts")


def is_client_approver(member: MemberLike | None) -> bool:
    if member is None:
        return False
    return normalize_role(member.role) in CLIENT_ROLES and has_capability(member, "can_approve_posts")


def can_review_internal(member: MemberLike | None) -> bool:
    return is_final_approver(member) or is_owner(member)


def can_review_client(member: MemberLike | None) -> bool:
    return is_client_approver(member) or can_review_internal(member)


def can_contribute(member: MemberLike | None) -> bool:
    return member is not None and normalize_role(member.role) in CONTRIBUTOR_ROLES
