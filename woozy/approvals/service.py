"""Post intake and the approval state machine.

Transitions are applied with a conditional UPDATE on ``post_approvals`` so that two
reviewers acting on the same post cannot both win. The transition, the post projection,
the system comment and the notification event commit together; publishing happens only
after that commit.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from woozy.approvals import policy
from woozy.approvals.states import (
    ACTION_APPROVE,
    ACTION_CHANGES_REQUESTED,
    ACTION_FORWARD_TO_CLIENT,
    ACTION_MARK_RESOLVED,
    ACTION_REJECT,
    APPROVAL_ACTIONS,
    APPROVAL_APPROVED,
    APPROVAL_CHANGES_REQUESTED,
    APPROVAL_PENDING_CLIENT,
    APPROVAL_PENDING_INTERNAL,
    APPROVAL_REJECTED,
    COMMENT_REQUIRED_ACTIONS,
    DEFAULT_ACTION_COMMENTS,
    PENDING_CLIENT_STATUSES,
    POST_FAILED,
    POST_PENDING_APPROVAL,
    POST_PUBLISHING,
    PUBLISHED_POST_STATUSES,
    ROUTE_CLIENT,
    ROUTE_INTERNAL,
    canonicalize_approval_status,
    route_entry_status,
    stored_statuses_for,
)
from woozy.core.config import get_settings
from woozy.core.errors import ConflictError, Forbidden, NotFound, ValidationError, WoozyError
from woozy.core.logger import get_logger
from woozy.core.metrics import record_approval_transition
from woozy.publishing.adapter import PublishAdapter
from woozy.publishing.formatter import as_utc, check_media_compatibility
from woozy.publishing.service import publish_post, record_workspace_event
from woozy.storage.models import Post, PostApproval, PostComment, User, WorkspaceMember
from woozy.workspaces.permissions import (
    can_contribute,
    can_review_client,
    can_review_internal,
    has_capability,
    is_client_approver,
)
from woozy.workspaces.service import get_workspace, require_membership, require_publish_credential


SUPPORTED_PLATFORMS = {
    "bluesky",
    "facebook",
    "gmb",
    "instagram",
    "linkedin",
    "pinterest",
    "reddit",
    "telegram",
    "threads",
    "tiktok",
    "twitter",
    "youtube",
}
PLATFORM_ALIASES = {"x": "twitter", "google": "gmb"}
COMMENT_MAX_CHARS = 2000

logger = get_logger("woozy.approvals")


@dataclass(frozen=True)
class PostDraft:
    caption: str
    platforms: list[str]
    media_urls: list[str]
    scheduled_at: Optional[datetime] = None


@dataclass(frozen=True)
class SubmissionResult:
    post: Post
    decision: str
    created: bool


@dataclass(frozen=True)
class ActionResult:
    post: Post
    approval_status: str
    published: bool
    message: str


@dataclass(frozen=True)
class DeleteResult:
    post_id: Optional[str]
    local_deleted: bool
    provider_deleted: bool
    provider_error: Optional[str] = None


# (action, current status) -> target status, or None for "back to the start of the route".
_TRANSITIONS: Dict[Tuple[str, str], Optional[str]] = {
    (ACTION_APPROVE, APPROVAL_PENDING_INTERNAL): APPROVAL_APPROVED,
    (ACTION_APPROVE, APPROVAL_PENDING_CLIENT): APPROVAL_APPROVED,
    (ACTION_REJECT, APPROVAL_PENDING_INTERNAL): APPROVAL_REJECTED,
    (ACTION_REJECT, APPROVAL_PENDING_CLIENT): APPROVAL_REJECTED,
    (ACTION_CHANGES_REQUESTED, APPROVAL_PENDING_INTERNAL): APPROVAL_CHANGES_REQUESTED,
    (ACTION_CHANGES_REQUESTED, APPROVAL_PENDING_CLIENT): APPROVAL_CHANGES_REQUESTED,
    (ACTION_FORWARD_TO_CLIENT, APPROVAL_PENDING_INTERNAL): APPROVAL_PENDING_CLIENT,
    (ACTION_MARK_RESOLVED, APPROVAL_CHANGES_REQUESTED): None,
}

_ACTION_EVENTS = {
    ACTION_APPROVE: "post_approved",
    ACTION_REJECT: "post_rejected",
    ACTION_CHANGES_REQUESTED: "changes_requested",
    ACTION_FORWARD_TO_CLIENT: "approval_requested",
    ACTION_MARK_RESOLVED: "approval_requested",
}

_ACTION_MESSAGES = {
    ACTION_APPROVE: "approved",
    ACTION_REJECT: "rejected",
    ACTION_CHANGES_REQUESTED: "marked for changes",
    ACTION_FORWARD_TO_CLIENT: "forwarded to client",
    ACTION_MARK_RESOLVED: "marked as resolved and sent for re-approval",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _display_name(session: Session, user_id: str) -> str:
    user = session.get(User, user_id)
    return user.display_name if user is not None else "User"


def normalize_platforms(platforms: list[str]) -> list[str]:
    normalized: list[str] = []
    for platform in platforms:
        value = str(platform or "").strip().lower()
        value = PLATFORM_ALIASES.get(value, value)
        if not value:
            continue
        if value not in SUPPORTED_PLATFORMS:
            raise ValidationError(f"Unsupported platform: {platform}")
        if value not in normalized:
            normalized.append(value)
    if not normalized:
        raise ValidationError("At least one social platform must be selected")
    return normalized


def validate_draft(draft: PostDraft, *, now: datetime) -> PostDraft:
    settings = get_settings()
    caption = (draft.caption or "").strip()
    if not caption:
        raise ValidationError("Post text is required")
    if len(caption) > settings.post_max_caption_chars:
        raise ValidationError(
            f"Post text exceeds maximum length of {settings.post_max_caption_chars} characters"
        )

    media_urls: list[str] = []
    for url in draft.media_urls or []:
        value = str(url or "").strip()
        if not value:
            continue
        if urlparse(value).scheme not in {"http", "https"}:
            raise ValidationError(f"Invalid media URL: {value}")
        media_urls.append(value)

    scheduled_at = as_utc(draft.scheduled_at)
    if scheduled_at is not None and scheduled_at <= as_utc(now):
        raise ValidationError("Scheduled date must be in the future")

    platforms = normalize_platforms(list(draft.platforms or []))
    check_media_compatibility(platforms, media_urls)

    return PostDraft(
        caption=caption,
        platforms=platforms,
        media_urls=media_urls,
        scheduled_at=scheduled_at,
    )


def load_post(session: Session, workspace_id: str, post_id: str) -> Post:
    post = session.get(Post, post_id)
    if post is None or post.workspace_id != workspace_id:
        raise NotFound("Post not found")
    return post


def _append_system_comment(session: Session, post: Post, user_id: str, text: str) -> PostComment:
    comment = PostComment(
        post_id=post.id,
        workspace_id=post.workspace_id,
        user_id=user_id,
        comment=f"{_display_name(session, user_id)}: {text}",
        is_system=True,
    )
    session.add(comment)
    return comment


def _transition(
    session: Session,
    approval: PostApproval,
    *,
    current: str,
    target: str,
    reviewer_id: Optional[str],
    reviewed_at: Optional[datetime],
) -> None:
    result = session.execute(
        update(PostApproval)
        .where(
            PostApproval.id == approval.id,
            PostApproval.status.in_(stored_statuses_for(current)),
        )
        .values(status=target, reviewer_id=reviewer_id, reviewed_at=reviewed_at)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        session.rollback()
        raise ConflictError("This post was updated by someone else. Reload and try again.")


def submit_post(
    session: Session,
    *,
    workspace_id: str,
    user_id: str,
    draft: PostDraft,
    adapter: PublishAdapter,
    post_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SubmissionResult:
    """Create a post (or edit one still in review) and route it.

    Immediate posts and posts in workspaces without approvers are handed to the provider
    right away. Everything else is stored as ``pending_approval`` with an approval record.
    """

    now = now or _utcnow()
    member = require_membership(session, workspace_id, user_id)
    if not can_contribute(member):
        raise Forbidden("You don't have permission to create posts")

    clean = validate_draft(draft, now=now)
    if post_id:
        post = _edit_post(session, workspace_id=workspace_id, post_id=post_id, member=member, draft=clean)
        if post.approval.route == ROUTE_INTERNAL:
            return SubmissionResult(post=post, decision=policy.REQUIRE_INTERNAL_REVIEW, created=False)
        return SubmissionResult(post=post, decision=policy.REQUIRE_CLIENT_REVIEW, created=False)

    decision = policy.resolve(session, workspace_id, clean.scheduled_at is not None)

    if decision == policy.PUBLISH_IMMEDIATELY:
        workspace = get_workspace(session, workspace_id)
        require_publish_credential(session, workspace)
        post = Post(
            workspace_id=workspace_id,
            created_by=user_id,
            caption=clean.caption,
            scheduled_at=clean.scheduled_at,
            status=POST_PUBLISHING,
            approval_status=None,
            requires_approval=False,
        )
        post.platforms = clean.platforms
        post.media_urls = clean.media_urls
        session.add(post)
        session.commit()
        logger.info("post_submitted", post_id=post.id, workspace_id=workspace_id, decision=decision)
        publish_post(session, post, adapter=adapter, claim=False, now=now)
        return SubmissionResult(post=post, decision=decision, created=True)

    route = ROUTE_INTERNAL if decision == policy.REQUIRE_INTERNAL_REVIEW else ROUTE_CLIENT
    entry_status = route_entry_status(route)
    post = Post(
        workspace_id=workspace_id,
        created_by=user_id,
        caption=clean.caption,
        scheduled_at=clean.scheduled_at,
        status=POST_PENDING_APPROVAL,
        approval_status=entry_status,
        requires_approval=True,
    )
    post.platforms = clean.platforms
    post.media_urls = clean.media_urls
    session.add(post)
    session.flush()
    session.add(PostApproval(post_id=post.id, workspace_id=workspace_id, status=entry_status, route=route))
    record_workspace_event(
        session,
        workspace_id,
        "approval_requested",
        {"post_id": post.id, "stage": entry_status, "created_by": user_id, "platforms": clean.platforms},
    )
    session.commit()
    logger.info(
        "post_submitted",
        post_id=post.id,
        workspace_id=workspace_id,
        decision=decision,
        approval_status=entry_status,
    )
    return SubmissionResult(post=post, decision=decision, created=True)


def _edit_post(
    session: Session,
    *,
    workspace_id: str,
    post_id: str,
    member: WorkspaceMember,
    draft: PostDraft,
) -> Post:
    post = load_post(session, workspace_id, post_id)
    if post.created_by != member.user_id and not can_review_internal(member):
        raise Forbidden("You can only edit your own posts")

    approval = post.approval
    if approval is None or post.status in PUBLISHED_POST_STATUSES or post.status == POST_PUBLISHING:
        raise ConflictError("Published posts cannot be edited")
    if draft.scheduled_at is None:
        raise ValidationError("Posts in review must keep a scheduled date")

    current = canonicalize_approval_status(approval.status)
    if current == APPROVAL_APPROVED:
        raise ConflictError("Approved posts cannot be edited")

    entry_status = route_entry_status(approval.route)
    _transition(session, approval, current=current, target=entry_status, reviewer_id=None, reviewed_at=None)
    post.caption = draft.caption
    post.platforms = draft.platforms
    post.media_urls = draft.media_urls
    post.scheduled_at = draft.scheduled_at
    post.status = POST_PENDING_APPROVAL
    post.approval_status = entry_status
    record_workspace_event(
        session,
        workspace_id,
        "approval_requested",
        {"post_id": post.id, "stage": entry_status, "created_by": post.created_by, "edited_by": member.user_id},
    )
    session.commit()
    logger.info("post_updated_for_review", post_id=post.id, workspace_id=workspace_id, approval_status=entry_status)
    return post


def _may_take_action(member: WorkspaceMember, action: str) -> bool:
    """Whether the member could take ``action`` at any review stage."""

    if action == ACTION_MARK_RESOLVED:
        return can_contribute(member)
    return can_review_internal(member) or can_review_client(member)


def _authorize_action(member: WorkspaceMember, action: str, current: str) -> None:
    if action == ACTION_MARK_RESOLVED:
        allowed = can_contribute(member)
    elif current == APPROVAL_PENDING_INTERNAL:
        allowed = can_review_internal(member)
    else:
        allowed = can_review_client(member)
    if not allowed:
        raise Forbidden("You don't have permission to perform this action")


def apply_action(
    session: Session,
    *,
    workspace_id: str,
    post_id: str,
    user_id: str,
    action: str,
    adapter: PublishAdapter,
    comment: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ActionResult:
    """Apply one reviewer action to a post's approval record."""

    if action not in APPROVAL_ACTIONS:
        raise ValidationError(f"Invalid action. Must be one of: {', '.join(APPROVAL_ACTIONS)}")
    text = (comment or "").strip()
    if action in COMMENT_REQUIRED_ACTIONS and not text:
        raise ValidationError("A comment is required to reject a post or request changes")
    if len(text) > COMMENT_MAX_CHARS:
        raise ValidationError(f"Comment exceeds maximum length of {COMMENT_MAX_CHARS} characters")

    now = now or _utcnow()
    member = require_membership(session, workspace_id, user_id)
    # Members who cannot act at any stage must not learn the post's current stage.
    if not _may_take_action(member, action):
        raise Forbidden("You don't have permission to perform this action")
    post = load_post(session, workspace_id, post_id)
    approval = post.approval
    if approval is None:
        raise NotFound("Approval record not found")

    current = canonicalize_approval_status(approval.status)
    if (action, current) not in _TRANSITIONS:
        raise ConflictError(f"Cannot {action.replace('_', ' ')} a post that is {current.replace('_', ' ')}")
    _authorize_action(member, action, current)

    target = _TRANSITIONS[(action, current)] or route_entry_status(approval.route)
    if target == APPROVAL_APPROVED:
        require_publish_credential(session, get_workspace(session, workspace_id))

    _transition(session, approval, current=current, target=target, reviewer_id=user_id, reviewed_at=now)
    post.approval_status = target
    _append_system_comment(session, post, user_id, text or DEFAULT_ACTION_COMMENTS[action])
    record_workspace_event(
        session,
        workspace_id,
        _ACTION_EVENTS[action],
        {
            "post_id": post.id,
            "action": action,
            "stage": target,
            "actor_id": user_id,
            "created_by": post.created_by,
            "comment": text or None,
        },
    )
    session.commit()
    record_approval_transition(action=action)
    logger.info(
        "approval_transition_applied",
        post_id=post.id,
        workspace_id=workspace_id,
        action=action,
        from_status=current,
        to_status=target,
    )

    message = f"Post {_ACTION_MESSAGES[action]}"
    if target != APPROVAL_APPROVED:
        return ActionResult(post=post, approval_status=target, published=False, message=message)

    publish_post(session, post, adapter=adapter, now=now)
    return ActionResult(post=post, approval_status=target, published=True, message=message)


def retry_publish(
    session: Session,
    *,
    workspace_id: str,
    post_id: str,
    user_id: str,
    adapter: PublishAdapter,
    now: Optional[datetime] = None,
) -> Post:
    """Resubmit a post whose earlier publish attempt failed, without re-review."""

    member = require_membership(session, workspace_id, user_id)
    post = load_post(session, workspace_id, post_id)
    may_retry = has_capability(member, "can_approve_posts") or can_review_internal(member)
    if post.created_by != user_id and not may_retry:
        raise Forbidden("You don't have permission to retry this post")
    if post.status != POST_FAILED:
        raise ConflictError("Only failed posts can be retried")

    logger.info("publish_retry_requested", post_id=post.id, workspace_id=workspace_id, user_id=user_id)
    return publish_post(session, post, adapter=adapter, expected_statuses=(POST_FAILED,), now=now)


def delete_post(
    session: Session,
    *,
    workspace_id: str,
    user_id: str,
    adapter: PublishAdapter,
    post_id: Optional[str] = None,
    external_post_id: Optional[str] = None,
) -> DeleteResult:
    """Remove a post from the provider (best effort) and then from the local store.

    Deleting something that is already gone succeeds; a provider 404 counts as deleted.
    """

    if not post_id and not external_post_id:
        raise ValidationError("post_id or external_post_id is required")

    member = require_membership(session, workspace_id, user_id)
    if post_id:
        post = session.get(Post, post_id)
        if post is not None and post.workspace_id != workspace_id:
            raise NotFound("Post not found")
    else:
        post = session.scalar(
            select(Post).where(Post.workspace_id == workspace_id, Post.external_post_id == external_post_id)
        )

    is_creator = post is not None and post.created_by == user_id
    if not is_creator and not has_capability(member, "can_delete_posts"):
        raise Forbidden("Insufficient permissions. can_delete_posts required.")

    remote_id = external_post_id or (post.external_post_id if post is not None else None)
    provider_deleted = False
    provider_error: Optional[str] = None
    if remote_id:
        workspace = get_workspace(session, workspace_id)
        credential = (workspace.profile_key or "").strip()
        if not credential:
            provider_error = "Workspace has no publishing credential"
            logger.warning("provider_delete_skipped", workspace_id=workspace_id, external_post_id=remote_id)
        else:
            try:
                provider_deleted = adapter.delete(remote_id, credential)
            except WoozyError as exc:
                provider_error = exc.message
                logger.warning(
                    "provider_delete_failed",
                    workspace_id=workspace_id,
                    external_post_id=remote_id,
                    error=exc.message,
                )

    local_deleted = False
    deleted_id = post.id if post is not None else post_id
    if post is not None:
        session.delete(post)
        session.commit()
        local_deleted = True

    logger.info(
        "post_deleted",
        workspace_id=workspace_id,
        post_id=deleted_id,
        external_post_id=remote_id,
        local_deleted=local_deleted,
        provider_deleted=provider_deleted,
    )
    return DeleteResult(
        post_id=deleted_id,
        local_deleted=local_deleted,
        provider_deleted=provider_deleted,
        provider_error=provider_error,
    )


def add_comment(
    session: Session,
    *,
    workspace_id: str,
    post_id: str,
    user_id: str,
    text: str,
) -> PostComment:
    require_membership(session, workspace_id, user_id)
    post = load_post(session, workspace_id, post_id)
    body = (text or "").strip()
    if not body:
        raise ValidationError("Comment text is required")
    if len(body) > COMMENT_MAX_CHARS:
        raise ValidationError(f"Comment exceeds maximum length of {COMMENT_MAX_CHARS} characters")

    comment = PostComment(post_id=post.id, workspace_id=workspace_id, user_id=user_id, comment=body, is_system=False)
    session.add(comment)
    record_workspace_event(
        session,
        workspace_id,
        "comment_added",
        {"post_id": post.id, "author_id": user_id, "created_by": post.created_by},
    )
    session.commit()
    return comment


def get_approval_detail(
    session: Session,
    *,
    workspace_id: str,
    post_id: str,
    user_id: str,
) -> tuple[Post, Optional[PostApproval], list[PostComment]]:
    require_membership(session, workspace_id, user_id)
    post = load_post(session, workspace_id, post_id)
    comments = list(
        session.scalars(
            select(PostComment)
            .where(PostComment.post_id == post.id)
            .order_by(PostComment.created_at, PostComment.id)
        ).all()
    )
    return post, post.approval, comments


def list_pending_approvals(session: Session, *, workspace_id: str, user_id: str) -> list[Post]:
    """Posts waiting on a review stage the caller can act on."""

    member = require_membership(session, workspace_id, user_id)
    statuses: set[str] = set()
    if can_review_internal(member):
        statuses.add(APPROVAL_PENDING_INTERNAL)
    if can_review_client(member) or is_client_approver(member):
        statuses.update(PENDING_CLIENT_STATUSES)
    if can_contribute(member):
        statuses.add(APPROVAL_CHANGES_REQUESTED)
    if not statuses:
        return []

    return list(
        session.scalars(
            select(Post)
            .join(PostApproval, PostApproval.post_id == Post.id)
            .where(Post.workspace_id == workspace_id, PostApproval.status.in_(sorted(statuses)))
            .order_by(Post.scheduled_at, Post.created_at)
        ).all()
    )


def list_post_history(
    session: Session,
    *,
    workspace_id: str,
    user_id: str,
    status: Optional[str] = None,
    limit: int = 50,
) -> list[Post]:
    require_membership(session, workspace_id, user_id)
    query = select(Post).where(Post.workspace_id == workspace_id)
    if status:
        query = query.where(Post.status == status)
    query = query.order_by(Post.created_at.desc(), Post.id).limit(max(1, min(limit, 200)))
    return list(session.scalars(query).all())
