"""Gated publishing: the only code path that hands a post to the provider."""

from __future__ import annotations

from datetime import datetime, timezone
import json
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from woozy.approvals.states import (
    APPROVAL_APPROVED,
    POST_FAILED,
    POST_PENDING_APPROVAL,
    POST_POSTED,
    POST_PUBLISHING,
    PUBLISHED_POST_STATUSES,
    canonicalize_approval_status,
)
from woozy.core.errors import ConflictError, WoozyError
from woozy.core.logger import get_logger
from woozy.core.metrics import record_publish_outcome
from woozy.publishing.adapter import PublishAdapter
from woozy.storage.models import Post, WorkspaceEvent
from woozy.workspaces.service import get_workspace, require_publish_credential


CLAIMABLE_STATUSES = (POST_PENDING_APPROVAL, POST_FAILED)

logger = get_logger("woozy.publishing")


def record_workspace_event(session: Session, workspace_id: str, event_type: str, payload: Dict[str, Any]) -> None:
    session.add(
        WorkspaceEvent(
            workspace_id=workspace_id,
            event_type=event_type,
            payload_json=json.dumps(payload, sort_keys=True, default=str),
        )
    )


def ensure_publishable(session: Session, post: Post) -> None:
    """Refuse posts that still wait for review or already reached the provider."""

    if post.status in PUBLISHED_POST_STATUSES:
        raise ConflictError("Post has already been published")

    approval = post.approval
    if approval is not None and canonicalize_approval_status(approval.status) != APPROVAL_APPROVED:
        raise ConflictError("Post must be approved before it can be published")


def _claim(session: Session, post: Post, expected: Iterable[str]) -> None:
    result = session.execute(
        update(Post)
        .where(Post.id == post.id, Post.status.in_(tuple(expected)))
        .values(status=POST_PUBLISHING)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        session.rollback()
        raise ConflictError("Post is already being published")
    session.commit()


def publish_post(
    session: Session,
    post: Post,
    *,
    adapter: PublishAdapter,
    claim: bool = True,
    expected_statuses: Iterable[str] = CLAIMABLE_STATUSES,
    now: Optional[datetime] = None,
) -> Post:
    """Submit ``post`` and record the outcome on it.

    With ``claim`` the post is first moved to ``publishing`` by a conditional update so
    that two concurrent callers cannot both reach the provider. On failure the post is
    stored as ``failed`` with the provider message and the error is re-raised.
    """

    ensure_publishable(session, post)
    workspace = get_workspace(session, post.workspace_id)
    credential = require_publish_credential(session, workspace)

    if claim:
        _claim(session, post, expected_statuses)

    try:
        outcome = adapter.submit(post, credential, now=now)
    except WoozyError as exc:
        post.status = POST_FAILED
        post.last_error = exc.message
        post.external_post_id = None
        record_workspace_event(
            session,
            post.workspace_id,
            "post_publish_failed",
            {"post_id": post.id, "created_by": post.created_by, "error": exc.message},
        )
        session.commit()
        record_publish_outcome(status=POST_FAILED)
        logger.warning(
            "publish_submission_failed",
            post_id=post.id,
            workspace_id=post.workspace_id,
            error=exc.message,
        )
        raise

    post.status = outcome.final_status
    post.external_post_id = outcome.external_id
    post.last_error = None
    if outcome.final_status == POST_POSTED:
        post.posted_at = now or datetime.now(timezone.utc)
    session.commit()
    record_publish_outcome(status=outcome.final_status)
    logger.info(
        "publish_submission_succeeded",
        post_id=post.id,
        workspace_id=post.workspace_id,
        external_post_id=outcome.external_id,
        status=outcome.final_status,
    )
    return post
