"""Post intake and approval workflow routes."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from woozy.approvals.service import (
    PostDraft,
    add_comment,
    apply_action,
    delete_post,
    get_approval_detail,
    list_pending_approvals,
    list_post_history,
    retry_publish,
    submit_post,
)
from woozy.approvals.states import canonicalize_approval_status
from woozy.auth.dependencies import require_auth_context
from woozy.auth.jwt import AuthContext
from woozy.core.config import get_settings
from woozy.core.logger import bind_workspace
from woozy.core.rate_limit import enforce_rate_limit
from woozy.publishing.adapter import PublishAdapter, get_publish_adapter
from woozy.schemas.posts import (
    ApprovalActionRequest,
    ApprovalActionResponse,
    ApprovalDetailResponse,
    CommentCreateRequest,
    CommentResponse,
    PostDeleteResponse,
    PostListResponse,
    PostResponse,
    PostSubmitRequest,
    PostSubmitResponse,
)
from woozy.storage.db import get_session
from woozy.storage.models import Post, PostComment
from woozy.workspaces.service import resolve_workspace_id


router = APIRouter(prefix="/posts", tags=["posts"])

_DECISION_MESSAGES = {
    "publish_immediately": "Post submitted",
    "require_internal_review": "Post sent for internal review",
    "require_client_review": "Post sent for client approval",
}


def _scope(session: Session, auth: AuthContext, workspace_id: Optional[str]) -> str:
    resolved = resolve_workspace_id(session, workspace_id=workspace_id, user_id=auth.user_id)
    bind_workspace(resolved)
    return resolved


def _post_response(post: Post) -> PostResponse:
    return PostResponse(
        id=post.id,
        workspace_id=post.workspace_id,
        created_by=post.created_by,
        caption=post.caption,
        platforms=post.platforms,
        media_urls=post.media_urls,
        scheduled_at=post.scheduled_at,
        status=post.status,
        approval_status=post.approval_status,
        requires_approval=bool(post.requires_approval),
        external_post_id=post.external_post_id,
        last_error=post.last_error,
        posted_at=post.posted_at,
        created_at=post.created_at,
    )


def _comment_response(comment: PostComment) -> CommentResponse:
    return CommentResponse(
        id=comment.id,
        post_id=comment.post_id,
        user_id=comment.user_id,
        comment=comment.comment,
        is_system=bool(comment.is_system),
        created_at=comment.created_at,
    )


def _submit(
    session: Session,
    auth: AuthContext,
    adapter: PublishAdapter,
    payload: PostSubmitRequest,
    post_id: Optional[str] = None,
) -> PostSubmitResponse:
    enforce_rate_limit(
        action="post",
        identifier=auth.user_id,
        limit=get_settings().post_rate_limit_per_minute,
    )
    workspace_id = _scope(session, auth, payload.workspace_id)
    result = submit_post(
        session,
        workspace_id=workspace_id,
        user_id=auth.user_id,
        draft=PostDraft(
            caption=payload.text,
            platforms=payload.networks,
            media_urls=payload.media_urls,
            scheduled_at=payload.scheduled_date,
        ),
        adapter=adapter,
        post_id=post_id,
    )
    message = _DECISION_MESSAGES[result.decision]
    if not result.created:
        message = "Post updated and sent back for review"
    return PostSubmitResponse(decision=result.decision, post=_post_response(result.post), message=message)


@router.post("", response_model=PostSubmitResponse, status_code=201)
def submit_post_endpoint(
    payload: PostSubmitRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
    adapter: PublishAdapter = Depends(get_publish_adapter),
) -> PostSubmitResponse:
    return _submit(session, auth, adapter, payload)


@router.put("/{post_id}", response_model=PostSubmitResponse)
def update_post_endpoint(
    post_id: str,
    payload: PostSubmitRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
    adapter: PublishAdapter = Depends(get_publish_adapter),
) -> PostSubmitResponse:
    return _submit(session, auth, adapter, payload, post_id=post_id)


@router.get("/history", response_model=PostListResponse)
def post_history_endpoint(
    workspace_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> PostListResponse:
    resolved = _scope(session, auth, workspace_id)
    posts = list_post_history(session, workspace_id=resolved, user_id=auth.user_id, status=status, limit=limit)
    return PostListResponse(workspace_id=resolved, items=[_post_response(post) for post in posts])


@router.get("/pending-approvals", response_model=PostListResponse)
def pending_approvals_endpoint(
    workspace_id: Optional[str] = None,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> PostListResponse:
    resolved = _scope(session, auth, workspace_id)
    posts = list_pending_approvals(session, workspace_id=resolved, user_id=auth.user_id)
    return PostListResponse(workspace_id=resolved, items=[_post_response(post) for post in posts])


@router.get("/{post_id}/approval", response_model=ApprovalDetailResponse)
def approval_detail_endpoint(
    post_id: str,
    workspace_id: Optional[str] = None,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> ApprovalDetailResponse:
    resolved = _scope(session, auth, workspace_id)
    post, approval, comments = get_approval_detail(
        session,
        workspace_id=resolved,
        post_id=post_id,
        user_id=auth.user_id,
    )
    return ApprovalDetailResponse(
        post=_post_response(post),
        approval_status=canonicalize_approval_status(approval.status) if approval else None,
        route=approval.route if approval else None,
        reviewer_id=approval.reviewer_id if approval else None,
        reviewed_at=approval.reviewed_at if approval else None,
        comments=[_comment_response(comment) for comment in comments],
    )


@router.post("/{post_id}/approval", response_model=ApprovalActionResponse)
def approval_action_endpoint(
    post_id: str,
    payload: ApprovalActionRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
    adapter: PublishAdapter = Depends(get_publish_adapter),
) -> ApprovalActionResponse:
    resolved = _scope(session, auth, payload.workspace_id)
    result = apply_action(
        session,
        workspace_id=resolved,
        post_id=post_id,
        user_id=auth.user_id,
        action=payload.action,
        comment=payload.comment,
        adapter=adapter,
    )
    return ApprovalActionResponse(
        approval_status=result.approval_status,
        published=result.published,
        message=result.message,
        post=_post_response(result.post),
    )


@router.post("/{post_id}/comments", response_model=CommentResponse, status_code=201)
def add_comment_endpoint(
    post_id: str,
    payload: CommentCreateRequest,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
) -> CommentResponse:
    resolved = _scope(session, auth, payload.workspace_id)
    comment = add_comment(
        session,
        workspace_id=resolved,
        post_id=post_id,
        user_id=auth.user_id,
        text=payload.comment,
    )
    return _comment_response(comment)


@router.post("/{post_id}/retry", response_model=PostResponse)
def retry_post_endpoint(
    post_id: str,
    workspace_id: Optional[str] = None,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
    adapter: PublishAdapter = Depends(get_publish_adapter),
) -> PostResponse:
    resolved = _scope(session, auth, workspace_id)
    post = retry_publish(session, workspace_id=resolved, post_id=post_id, user_id=auth.user_id, adapter=adapter)
    return _post_response(post)


@router.delete("/external/{external_post_id}", response_model=PostDeleteResponse)
def delete_external_post_endpoint(
    external_post_id: str,
    workspace_id: Optional[str] = None,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
    adapter: PublishAdapter = Depends(get_publish_adapter),
) -> PostDeleteResponse:
    resolved = _scope(session, auth, workspace_id)
    result = delete_post(
        session,
        workspace_id=resolved,
        user_id=auth.user_id,
        external_post_id=external_post_id,
        adapter=adapter,
    )
    return PostDeleteResponse(
        post_id=result.post_id,
        local_deleted=result.local_deleted,
        provider_deleted=result.provider_deleted,
        provider_error=result.provider_error,
    )


@router.delete("/{post_id}", response_model=PostDeleteResponse)
def delete_post_endpoint(
    post_id: str,
    workspace_id: Optional[str] = None,
    auth: AuthContext = Depends(require_auth_context),
    session: Session = Depends(get_session),
    adapter: PublishAdapter = Depends(get_publish_adapter),
) -> PostDeleteResponse:
    resolved = _scope(session, auth, workspace_id)
    result = delete_post(session, workspace_id=resolved, user_id=auth.user_id, post_id=post_id, adapter=adapter)
    return PostDeleteResponse(
        post_id=result.post_id,
        local_deleted=result.local_deleted,
        provider_deleted=result.provider_deleted,
        provider_error=result.provider_error,
    )
