"""Pydantic schemas for post intake and the approval workflow."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class PostSubmitRequest(BaseModel):
    workspace_id: Optional[str] = Field(default=None, max_length=36)
    text: str = Field(min_length=1)
    networks: List[str] = Field(min_length=1)
    media_urls: List[str] = Field(default_factory=list)
    scheduled_date: Optional[datetime] = None


class PostResponse(BaseModel):
    id: str
    workspace_id: str
    created_by: Optional[str] = None
    caption: str
    platforms: List[str]
    media_urls: List[str]
    scheduled_at: Optional[datetime] = None
    status: str
    approval_status: Optional[str] = None
    requires_approval: bool
    external_post_id: Optional[str] = None
    last_error: Optional[str] = None
    posted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class PostSubmitResponse(BaseModel):
    success: bool = True
    decision: str
    post: PostResponse
    message: str


class ApprovalActionRequest(BaseModel):
    workspace_id: Optional[str] = Field(default=None, max_length=36)
    action: str
    comment: Optional[str] = Field(default=None, max_length=2000)


class ApprovalActionResponse(BaseModel):
    success: bool = True
    approval_status: str
    published: bool
    message: str
    post: PostResponse


class CommentCreateRequest(BaseModel):
    workspace_id: Optional[str] = Field(default=None, max_length=36)
    comment: str = Field(min_length=1, max_length=2000)


class CommentResponse(BaseModel):
    id: str
    post_id: str
    user_id: Optional[str] = None
    comment: str
    is_system: bool
    created_at: Optional[datetime] = None


class ApprovalDetailResponse(BaseModel):
    post: PostResponse
    approval_status: Optional[str] = None
    route: Optional[str] = None
    reviewer_id: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    comments: List[CommentResponse]


class PostListResponse(BaseModel):
    workspace_id: str
    items: List[PostResponse]


class PostDeleteResponse(BaseModel):
    success: bool = True
    post_id: Optional[str] = None
    local_deleted: bool
    provider_deleted: bool
    provider_error: Optional[str] = None
