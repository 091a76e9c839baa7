"""Pydantic schemas for workspace membership API."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class MemberResponse(BaseModel):
    user_id: str
    email: Optional[str] = None
    display_name: str
    role: str
    can_manage_team: bool
    can_manage_settings: bool
    can_delete_posts: bool
    can_approve_posts: bool
    joined_at: Optional[datetime] = None


class MemberListResponse(BaseModel):
    workspace_id: str
    items: List[MemberResponse]


class MemberUpdateRequest(BaseModel):
    role: Optional[str] = None
    can_manage_team: Optional[bool] = None
    can_manage_settings: Optional[bool] = None
    can_delete_posts: Optional[bool] = None
    can_approve_posts: Optional[bool] = None


class LeaveWorkspaceResponse(BaseModel):
    success: bool = True
    workspace_id: str
