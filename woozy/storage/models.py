"""SQLAlchemy ORM models for workspaces, the approval workflow and billing state."""

from __future__ import annotations

from datetime import datetime, timezone
import json
from typing import Optional
import uuid

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from woozy.storage.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """Account profile. Subscription fields are the legacy per-user billing model."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    subscription_status: Mapped[str] = mapped_column(String(32), nullable=False, default="inactive")
    subscription_tier: Mapped[str] = mapped_column(String(32), nullable=False, default="free")
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    workspace_add_ons: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_allowlisted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or "User"


class Workspace(Base):
    __tablename__ = "workspaces"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    owner_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    # Publishing credential: the provider profile key scoped to this workspace.
    profile_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    profile_ref_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    subscription_tier: Mapped[str] = mapped_column(String(32), nullable=False, default="free")
    # NULL means the workspace predates per-workspace billing and inherits its owner's status.
    subscription_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_from_payment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    members: Mapped[list[WorkspaceMember]] = relationship(
        "WorkspaceMember",
        back_populates="workspace",
        cascade="all, delete-orphan",
    )
    owner: Mapped[Optional[User]] = relationship("User")


class WorkspaceMember(Base):
    """Membership row. Capability columns are explicit overrides; NULL means the role default."""

    __tablename__ = "workspace_members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    workspace_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="editor")
    can_manage_team: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    can_manage_settings: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    can_delete_posts: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    can_approve_posts: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    workspace: Mapped[Workspace] = relationship("Workspace", back_populates="members")
    user: Mapped[User] = relationship("User")

    __table_args__ = (
        UniqueConstraint("workspace_id", "user_id", name="uq_workspace_members_workspace_user"),
        Index(
            "uq_workspace_members_single_owner",
            "workspace_id",
            unique=True,
            sqlite_where=text("role = 'owner'"),
            postgresql_where=text("role = 'owner'"),
        ),
        Index("ix_workspace_members_user", "user_id"),
    )


class Post(Base):
    __tablename__ = "posts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    workspace_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    created_by: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    caption: Mapped[str] = mapped_column(Text, nullable=False)
    media_urls_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    platforms_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending_approval")
    # Read-only projection of post_approvals.status, written only by the approval service.
    approval_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    external_post_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    posted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    approval: Mapped[Optional[PostApproval]] = relationship(
        "PostApproval",
        back_populates="post",
        uselist=False,
        cascade="all, delete-orphan",
    )
    comments: Mapped[list[PostComment]] = relationship(
        "PostComment",
        back_populates="post",
        order_by="PostComment.created_at",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_posts_workspace_created_at", "workspace_id", "created_at"),
        Index("ix_posts_workspace_approval_status", "workspace_id", "approval_status"),
        Index("ix_posts_external_post_id", "external_post_id"),
    )

    @property
    def media_urls(self) -> list[str]:
        return [str(item) for item in json.loads(self.media_urls_json or "[]")]

    @media_urls.setter
    def media_urls(self, value: list[str]) -> None:
        self.media_urls_json = json.dumps(list(value))

    @property
    def platforms(self) -> list[str]:
        return [str(item) for item in json.loads(self.platforms_json or "[]")]

    @platforms.setter
    def platforms(self, value: list[str]) -> None:
        self.platforms_json = json.dumps(list(value))


class PostApproval(Base):
    __tablename__ = "post_approvals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    post_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("posts.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    workspace_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    # Review path chosen at intake ("internal" or "client"); fixed for the post's lifetime.
    route: Mapped[str] = mapped_column(String(16), nullable=False)
    reviewer_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    post: Mapped[Post] = relationship("Post", back_populates="approval")

    __table_args__ = (Index("ix_post_approvals_workspace_status", "workspace_id", "status"),)


class PostComment(Base):
    __tablename__ = "post_comments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    post_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("posts.id", ondelete="CASCADE"),
        nullable=False,
    )
    workspace_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    comment: Mapped[str] = mapped_column(Text, nullable=False)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    post: Mapped[Post] = relationship("Post", back_populates="comments")

    __table_args__ = (Index("ix_post_comments_post_created_at", "post_id", "created_at"),)


class WorkspaceEvent(Base):
    """Notification outbox row consumed by the external notifier."""

    __tablename__ = "workspace_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    workspace_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    __table_args__ = (Index("ix_workspace_events_workspace_created_at", "workspace_id", "created_at"),)


class StripeEvent(Base):
    __tablename__ = "stripe_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    event_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(String(80), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    workspace_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("workspaces.id", ondelete="SET NULL"),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="received")
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    attempted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    __table_args__ = (Index("ix_stripe_events_created_at", "created_at"),)


class ReconciliationTask(Base):
    """Provider profile created remotely whose local workspace write failed."""

    __tablename__ = "reconciliation_tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    kind: Mapped[str] = mapped_column(String(64), nullable=False, default="orphaned_provider_profile")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="open")
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    workspace_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    stripe_event_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    profile_key: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    profile_ref_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    __table_args__ = (Index("ix_reconciliation_tasks_status_created_at", "status", "created_at"),)
