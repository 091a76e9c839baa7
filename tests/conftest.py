from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import woozy.api.main as api_main
from woozy.auth.jwt import AuthContext, create_access_token
from woozy.billing.plans import load_plans
from woozy.core.config import get_settings
from woozy.core.metrics import reset_metrics_for_tests
from woozy.core.rate_limit import get_rate_limiter
from woozy.publishing.adapter import PublishAdapter, get_publish_adapter
from woozy.publishing.ayrshare_client import AyrshareAPIError, get_ayrshare_client
from woozy.storage.db import Base, get_session, load_models
from woozy.storage.models import Post, User, Workspace, WorkspaceMember
from woozy.workspaces.service import create_workspace_with_owner


TEST_SECRET_KEY = "woozy-test-secret-key-0123456789abcdef"


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch):
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("SECRET_KEY", TEST_SECRET_KEY)
    monkeypatch.setenv("PLANS_FILE_PATH", "config/plans.yaml")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
    monkeypatch.setenv("SENTRY_DSN", "")
    monkeypatch.setenv("APP_URL", "https://app.woozy.test")
    get_settings.cache_clear()
    load_plans.cache_clear()
    get_rate_limiter.cache_clear()
    reset_metrics_for_tests()
    yield
    get_settings.cache_clear()
    load_plans.cache_clear()
    get_rate_limiter.cache_clear()


class FakeAyrshare:
    """In-memory replacement for AyrshareClient that records every call."""

    is_configured = True

    def __init__(self) -> None:
        self.submit_response: Dict[str, Any] = {"status": "success", "id": "ayr-post-1"}
        self.submit_error: Optional[Exception] = None
        self.delete_status = 200
        self.profile_error: Optional[Exception] = None
        self.submitted: List[Dict[str, Any]] = []
        self.deleted: List[str] = []
        self.profiles_created: List[str] = []

    def submit_post(self, payload: Dict[str, Any], *, profile_key: str) -> Dict[str, Any]:
        self.submitted.append({"payload": payload, "profile_key": profile_key})
        if self.submit_error is not None:
            raise self.submit_error
        return dict(self.submit_response)

    def delete_post(self, external_id: str, *, profile_key: str) -> Dict[str, Any]:
        del profile_key
        self.deleted.append(external_id)
        if self.delete_status >= 400:
            raise AyrshareAPIError(
                f"ayrshare_request_failed status={self.delete_status}",
                status_code=self.delete_status,
                payload={"status": "error", "message": "Post not found" if self.delete_status == 404 else "Provider down"},
            )
        return {"status": "success", "id": external_id}

    def get_history(self, *, profile_key: str, last_records: int = 50) -> List[Dict[str, Any]]:
        del profile_key, last_records
        return []

    def create_profile(self, *, title: str):
        if self.profile_error is not None:
            raise self.profile_error
        self.profiles_created.append(title)
        number = len(self.profiles_created)
        return f"profile-key-{number}", f"ref-{number}"


@dataclass
class Seeder:
    session: Session

    def user(
        self,
        email: str,
        *,
        full_name: Optional[str] = None,
        subscription_status: str = "active",
        **fields: Any,
    ) -> User:
        user = User(email=email, full_name=full_name, subscription_status=subscription_status, **fields)
        self.session.add(user)
        self.session.commit()
        return user

    def workspace(
        self,
        owner: User,
        *,
        name: str = "Acme Studio",
        profile_key: Optional[str] = "profile-key-acme",
        subscription_status: Optional[str] = "active",
    ) -> Workspace:
        workspace = create_workspace_with_owner(self.session, owner=owner, name=name, subscription_tier="pro")
        workspace.profile_key = profile_key
        workspace.subscription_status = subscription_status
        self.session.commit()
        return workspace

    def member(self, workspace: Workspace, user: User, role: str, **flags: Optional[bool]) -> WorkspaceMember:
        member = WorkspaceMember(workspace_id=workspace.id, user_id=user.id, role=role, **flags)
        self.session.add(member)
        self.session.commit()
        return member

    def post(
        self,
        workspace: Workspace,
        author: User,
        *,
        caption: str = "Fresh bagels every morning",
        status: str = "posted",
        external_post_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> Post:
        post = Post(
            workspace_id=workspace.id,
            created_by=author.id,
            caption=caption,
            status=status,
            external_post_id=external_post_id,
            created_at=created_at or datetime.now(timezone.utc),
        )
        post.platforms = ["facebook"]
        post.media_urls = []
        self.session.add(post)
        self.session.commit()
        return post


def bearer(user: User) -> Dict[str, str]:
    token, _ = create_access_token(AuthContext(user_id=user.id, email=user.email))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def session_factory():
    load_models()
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture()
def session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def seed(session) -> Seeder:
    return Seeder(session)


@pytest.fixture()
def ayrshare() -> FakeAyrshare:
    return FakeAyrshare()


@pytest.fixture()
def adapter(ayrshare) -> PublishAdapter:
    return PublishAdapter(ayrshare)


@pytest.fixture()
def auth_headers():
    return bearer


@pytest.fixture()
def api_client(session_factory, ayrshare):
    def override_get_session():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    api_main.app.dependency_overrides[get_session] = override_get_session
    api_main.app.dependency_overrides[get_publish_adapter] = lambda: PublishAdapter(ayrshare)
    api_main.app.dependency_overrides[get_ayrshare_client] = lambda: ayrshare
    try:
        yield TestClient(api_main.app)
    finally:
        api_main.app.dependency_overrides.clear()
