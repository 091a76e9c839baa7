from __future__ import annotations

import pytest
from sqlalchemy import func, select

from woozy.billing.provisioning import provision_development_profile, provision_workspace
from woozy.core.config import get_settings
from woozy.core.errors import Forbidden, NotFound, UpstreamError
from woozy.publishing.ayrshare_client import AyrshareAPIError
from woozy.storage.models import Workspace, WorkspaceMember
from woozy.workspaces.service import effective_subscription_status, is_publish_eligible


def test_allowlisted_account_gets_active_workspace_once(monkeypatch, seed, session, ayrshare) -> None:
    monkeypatch.setenv("ALLOWLISTED_EMAILS", "Dev@Woozy.io, qa@woozy.io")
    get_settings.cache_clear()
    user = seed.user("dev@woozy.io", subscription_status="inactive")

    workspace, created = provision_development_profile(session, user_id=user.id, profiles=ayrshare)
    again, created_again = provision_development_profile(session, user_id=user.id, profiles=ayrshare)

    assert created is True
    assert created_again is False
    assert again.id == workspace.id
    assert workspace.name == "My Business"
    assert workspace.profile_key == "profile-key-1"
    assert workspace.subscription_tier == "agency"
    assert user.subscription_status == "active"
    assert user.is_allowlisted is True
    assert ayrshare.profiles_created == ["My Business"]
    assert is_publish_eligible(session, workspace) is True

    owner_rows = session.scalar(
        select(func.count()).select_from(WorkspaceMember).where(WorkspaceMember.role == "owner")
    )
    assert owner_rows == 1


def test_non_allowlisted_account_is_refused(seed, session, ayrshare) -> None:
    user = seed.user("someone@acme.io")

    with pytest.raises(Forbidden):
        provision_development_profile(session, user_id=user.id, profiles=ayrshare)
    with pytest.raises(NotFound):
        provision_development_profile(session, user_id="missing-user", profiles=ayrshare)
    assert ayrshare.profiles_created == []


def test_profile_creation_failure_leaves_no_workspace(seed, session, ayrshare) -> None:
    user = seed.user("buyer@acme.io")
    ayrshare.profile_error = AyrshareAPIError("Failed to connect to social posting service")

    with pytest.raises(UpstreamError):
        provision_workspace(session, user=user, tier="pro", workspace_name="Acme", profiles=ayrshare)

    assert session.scalar(select(func.count()).select_from(Workspace)) == 0


def test_workspace_without_status_inherits_owner_status(seed, session) -> None:
    owner = seed.user("legacy@acme.io", subscription_status="past_due")
    workspace = seed.workspace(owner, subscription_status=None)

    assert effective_subscription_status(session, workspace) == "past_due"
    assert is_publish_eligible(session, workspace) is False

    owner.subscription_status = "active"
    session.commit()
    assert is_publish_eligible(session, workspace) is True

    workspace.profile_key = "   "
    session.commit()
    assert is_publish_eligible(session, workspace) is False


def test_provision_profile_route(monkeypatch, api_client, seed, ayrshare, auth_headers) -> None:
    monkeypatch.setenv("ALLOWLISTED_EMAILS", "dev@woozy.io")
    get_settings.cache_clear()
    developer = seed.user("dev@woozy.io", subscription_status="inactive")
    outsider = seed.user("outsider@acme.io")

    response = api_client.post(
        "/billing/provision-profile",
        json={"workspace_name": "Dev Sandbox"},
        headers=auth_headers(developer),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["created"] is True
    assert body["profile_key_present"] is True
    assert body["subscription_status"] == "active"
    assert body["subscription_tier"] == "agency"
    assert ayrshare.profiles_created == ["Dev Sandbox"]

    refused = api_client.post("/billing/provision-profile", json={}, headers=auth_headers(outsider))
    assert refused.status_code == 403
