from __future__ import annotations

from datetime import datetime, timedelta, timezone

from woozy.core.config import get_settings


def _future(days: int = 2) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).replace(microsecond=0).isoformat()


def _draft(workspace_id=None, *, text="Weekend brunch menu is live", networks=("instagram",), scheduled=True) -> dict:
    body = {"text": text, "networks": list(networks), "media_urls": ["https://cdn.woozy.test/brunch.jpg"]}
    if workspace_id is not None:
        body["workspace_id"] = workspace_id
    if scheduled:
        body["scheduled_date"] = _future()
    return body


def test_owner_only_workspace_publishes_scheduled_post_directly(api_client, seed, ayrshare, auth_headers) -> None:
    owner = seed.user("owner@acme.io")
    workspace = seed.workspace(owner)

    response = api_client.post("/posts", json=_draft(workspace.id), headers=auth_headers(owner))

    assert response.status_code == 201
    body = response.json()
    assert body["decision"] == "publish_immediately"
    assert body["message"] == "Post submitted"
    assert body["post"]["status"] == "scheduled"
    assert body["post"]["requires_approval"] is False
    assert body["post"]["external_post_id"] == "ayr-post-1"
    assert len(ayrshare.submitted) == 1
    assert ayrshare.submitted[0]["profile_key"] == "profile-key-acme"


def test_client_reviews_and_approves_through_routes(api_client, seed, ayrshare, auth_headers) -> None:
    owner = seed.user("owner@acme.io")
    client = seed.user("client@brand.io")
    workspace = seed.workspace(owner)
    seed.member(workspace, client, "client")

    submitted = api_client.post("/posts", json=_draft(workspace.id), headers=auth_headers(owner))
    assert submitted.status_code == 201
    assert submitted.json()["decision"] == "require_client_review"
    assert submitted.json()["message"] == "Post sent for client approval"
    assert submitted.json()["post"]["approval_status"] == "pending_client"
    assert ayrshare.submitted == []
    post_id = submitted.json()["post"]["id"]

    pending = api_client.get(
        "/posts/pending-approvals",
        params={"workspace_id": workspace.id},
        headers=auth_headers(client),
    )
    assert pending.status_code == 200
    assert [item["id"] for item in pending.json()["items"]] == [post_id]

    approved = api_client.post(
        f"/posts/{post_id}/approval",
        json={"workspace_id": workspace.id, "action": "approve"},
        headers=auth_headers(client),
    )
    assert approved.status_code == 200
    assert approved.json()["approval_status"] == "approved"
    assert approved.json()["published"] is True
    assert approved.json()["post"]["status"] == "scheduled"
    assert len(ayrshare.submitted) == 1

    again = api_client.post(
        f"/posts/{post_id}/approval",
        json={"workspace_id": workspace.id, "action": "approve"},
        headers=auth_headers(client),
    )
    assert again.status_code == 409
    assert again.json()["error_code"] == "conflict"
    assert len(ayrshare.submitted) == 1


def test_changes_requested_edit_and_comments(api_client, seed, auth_headers) -> None:
    owner = seed.user("owner@acme.io")
    client = seed.user("client@brand.io", full_name="Cleo Client")
    workspace = seed.workspace(owner)
    seed.member(workspace, client, "client")
    post_id = api_client.post("/posts", json=_draft(workspace.id), headers=auth_headers(owner)).json()["post"]["id"]

    missing_comment = api_client.post(
        f"/posts/{post_id}/approval",
        json={"workspace_id": workspace.id, "action": "changes_requested"},
        headers=auth_headers(client),
    )
    assert missing_comment.status_code == 422

    changes = api_client.post(
        f"/posts/{post_id}/approval",
        json={"workspace_id": workspace.id, "action": "changes_requested", "comment": "Swap the photo"},
        headers=auth_headers(client),
    )
    assert changes.status_code == 200
    assert changes.json()["approval_status"] == "changes_requested"
    assert changes.json()["published"] is False

    note = api_client.post(
        f"/posts/{post_id}/comments",
        json={"workspace_id": workspace.id, "comment": "Use the latte shot instead"},
        headers=auth_headers(client),
    )
    assert note.status_code == 201
    assert note.json()["is_system"] is False

    edited = api_client.put(
        f"/posts/{post_id}",
        json=_draft(workspace.id, text="Weekend brunch menu, now with lattes"),
        headers=auth_headers(owner),
    )
    assert edited.status_code == 200
    assert edited.json()["message"] == "Post updated and sent back for review"
    assert edited.json()["post"]["approval_status"] == "pending_client"

    detail = api_client.get(
        f"/posts/{post_id}/approval",
        params={"workspace_id": workspace.id},
        headers=auth_headers(owner),
    )
    assert detail.status_code == 200
    assert detail.json()["approval_status"] == "pending_client"
    assert detail.json()["route"] == "client"
    comments = [item["comment"] for item in detail.json()["comments"]]
    assert "Swap the photo" in comments
    assert "Use the latte shot instead" in comments


def test_legacy_request_without_workspace_resolves_owned_workspace(api_client, seed, auth_headers) -> None:
    owner = seed.user("owner@acme.io")
    workspace = seed.workspace(owner)
    stranger = seed.user("stranger@acme.io")

    response = api_client.post("/posts", json=_draft(), headers=auth_headers(owner))
    assert response.status_code == 201
    assert response.json()["post"]["workspace_id"] == workspace.id

    refused = api_client.post("/posts", json=_draft(), headers=auth_headers(stranger))
    assert refused.status_code == 422
    assert refused.json()["message"] == "workspace_id is required"


def test_submission_validation_and_authentication(api_client, seed, auth_headers) -> None:
    owner = seed.user("owner@acme.io")
    workspace = seed.workspace(owner)

    unsupported = api_client.post(
        "/posts",
        json=_draft(workspace.id, networks=("myspace",)),
        headers=auth_headers(owner),
    )
    assert unsupported.status_code == 422
    assert unsupported.json()["error_code"] == "validation_error"
    assert unsupported.json()["message"] == "Unsupported platform: myspace"

    anonymous = api_client.post("/posts", json=_draft(workspace.id))
    assert anonymous.status_code == 401


def test_post_submission_is_rate_limited(monkeypatch, api_client, seed, ayrshare, auth_headers) -> None:
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "true")
    monkeypatch.setenv("POST_RATE_LIMIT_PER_MINUTE", "1")
    get_settings.cache_clear()
    owner = seed.user("owner@acme.io")
    workspace = seed.workspace(owner)

    first = api_client.post("/posts", json=_draft(workspace.id), headers=auth_headers(owner))
    second = api_client.post("/posts", json=_draft(workspace.id), headers=auth_headers(owner))

    assert first.status_code == 201
    assert second.status_code == 429
    assert second.json()["details"]["limit"] == 1
    assert int(second.headers["retry-after"]) > 0
    assert len(ayrshare.submitted) == 1


def test_failed_publish_is_listed_and_retried(api_client, seed, ayrshare, auth_headers) -> None:
    owner = seed.user("owner@acme.io")
    workspace = seed.workspace(owner)
    ayrshare.submit_response = {"status": "error", "errors": [{"message": "Instagram token expired"}]}

    failed = api_client.post("/posts", json=_draft(workspace.id), headers=auth_headers(owner))
    assert failed.status_code == 502
    assert failed.json()["error_code"] == "upstream_error"
    assert "Instagram token expired" in failed.json()["message"]

    history = api_client.get(
        "/posts/history",
        params={"workspace_id": workspace.id, "status": "failed"},
        headers=auth_headers(owner),
    )
    assert history.status_code == 200
    items = history.json()["items"]
    assert len(items) == 1
    assert items[0]["last_error"] == "Instagram token expired"

    ayrshare.submit_response = {"status": "success", "id": "ayr-post-2"}
    retried = api_client.post(
        f"/posts/{items[0]['id']}/retry",
        params={"workspace_id": workspace.id},
        headers=auth_headers(owner),
    )
    assert retried.status_code == 200
    assert retried.json()["status"] == "scheduled"
    assert retried.json()["external_post_id"] == "ayr-post-2"
    assert retried.json()["last_error"] is None


def test_delete_routes_by_id_and_external_id(api_client, seed, ayrshare, auth_headers) -> None:
    owner = seed.user("owner@acme.io")
    workspace = seed.workspace(owner)
    first = seed.post(workspace, owner, external_post_id="ayr-ext-1")
    seed.post(workspace, owner, external_post_id="ayr-ext-2")

    by_id = api_client.delete(
        f"/posts/{first.id}",
        params={"workspace_id": workspace.id},
        headers=auth_headers(owner),
    )
    assert by_id.status_code == 200
    assert by_id.json()["local_deleted"] is True
    assert by_id.json()["provider_deleted"] is True

    by_external = api_client.delete(
        "/posts/external/ayr-ext-2",
        params={"workspace_id": workspace.id},
        headers=auth_headers(owner),
    )
    assert by_external.status_code == 200
    assert by_external.json()["local_deleted"] is True

    ayrshare.delete_status = 404
    gone = api_client.delete(
        "/posts/external/ayr-ext-2",
        params={"workspace_id": workspace.id},
        headers=auth_headers(owner),
    )
    assert gone.status_code == 200
    assert gone.json()["local_deleted"] is False
    assert gone.json()["provider_deleted"] is False
    assert gone.json()["provider_error"] is None
    assert ayrshare.deleted == ["ayr-ext-1", "ayr-ext-2", "ayr-ext-2"]
