from __future__ import annotations


def test_members_are_listed_with_effective_capabilities(api_client, seed, auth_headers) -> None:
    owner = seed.user("owner@acme.io", full_name="Olive Owner")
    client = seed.user("client@brand.io")
    workspace = seed.workspace(owner)
    seed.member(workspace, client, "viewer")

    response = api_client.get(f"/workspaces/{workspace.id}/members", headers=auth_headers(client))

    assert response.status_code == 200
    members = {item["user_id"]: item for item in response.json()["items"]}
    assert members[owner.id]["role"] == "owner"
    assert members[owner.id]["display_name"] == "Olive Owner"
    assert members[owner.id]["can_approve_posts"] is False
    assert members[client.id]["role"] == "view_only"
    assert members[client.id]["can_approve_posts"] is True
    assert members[client.id]["can_manage_team"] is False


def test_owner_can_turn_off_client_approval(api_client, seed, auth_headers) -> None:
    owner = seed.user("owner@acme.io")
    client = seed.user("client@brand.io")
    workspace = seed.workspace(owner)
    seed.member(workspace, client, "client")

    response = api_client.patch(
        f"/workspaces/{workspace.id}/members/{client.id}",
        json={"can_approve_posts": False},
        headers=auth_headers(owner),
    )

    assert response.status_code == 200
    assert response.json()["role"] == "client"
    assert response.json()["can_approve_posts"] is False

    promoted = api_client.patch(
        f"/workspaces/{workspace.id}/members/{client.id}",
        json={"role": "editor"},
        headers=auth_headers(owner),
    )
    assert promoted.status_code == 200
    assert promoted.json()["role"] == "editor"


def test_member_updates_are_guarded(api_client, seed, auth_headers) -> None:
    owner = seed.user("owner@acme.io")
    editor = seed.user("editor@acme.io")
    client = seed.user("client@brand.io")
    workspace = seed.workspace(owner)
    seed.member(workspace, editor, "editor")
    seed.member(workspace, client, "client")
    url = f"/workspaces/{workspace.id}/members/{client.id}"

    by_editor = api_client.patch(url, json={"can_approve_posts": False}, headers=auth_headers(editor))
    assert by_editor.status_code == 403
    assert by_editor.json()["error_code"] == "forbidden"

    to_owner = api_client.patch(url, json={"role": "owner"}, headers=auth_headers(owner))
    assert to_owner.status_code == 422

    demote_owner = api_client.patch(
        f"/workspaces/{workspace.id}/members/{owner.id}",
        json={"role": "admin"},
        headers=auth_headers(owner),
    )
    assert demote_owner.status_code == 422

    unknown_role = api_client.patch(url, json={"role": "superuser"}, headers=auth_headers(owner))
    assert unknown_role.status_code == 422

    missing = api_client.patch(
        f"/workspaces/{workspace.id}/members/nobody",
        json={"role": "editor"},
        headers=auth_headers(owner),
    )
    assert missing.status_code == 404


def test_leaving_a_workspace(api_client, seed, auth_headers) -> None:
    owner = seed.user("owner@acme.io")
    editor = seed.user("editor@acme.io")
    workspace = seed.workspace(owner)
    seed.member(workspace, editor, "editor")

    owner_leaves = api_client.post(f"/workspaces/{workspace.id}/leave", headers=auth_headers(owner))
    assert owner_leaves.status_code == 422

    editor_leaves = api_client.post(f"/workspaces/{workspace.id}/leave", headers=auth_headers(editor))
    assert editor_leaves.status_code == 200
    assert editor_leaves.json() == {"success": True, "workspace_id": workspace.id}

    after = api_client.get(f"/workspaces/{workspace.id}/members", headers=auth_headers(editor))
    assert after.status_code == 403


def test_routes_require_a_valid_token(api_client, seed) -> None:
    owner = seed.user("owner@acme.io")
    workspace = seed.workspace(owner)

    anonymous = api_client.get(f"/workspaces/{workspace.id}/members")
    garbage = api_client.get(
        f"/workspaces/{workspace.id}/members",
        headers={"Authorization": "Bearer not-a-token"},
    )

    assert anonymous.status_code == 401
    assert garbage.status_code == 401
