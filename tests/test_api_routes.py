"""
tests/test_api_routes.py -- Integration tests for the REST and WebSocket surface.

These tests exercise the full stack: FastAPI routing -> auth dependency injection
-> services -> UserStore/VaultStore -> response model serialization. Unit tests
of the services live in test_*_service.py; here the interest is the HTTP
contract: status codes, error envelopes, hashid addressing, admin gating.

Coverage:
  - OAuth2: password grant, invalid grant, unsupported grant, revoke
  - Auth failures: 401 without or with a revoked token, 403 for non-admins
  - Keys: create/list/get/update/delete, own encrypted copy, subscribers
  - Categories: create, tree moves, 409 on cycles, hidden category is 403
  - Groups and users: membership, registration, activation, password reset
  - Identifiers: 400 on a malformed hashid
  - WebSocket: bad token rejected, good token accepted

Fixtures used (from conftest.py):
  - api_client: (client, token, uid) -- TestClient with the admin "testadmin"
  - api_user:   factory creating extra users with their own bearer headers
The client is module scoped, so each test uses its own names.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

TEST_PASSWORD = "testpass123"


def _admin(api_client) -> tuple[TestClient, dict[str, str]]:
    client, token, _uid = api_client
    return client, {"Authorization": f"Bearer {token}"}


class TestOAuth:
    def test_password_grant(self, api_client, api_user) -> None:
        client, _token, _uid = api_client
        api_user("oauth.user")
        resp = client.post(
            "/oauth/token",
            data={"grant_type": "password", "username": "oauth.user", "password": TEST_PASSWORD},
        )
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["token_type"] == "bearer"
        assert body["expires_in"] > 0
        assert resp.headers["Cache-Control"] == "no-store"

        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
        assert me.status_code == 200
        assert me.json()["login"] == "oauth.user"

    def test_password_grant_by_email(self, api_client, api_user) -> None:
        client, _token, _uid = api_client
        api_user("mailer")
        resp = client.post(
            "/oauth/token",
            data={"grant_type": "password", "username": "mailer@example.com", "password": TEST_PASSWORD},
        )
        assert resp.status_code == 200

    def test_invalid_grant(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/oauth/token",
            data={"grant_type": "password", "username": "testadmin", "password": "wrong-password"},
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_grant"

    def test_unsupported_grant(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/oauth/token",
            data={"grant_type": "client_credentials", "username": "testadmin", "password": TEST_PASSWORD},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "unsupported_grant_type"

    def test_revoke_invalidates_token(self, api_client, api_user) -> None:
        client, _token, _uid = api_client
        _user, headers = api_user("revoker")
        assert client.post("/oauth/revoke", headers=headers).status_code == 204
        assert client.get("/api/v1/auth/me", headers=headers).status_code == 401


class TestAuthFailures:
    @pytest.mark.parametrize(
        "method,path",
        [
            ("get", "/api/v1/auth/me"),
            ("get", "/api/v1/keys"),
            ("get", "/api/v1/categories"),
            ("get", "/api/v1/groups"),
            ("get", "/api/v1/users"),
        ],
    )
    def test_unauthenticated(self, api_client, method: str, path: str) -> None:
        client, _token, _uid = api_client
        resp = getattr(client, method)(path)
        assert resp.status_code == 401
        assert resp.headers.get("WWW-Authenticate") == "Bearer"

    def test_garbage_token(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not.a.jwt"})
        assert resp.status_code == 401

    @pytest.mark.parametrize(
        "login,path",
        [("plain.groups", "/api/v1/groups"), ("plain.users", "/api/v1/users"), ("plain.auth", "/api/v1/authorities")],
    )
    def test_admin_only(self, api_client, api_user, login: str, path: str) -> None:
        client, _token, _uid = api_client
        _user, headers = api_user(login)
        resp = client.get(path, headers=headers)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"


class TestKeyRoutes:
    def test_key_lifecycle(self, api_client) -> None:
        client, headers = _admin(api_client)
        created = client.post(
            "/api/v1/keys",
            json={
                "name": "mail server",
                "login": "postmaster",
                "encrypted_passwords": [{"login": "testadmin", "encrypted_password": "CIPHER"}],
            },
            headers=headers,
        )
        assert created.status_code == 201, created.text
        key = created.json()
        assert key["creator"] == "testadmin"
        assert key["category"] is None
        assert not key["id"].isdigit()

        listed = client.get("/api/v1/keys", headers=headers).json()
        assert key["id"] in {k["id"] for k in listed}

        copy = client.get(f"/api/v1/keys/{key['id']}/password", headers=headers)
        assert copy.status_code == 200
        assert copy.json()["encrypted_password"] == "CIPHER"

        updated = client.put(
            f"/api/v1/keys/{key['id']}",
            json={"name": "mail server", "notes": "rotated", "encrypted_passwords": []},
            headers=headers,
        )
        assert updated.status_code == 200
        assert updated.json()["notes"] == "rotated"
        assert client.get(f"/api/v1/keys/{key['id']}/password", headers=headers).status_code == 404

        assert client.delete(f"/api/v1/keys/{key['id']}", headers=headers).status_code == 204
        assert client.get(f"/api/v1/keys/{key['id']}", headers=headers).status_code == 404

    def test_foreign_uncategorized_key_is_forbidden(self, api_client, api_user) -> None:
        client, headers = _admin(api_client)
        key = client.post("/api/v1/keys", json={"name": "admin only"}, headers=headers).json()
        _user, user_headers = api_user("snoop")
        resp = client.get(f"/api/v1/keys/{key['id']}", headers=user_headers)
        assert resp.status_code == 403
        assert key["id"] not in {k["id"] for k in client.get("/api/v1/keys", headers=user_headers).json()}

    def test_copy_for_user_without_access_rejected(self, api_client, api_user) -> None:
        client, headers = _admin(api_client)
        api_user("outsider")
        resp = client.post(
            "/api/v1/keys",
            json={"name": "rejected", "encrypted_passwords": [{"login": "outsider", "encrypted_password": "X"}]},
            headers=headers,
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "key_not_accessible"

    def test_duplicate_recipients_rejected(self, api_client) -> None:
        """Two copies for one login are a validation error, on create and on update."""
        client, headers = _admin(api_client)
        twice = [
            {"login": "testadmin", "encrypted_password": "A"},
            {"login": "testadmin", "encrypted_password": "B"},
        ]
        resp = client.post("/api/v1/keys", json={"name": "twice", "encrypted_passwords": twice}, headers=headers)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

        key = client.post("/api/v1/keys", json={"name": "once"}, headers=headers).json()
        resp = client.put(
            f"/api/v1/keys/{key['id']}", json={"name": "once", "encrypted_passwords": twice}, headers=headers
        )
        assert resp.status_code == 422
        assert client.get(f"/api/v1/keys/{key['id']}/password", headers=headers).status_code == 404

    def test_non_admin_cannot_delete(self, api_client, api_user) -> None:
        client, _headers = _admin(api_client)
        _user, user_headers = api_user("deleter")
        key = client.post("/api/v1/keys", json={"name": "own key"}, headers=user_headers).json()
        assert client.delete(f"/api/v1/keys/{key['id']}", headers=user_headers).status_code == 403

    def test_malformed_hashid(self, api_client) -> None:
        client, headers = _admin(api_client)
        resp = client.get("/api/v1/keys/!!notanid!!", headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_identifier"

    def test_subscribers(self, api_client, api_user) -> None:
        client, headers = _admin(api_client)
        _user, user_headers = api_user("subscriber")
        client.put("/api/v1/users/me/public-key", json={"public_key": "PK-SUB"}, headers=user_headers)
        key = client.post("/api/v1/keys", json={"name": "subscribed"}, headers=user_headers).json()
        subs = client.get(f"/api/v1/keys/{key['id']}/subscribers", headers=headers)
        assert subs.status_code == 200
        assert {"login": "subscriber", "public_key": "PK-SUB"} in subs.json()


class TestCategoryAndGroupRoutes:
    def test_shared_category_flow(self, api_client, api_user) -> None:
        """Group membership makes a category and its keys visible; leaving hides them."""
        client, headers = _admin(api_client)
        _user, member_headers = api_user("member")

        group = client.post("/api/v1/groups", json={"name": "net-ops"}, headers=headers).json()
        client.post(f"/api/v1/groups/{group['id']}/users", json={"login": "member"}, headers=headers)
        category = client.post("/api/v1/categories", json={"name": "routers"}, headers=headers).json()
        assert category["tree_level"] == 0
        resp = client.post(
            f"/api/v1/categories/{category['id']}/groups", json={"group_id": group["id"]}, headers=headers
        )
        assert resp.json()["groups"] == [group["id"]]

        key = client.post(
            "/api/v1/keys",
            json={
                "name": "core-router",
                "category": category["id"],
                "encrypted_passwords": [{"login": "member", "encrypted_password": "M"}],
            },
            headers=member_headers,
        )
        assert key.status_code == 201, key.text
        key_id = key.json()["id"]
        assert client.get(f"/api/v1/categories/{category['id']}", headers=member_headers).status_code == 200
        keys = client.get(f"/api/v1/categories/{category['id']}/keys", headers=member_headers).json()
        assert [k["id"] for k in keys] == [key_id]

        removed = client.delete(f"/api/v1/groups/{group['id']}/users/member", headers=headers)
        assert removed.status_code == 200
        assert removed.json()["users"] == []
        assert client.get(f"/api/v1/keys/{key_id}", headers=member_headers).status_code == 403
        assert client.get(f"/api/v1/categories/{category['id']}", headers=member_headers).status_code == 403

    def test_tree_moves(self, api_client) -> None:
        client, headers = _admin(api_client)
        top = client.post("/api/v1/categories", json={"name": "top"}, headers=headers).json()
        child = client.post("/api/v1/categories", json={"name": "child", "parent": top["id"]}, headers=headers).json()
        assert child["tree_level"] == 1
        assert child["parent"] == top["id"]

        cycle = client.put(f"/api/v1/categories/{top['id']}/move", json={"parent": child["id"]}, headers=headers)
        assert cycle.status_code == 409

        moved = client.put(f"/api/v1/categories/{child['id']}/move", json={"parent": None}, headers=headers)
        assert moved.status_code == 200
        assert moved.json()["tree_level"] == 0

    def test_hidden_and_unknown_categories_look_alike(self, api_client, api_user) -> None:
        """Non-admins get 403 for both; only admins learn that an id does not exist."""
        client, headers = _admin(api_client)
        _user, user_headers = api_user("browser")
        hidden = client.post("/api/v1/categories", json={"name": "hidden"}, headers=headers).json()
        unknown = client.app.state.codec.encode(987654)
        for category_id in (hidden["id"], unknown):
            for suffix in ("children", "keys"):
                resp = client.get(f"/api/v1/categories/{category_id}/{suffix}", headers=user_headers)
                assert resp.status_code == 403
                assert resp.json()["error"]["code"] == "forbidden"
        assert client.get(f"/api/v1/categories/{unknown}/children", headers=headers).status_code == 404

    def test_non_admin_cannot_create_category(self, api_client, api_user) -> None:
        client, _headers = _admin(api_client)
        _user, user_headers = api_user("catmaker")
        resp = client.post("/api/v1/categories", json={"name": "nope"}, headers=user_headers)
        assert resp.status_code == 403

    def test_duplicate_group(self, api_client) -> None:
        client, headers = _admin(api_client)
        client.post("/api/v1/groups", json={"name": "dupes"}, headers=headers)
        resp = client.post("/api/v1/groups", json={"name": "dupes"}, headers=headers)
        assert resp.status_code == 409

    def test_missing_group(self, api_client) -> None:
        client, headers = _admin(api_client)
        resp = client.get("/api/v1/groups/987654", headers=headers)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"


class TestUserRoutes:
    def test_register_activate_login(self, api_client) -> None:
        client, headers = _admin(api_client)
        resp = client.post(
            "/api/v1/users/register",
            json={"email": "newbie@example.com", "password": "newbie-pass"},
            headers=headers,
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["login"] == "newbie"
        assert body["activated"] is False
        assert body["activation_key"]

        denied = client.post(
            "/oauth/token",
            data={"grant_type": "password", "username": "newbie", "password": "newbie-pass"},
        )
        assert denied.status_code == 401

        activated = client.get("/api/v1/users/activate", params={"activation_key": body["activation_key"]})
        assert activated.status_code == 200
        assert activated.json()["activated"] is True

        granted = client.post(
            "/oauth/token",
            data={"grant_type": "password", "username": "newbie", "password": "newbie-pass"},
        )
        assert granted.status_code == 200

    def test_anonymous_registration_disabled(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/v1/users/register", json={"email": "anon@example.com", "password": "anon-pass"})
        assert resp.status_code == 403

    def test_duplicate_registration(self, api_client, api_user) -> None:
        client, headers = _admin(api_client)
        api_user("taken")
        resp = client.post(
            "/api/v1/users/register",
            json={"email": "taken@example.com", "password": "whatever-pass"},
            headers=headers,
        )
        assert resp.status_code == 409

    def test_password_reset(self, api_client, api_user) -> None:
        client, headers = _admin(api_client)
        api_user("forgetful")
        issued = client.post("/api/v1/users/reset_password", json={"email": "forgetful@example.com"}, headers=headers)
        assert issued.status_code == 200
        reset_key = issued.json()["reset_key"]
        done = client.put("/api/v1/users/reset_password", json={"reset_key": reset_key, "password": "remembered"})
        assert done.status_code == 204
        token = client.post(
            "/oauth/token",
            data={"grant_type": "password", "username": "forgetful", "password": "remembered"},
        )
        assert token.status_code == 200

    def test_deactivate_logs_user_out(self, api_client, api_user) -> None:
        client, headers = _admin(api_client)
        _user, user_headers = api_user("leaver")
        resp = client.get("/api/v1/users/deactivate", params={"login": "leaver"}, headers=headers)
        assert resp.status_code == 200
        assert client.get("/api/v1/auth/me", headers=user_headers).status_code == 401

    def test_user_can_read_self_only(self, api_client, api_user) -> None:
        client, _headers = _admin(api_client)
        _user, user_headers = api_user("selfish")
        assert client.get("/api/v1/users/selfish", headers=user_headers).status_code == 200
        assert client.get("/api/v1/users/testadmin", headers=user_headers).status_code == 403

    def test_update_authorities(self, api_client, api_user) -> None:
        client, headers = _admin(api_client)
        api_user("promoted")
        resp = client.put(
            "/api/v1/users/promoted/authorities", json=["ROLE_ADMIN", "ROLE_USER"], headers=headers
        )
        assert resp.status_code == 200
        assert resp.json()["authorities"] == ["ROLE_ADMIN", "ROLE_USER"]

    def test_delete_user(self, api_client, api_user) -> None:
        client, headers = _admin(api_client)
        api_user("doomed")
        assert client.delete("/api/v1/users/doomed", headers=headers).status_code == 204
        assert client.get("/api/v1/users/doomed", headers=headers).status_code == 404

    def test_authorities_listing(self, api_client) -> None:
        client, headers = _admin(api_client)
        resp = client.get("/api/v1/authorities", headers=headers)
        assert resp.status_code == 200
        assert resp.json() == ["ROLE_ADMIN", "ROLE_USER"]


class TestUpdatesChannel:
    def test_invalid_token_is_rejected(self, api_client) -> None:
        client, _token, _uid = api_client
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws/updates?access_token=bogus"):
                pass
        assert exc_info.value.code == 1008

    def test_valid_token_is_accepted(self, api_client) -> None:
        client, token, _uid = api_client
        with client.websocket_connect(f"/ws/updates?access_token={token}") as ws:
            ws.send_text("ping")
