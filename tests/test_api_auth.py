"""API tests for tokens, users and service endpoints."""
import logging


class TestTokens:
    """Test issuing and revoking personal access tokens."""

    def test_issue_and_use(self, client, member):
        response = client.post("/api/v1/auth/token", json={"email": "tom@example.com", "name": "laptop"})
        assert response.status_code == 201

        body = response.json()
        assert body["token"].startswith("pm_")
        assert body["user"]["email"] == "tom@example.com"
        assert body["expires_at"] is not None

        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert me.status_code == 200
        assert me.json()["user"]["role"] == "team_member"

    def test_unknown_email(self, client, member):
        response = client.post("/api/v1/auth/token", json={"email": "nobody@example.com"})
        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"

    def test_malformed_header(self, client, member):
        response = client.get("/api/v1/auth/me", headers={"Authorization": "Token abc"})
        assert response.status_code == 401

    def test_logout_revokes(self, client, member, auth_headers):
        headers = auth_headers(member)
        assert client.post("/api/v1/auth/logout", headers=headers).status_code == 204
        assert client.get("/api/v1/auth/me", headers=headers).status_code == 401

    def test_logout_logs_under_router_name(self, client, member, auth_headers, caplog):
        caplog.set_level(logging.INFO, logger="pm-core.auth_api")
        client.post("/api/v1/auth/logout", headers=auth_headers(member))

        assert any(r.name == "pm-core.auth_api" and "logged out" in r.getMessage() for r in caplog.records)

    def test_inactive_user_rejected(self, client, db_session, member, auth_headers):
        headers = auth_headers(member)
        member.is_active = False
        db_session.commit()

        assert client.get("/api/v1/auth/me", headers=headers).status_code == 401
        assert client.post("/api/v1/auth/token", json={"email": "tom@example.com"}).status_code == 401


class TestUsers:
    """Test user listing and admin-only creation."""

    def test_list_with_role_filter(self, client, admin, manager, member, auth_headers):
        response = client.get("/api/v1/users/", params={"role": "project_manager"}, headers=auth_headers(member))
        assert response.status_code == 200
        assert [u["name"] for u in response.json()["users"]] == ["Paula Manager"]

    def test_admin_creates_user(self, client, admin, auth_headers):
        response = client.post(
            "/api/v1/users/",
            json={"name": "New Hire", "email": "new@example.com", "role": "team_member"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 201
        assert response.json()["user"]["role"] == "team_member"

    def test_non_admin_cannot_create(self, client, manager, auth_headers):
        response = client.post(
            "/api/v1/users/",
            json={"name": "New Hire", "email": "new@example.com", "role": "team_member"},
            headers=auth_headers(manager),
        )
        assert response.status_code == 403

    def test_duplicate_email(self, client, admin, member, auth_headers):
        response = client.post(
            "/api/v1/users/",
            json={"name": "Tom Again", "email": "tom@example.com", "role": "team_member"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 422

    def test_get_user(self, client, member, manager, auth_headers):
        response = client.get(f"/api/v1/users/{manager.id}", headers=auth_headers(member))
        assert response.status_code == 200
        assert response.json()["user"]["email"] == "pm@example.com"

        missing = client.get("/api/v1/users/00000000-0000-0000-0000-000000000000", headers=auth_headers(member))
        assert missing.status_code == 404


class TestServiceEndpoints:
    """Test root and health endpoints."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["version"] == "1.0.0"

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}
