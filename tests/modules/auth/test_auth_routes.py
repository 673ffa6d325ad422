"""
Tests for registration, login and the current-user endpoint.
"""
from uuid import uuid4


class TestRegister:
    """Registration endpoint."""

    def test_register_inside_organisation(self, client, organisation):
        response = client.post(
            "/api/v1/auth/register",
            json={
                "email": "new.teacher@test.com",
                "password": "s3cret-pass",
                "full_name": "New Teacher",
                "organisation_id": str(organisation.id),
                "role": "teacher",
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["organisation_id"] == str(organisation.id)
        assert data["role_names"] == ["teacher"]
        assert "password" not in data

    def test_register_duplicate_email_fails(self, client, student_user):
        response = client.post(
            "/api/v1/auth/register",
            json={"email": student_user.email, "password": "whatever"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Email already registered"

    def test_register_unknown_organisation_fails(self, client):
        response = client.post(
            "/api/v1/auth/register",
            json={
                "email": "lost@test.com",
                "password": "whatever",
                "organisation_id": str(uuid4()),
            },
        )

        assert response.status_code == 404

    def test_register_invalid_body_is_bad_request(self, client):
        response = client.post("/api/v1/auth/register", json={"email": "not-an-email"})

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "Invalid request"
        assert data["details"]


class TestLogin:
    """Login and token usage."""

    def test_login_returns_bearer_token(self, client, student_user):
        response = client.post(
            "/api/v1/auth/login",
            data={"username": student_user.email, "password": "password123"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["access_token"]

    def test_login_wrong_password_fails(self, client, student_user):
        response = client.post(
            "/api/v1/auth/login",
            data={"username": student_user.email, "password": "nope"},
        )

        assert response.status_code == 400

    def test_me_returns_current_user(self, client, auth_headers, student_user):
        response = client.get("/api/v1/auth/me", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["email"] == student_user.email

    def test_me_without_token_is_unauthorized(self, client):
        response = client.get("/api/v1/auth/me")

        assert response.status_code == 401

    def test_me_with_garbage_token_is_unauthorized(self, client):
        response = client.get(
            "/api/v1/auth/me", headers={"Authorization": "Bearer not-a-token"}
        )

        assert response.status_code == 401
        assert response.json()["error"] == "Could not validate credentials"

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.status_code == 200
        assert response.headers["X-Request-ID"] == "req-123"
        assert response.json()["status"] == "ok"
