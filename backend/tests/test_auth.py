"""
Authentication, authorization and app-level HTTP behaviour.

Verifies:
- Login issues a JWT that authenticates later requests
- Missing, tampered and expired tokens return 401
- Role checks return 403
- CORS headers only for configured origins
- Unknown routes and wrong methods answer in JSON
"""

from datetime import timedelta

import jwt
import pytest

from nexus.services import auth_service
from nexus.services.auth_service import validate_password_strength, PasswordValidationError
from nexus.time_utils import utcnow


TEST_PASSWORD = "Password123!"


class TestLogin:

    def test_login_returns_token(self, client, manager_user):
        resp = client.post("/api/auth/login", json={"email": "MANAGER@nexus.test", "password": TEST_PASSWORD})

        assert resp.status_code == 200
        assert resp.json["user"]["role"] == "manager"

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {resp.json['token']}"})
        assert me.status_code == 200
        assert me.json["email"] == "manager@nexus.test"

    def test_wrong_password(self, client, manager_user):
        resp = client.post("/api/auth/login", json={"email": "manager@nexus.test", "password": "Wrong123!"})
        assert resp.status_code == 401
        assert resp.json["error"] == "Invalid credentials"

    def test_inactive_user(self, client, db_session, manager_user):
        manager_user.is_active = False
        db_session.commit()

        resp = client.post("/api/auth/login", json={"email": "manager@nexus.test", "password": TEST_PASSWORD})
        assert resp.status_code == 401

    def test_missing_fields(self, client, db_session):
        resp = client.post("/api/auth/login", json={"email": "manager@nexus.test"})
        assert resp.status_code == 400


class TestTokens:

    @pytest.mark.parametrize("path", ["/api/orders", "/api/stock", "/api/purchase-orders", "/api/audit-logs", "/api/auth/me"])
    def test_missing_token(self, client, db_session, path):
        resp = client.get(path)
        assert resp.status_code == 401
        assert resp.json["error"] == "Unauthorized: Missing or invalid token"

    def test_tampered_token(self, client, manager_headers):
        headers = {"Authorization": manager_headers["Authorization"] + "x"}
        resp = client.get("/api/orders", headers=headers)
        assert resp.status_code == 401
        assert resp.json["error"] == "Unauthorized: Invalid token"

    def test_expired_token(self, app, client, manager_user):
        past = utcnow() - timedelta(hours=2)
        token = jwt.encode(
            {"sub": str(manager_user.id), "iat": past, "exp": past + timedelta(hours=1)},
            app.config["JWT_SECRET"],
            algorithm="HS256",
        )
        resp = client.get("/api/orders", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_deactivated_user_token_rejected(self, client, db_session, manager_user, manager_headers):
        manager_user.is_active = False
        db_session.commit()

        resp = client.get("/api/orders", headers=manager_headers)
        assert resp.status_code == 401


class TestRoles:

    def test_audit_logs_admin_only(self, client, admin_headers, manager_headers):
        assert client.get("/api/audit-logs", headers=manager_headers).status_code == 403
        resp = client.get("/api/audit-logs", headers=admin_headers)
        assert resp.status_code == 200
        assert isinstance(resp.json, list)


class TestPasswords:

    @pytest.mark.parametrize("password", ["Short1!", "alllower123!", "ALLUPPER123!", "NoDigits!!", "NoSpecial123"])
    def test_weak_passwords_rejected(self, password):
        with pytest.raises(PasswordValidationError):
            validate_password_strength(password)

    def test_hash_round_trip(self, password_hash):
        assert auth_service.verify_password(TEST_PASSWORD, password_hash)
        assert not auth_service.verify_password("Password124!", password_hash)
        assert not auth_service.verify_password(TEST_PASSWORD, "not-a-bcrypt-hash")


class TestAppBehaviour:

    def test_health(self, client, setup_roles):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"

    def test_health_degraded_without_roles(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "degraded"

    def test_cors_for_allowed_origin(self, client, db_session):
        resp = client.get("/api/health", headers={"Origin": "http://localhost:5173"})
        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"
        assert "Authorization" in resp.headers["Access-Control-Allow-Headers"]

    def test_no_cors_for_unknown_origin(self, client, db_session):
        resp = client.get("/api/health", headers={"Origin": "https://evil.example"})
        assert "Access-Control-Allow-Origin" not in resp.headers

    def test_unknown_route_is_json_404(self, client, db_session):
        resp = client.get("/api/nope")
        assert resp.status_code == 404
        assert "error" in resp.json

    def test_wrong_method_is_json_405(self, client, manager_headers):
        resp = client.delete("/api/orders", headers=manager_headers)
        assert resp.status_code == 405
        assert "error" in resp.json
