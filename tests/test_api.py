"""
Tests for the MFA REST API.

Covers:
- Enrollment start and confirmation
- Challenge issuance
- Verification status codes (200 / 400 / 429)
- Session headers and factor ownership
- Error handlers and security headers
"""
import pytest
import pyotp
from unittest.mock import MagicMock
from fastapi.testclient import TestClient
from pydantic import SecretStr
from sqlalchemy.exc import SQLAlchemyError

from totpgate.api.main import app
from totpgate.api.deps import get_engine, get_store
from totpgate.auth.models import Challenge, FactorConfig, FactorKind
from totpgate.database.mfa_db import MFADB


# ============================================
# Test Fixtures
# ============================================

@pytest.fixture
def client(store, engine):
    """Test client wired to the in-memory store and a pinned clock."""
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_engine] = lambda: engine

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def headers(session):
    return {
        "X-User-ID": session.user_id,
        "X-Session-ID": session.session_id,
    }


def factor_url(config, action):
    return f"/mfa/factors/{config.config_id}/{action}"


# ============================================
# Enrollment Tests
# ============================================

class TestEnrollEndpoint:
    """Test POST /mfa/totp/enroll."""

    def test_start_enrollment(self, client, headers):
        response = client.post("/mfa/totp/enroll", json={}, headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["enrolled"] is False
        assert data["provenance"] == "generated"
        assert len(data["secret"]) == 32
        assert data["provisioning_uri"].startswith("otpauth://totp/")
        assert data["secret"] in data["provisioning_uri"]
        assert data["qr_code_base64"].startswith("data:image/png;base64,")
        assert data["error"] is None

    def test_account_name_in_uri(self, client, headers):
        response = client.post(
            "/mfa/totp/enroll", json={"account_name": "alice@example.com"}, headers=headers
        )
        assert "alice" in response.json()["provisioning_uri"]

    def test_confirm_enrollment(self, client, headers, store, session, clock):
        secret = client.post("/mfa/totp/enroll", json={}, headers=headers).json()["secret"]
        code = pyotp.TOTP(secret).at(int(clock.now))

        response = client.post(
            "/mfa/totp/enroll",
            json={"secret": secret, "code": code, "factor_name": "Work phone"},
            headers=headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["enrolled"] is True
        assert data["factor_name"] == "Work phone"
        assert data["secret"] is None
        config = store.get_config(data["config_id"])
        assert config.user_id == session.user_id

    def test_wrong_code_returns_same_secret(self, client, headers, clock):
        secret = client.post("/mfa/totp/enroll", json={}, headers=headers).json()["secret"]
        code = pyotp.TOTP(secret).at(int(clock.now))
        wrong = "000000" if code != "000000" else "111111"

        response = client.post(
            "/mfa/totp/enroll", json={"secret": secret, "code": wrong}, headers=headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["enrolled"] is False
        assert data["error"] == "Invalid"
        assert data["secret"] == secret
        assert data["provenance"] == "verified"

    def test_planted_secret_replaced(self, client, headers):
        planted = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"
        response = client.post("/mfa/totp/enroll", json={"secret": planted}, headers=headers)

        data = response.json()
        assert data["provenance"] == "generated"
        assert data["secret"] != planted

    def test_session_required(self, client):
        response = client.post("/mfa/totp/enroll", json={})
        assert response.status_code == 401
        assert response.json()["detail"] == "Session required"


# ============================================
# Challenge Tests
# ============================================

class TestChallengeEndpoint:
    """Test POST /mfa/factors/{id}/challenges."""

    def test_issue_challenge(self, client, headers, config):
        response = client.post(factor_url(config, "challenges"), headers=headers)

        assert response.status_code == 200
        (challenge,) = response.json()
        assert challenge["timestep"] == 1000
        assert challenge["expires_at"] == 1000 * 30 + 90
        assert challenge["workflow_key"] == "login"

    def test_second_issue_returns_empty(self, client, headers, config):
        client.post(factor_url(config, "challenges"), headers=headers)
        response = client.post(factor_url(config, "challenges"), headers=headers)
        assert response.json() == []

    def test_workflow_header(self, client, headers, config):
        response = client.post(
            factor_url(config, "challenges"),
            headers={**headers, "X-Workflow-Key": "settings"},
        )
        assert response.json()[0]["workflow_key"] == "settings"

    def test_unknown_factor(self, client, headers):
        response = client.post("/mfa/factors/does-not-exist/challenges", headers=headers)
        assert response.status_code == 404

    def test_foreign_factor(self, client, config):
        response = client.post(
            factor_url(config, "challenges"),
            headers={"X-User-ID": "someone-else", "X-Session-ID": "sess-x"},
        )
        assert response.status_code == 404
        assert response.json()["detail"] == "Factor not found"


# ============================================
# Verification Tests
# ============================================

class TestVerifyEndpoint:
    """Test POST /mfa/factors/{id}/verify."""

    def test_correct_code(self, client, headers, config, code_at):
        response = client.post(
            factor_url(config, "verify"), json={"code": code_at(1000)}, headers=headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["timestep"] == 1000
        assert len(data["response_token"]) == 32

    def test_wrong_code(self, client, headers, config, code_at):
        wrong = next(c for c in ("000000", "111111") if c not in {code_at(s) for s in (999, 1000, 1001)})
        response = client.post(factor_url(config, "verify"), json={"code": wrong}, headers=headers)

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid"

    def test_missing_code(self, client, headers, config):
        response = client.post(factor_url(config, "verify"), json={}, headers=headers)

        assert response.status_code == 400
        assert response.json()["detail"] == "Required"

    def test_replay_must_wait(self, client, headers, config, code_at):
        url = factor_url(config, "verify")
        client.post(url, json={"code": code_at(1000)}, headers=headers)

        response = client.post(url, json={"code": code_at(1000)}, headers=headers)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "91"
        assert "may not be reused" in response.json()["detail"]

    def test_response_token_reconfirms(self, client, headers, config, code_at):
        url = factor_url(config, "verify")
        first = client.post(url, json={"code": code_at(1000)}, headers=headers).json()

        response = client.post(url, json={"response_token": first["response_token"]}, headers=headers)

        assert response.status_code == 200
        assert response.json()["challenge_id"] == first["challenge_id"]

    def test_other_session_must_wait(self, client, headers, config, code_at):
        client.post(factor_url(config, "challenges"), headers=headers)

        response = client.post(
            factor_url(config, "verify"),
            json={"code": code_at(1000)},
            headers={**headers, "X-Session-ID": "sess-attacker"},
        )

        assert response.status_code == 429
        assert "different login session" in response.json()["detail"]

    def test_code_too_long(self, client, headers, config):
        response = client.post(
            factor_url(config, "verify"), json={"code": "1" * 17}, headers=headers
        )

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_ledger_error_is_internal_error(self, store, engine, headers, config, session, code_at):
        for index in range(2):
            store.save_challenge(Challenge(
                challenge_id=f"ch-{index}",
                config_id=config.config_id,
                user_id=config.user_id,
                session_id=session.session_id,
                workflow_key=session.workflow_key,
                challenge_key=1000,
                challenge_ttl=1000 * 30 + 90,
                created_at=1000 * 30,
            ))
        app.dependency_overrides[get_store] = lambda: store
        app.dependency_overrides[get_engine] = lambda: engine
        try:
            client = TestClient(app, raise_server_exceptions=False)
            response = client.post(
                factor_url(config, "verify"), json={"code": code_at(1000)}, headers=headers
            )
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        assert response.json()["code"] == "LEDGER_ERROR"

    def test_malformed_secret_is_internal_error(self, store, engine, headers, session):
        config = FactorConfig(
            config_id="cfg-short-secret",
            user_id=session.user_id,
            factor_kind=FactorKind.TOTP,
            factor_name="Mobile App (TOTP)",
            secret=SecretStr("A"),
            created_at=1000 * 30,
        )
        store.save_config(config)
        app.dependency_overrides[get_store] = lambda: store
        app.dependency_overrides[get_engine] = lambda: engine
        try:
            client = TestClient(app, raise_server_exceptions=False)
            response = client.post(factor_url(config, "verify"), json={"code": "599598"}, headers=headers)
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 500
        assert response.json()["code"] == "SECRET_DECODE_ERROR"


# ============================================
# Completion Tests
# ============================================

class TestCompleteEndpoint:
    """Test POST /mfa/factors/{id}/complete."""

    def test_complete_then_token_rejected(self, client, headers, config, code_at):
        token = client.post(
            factor_url(config, "verify"), json={"code": code_at(1000)}, headers=headers
        ).json()["response_token"]

        response = client.post(
            factor_url(config, "complete"), json={"response_token": token}, headers=headers
        )
        assert response.status_code == 204

        again = client.post(
            factor_url(config, "verify"), json={"response_token": token}, headers=headers
        )
        assert again.status_code == 429

    def test_complete_without_answer(self, client, headers, config):
        response = client.post(
            factor_url(config, "complete"), json={"response_token": "nope"}, headers=headers
        )
        assert response.status_code == 400


# ============================================
# Health / Middleware Tests
# ============================================

class TestHealthAndHeaders:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "store" in data["services"]
        assert data["services"]["ledger_locks"] == "process-local"

    def test_health_checks_database(self):
        mock_db = MagicMock(spec=MFADB)
        app.dependency_overrides[get_store] = lambda: mock_db
        try:
            response = TestClient(app).get("/health")
        finally:
            app.dependency_overrides.clear()

        assert response.json()["status"] == "healthy"
        assert response.json()["services"]["database"].startswith("healthy")
        mock_db.get_session.assert_called_once()

    def test_health_reports_database_failure(self):
        mock_db = MagicMock(spec=MFADB)
        mock_db.get_session.side_effect = SQLAlchemyError("connection refused")
        app.dependency_overrides[get_store] = lambda: mock_db
        try:
            response = TestClient(app).get("/health")
        finally:
            app.dependency_overrides.clear()

        data = response.json()
        assert data["status"] == "unhealthy"
        assert "connection refused" in data["services"]["database"]

    def test_security_headers_present(self, client):
        response = client.get("/health")

        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["Cache-Control"] == "no-store"
        assert "X-Request-ID" in response.headers

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
