# tests/test_auth_rate_limit.py
"""
Tests for admin-key auth, bearer identities and rate limiting.

They use monkeypatch to control the auth module's settings (a test admin key and
a very small rate limit) so they don't interfere with other tests.
"""
import pytest
from fastapi.testclient import TestClient

from aether.app import app
from aether import auth as authmod
from aether.auth import InMemoryFixedWindowLimiter, credential_key, hash_password, verify_password
from aether.errors import AuthError


@pytest.fixture
def client(fresh_db):
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture(autouse=True)
def setup_auth(monkeypatch):
    """Configure auth for testing: a test admin key and a small rate limit."""
    monkeypatch.setattr(authmod, "ADMIN_API_KEYS", {"test-key-123"})
    monkeypatch.setattr(authmod, "RATE_LIMIT_ENABLED", True)
    limiter = InMemoryFixedWindowLimiter(limit_per_minute=3)
    monkeypatch.setattr(authmod, "_rate_limiter", limiter)
    yield


def test_credential_key_is_sanitized():
    assert credential_key("  Night Owl!! ") == "nightowl@" + authmod.CREDENTIAL_DOMAIN
    with pytest.raises(AuthError):
        credential_key("!!!")


def test_password_hash_roundtrip():
    stored = hash_password("secret-pw")
    assert stored.startswith("pbkdf2_sha256$")
    assert verify_password("secret-pw", stored)
    assert not verify_password("other-pw", stored)
    assert not verify_password("secret-pw", "garbage")


def test_weak_password_rejected(client):
    r = client.post("/api/auth/register", json={"handle": "owl", "password": "123"})
    assert r.status_code == 401
    assert r.json()["error_code"] == "E_AUTH"


def test_missing_admin_key_rejected(client):
    r = client.delete("/api/admin/requests")
    assert r.status_code == 401
    assert r.json()["error_code"] == "E_UNAUTHORIZED"


def test_valid_admin_key_accepted(client):
    r = client.delete("/api/admin/requests", headers={"x-admin-key": "test-key-123"})
    assert r.status_code == 200
    assert r.json() == {"status": "success", "deleted": 0}


def test_admin_routes_not_rate_limited(client):
    headers = {"x-admin-key": "test-key-123"}
    for _ in range(5):
        assert client.delete("/api/admin/reports", headers=headers).status_code == 200


def test_rate_limit_enforced(client):
    headers = {"x-client-id": "device-1"}
    # 3 allowed, 4th should be 429
    for i in range(3):
        r = client.post("/api/speak", headers=headers, json={"text": f"req {i}"})
        assert r.status_code == 401, f"Request {i+1} should reach the endpoint"

    r4 = client.post("/api/speak", headers=headers, json={"text": "req 4"})
    assert r4.status_code == 429
    assert r4.json().get("error_code") == "E_RATE_LIMIT"
    assert "Retry-After" in r4.headers


def test_rate_limit_resets_in_new_window(client):
    """Verify rate limit resets after crossing the minute window boundary."""
    headers = {"x-client-id": "device-1"}

    for i in range(3):
        client.post("/api/speak", headers=headers, json={"text": f"req {i}"})
    r = client.post("/api/speak", headers=headers, json={"text": "blocked"})
    assert r.status_code == 429

    # Force the stored window to an old minute so next request sees a new window
    limiter = authmod._rate_limiter
    with limiter._lock:
        for key in limiter._store:
            old_window, count = limiter._store[key]
            limiter._store[key] = (old_window - 2, count)

    r = client.post("/api/speak", headers=headers, json={"text": "after reset"})
    assert r.status_code == 401


def test_reads_not_rate_limited(client):
    for _ in range(5):
        assert client.get("/api/requests/pending/count").status_code == 200


def test_health_not_rate_limited(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
