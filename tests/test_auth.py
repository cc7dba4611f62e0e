"""
Tests for authentication
"""
import pytest
from datetime import datetime, timedelta
from unittest.mock import patch, Mock
from vibephoto.auth import (
    API_KEY_PREFIX,
    authenticate_api_key,
    create_access_token,
    generate_api_key,
    get_password_hash,
    hash_api_key,
    verify_password,
    verify_token,
)
from vibephoto.db.models import User, ApiKey


class TestPasswordHashing:
    """bcrypt hashing"""

    def test_hash_and_verify(self):
        hashed = get_password_hash("correct horse battery")
        assert hashed.startswith("$2")
        assert verify_password("correct horse battery", hashed) is True
        assert verify_password("wrong password", hashed) is False

    def test_long_password(self):
        password = "x" * 100
        hashed = get_password_hash(password)
        assert verify_password(password, hashed) is True
        assert verify_password("x" * 99, hashed) is False

    def test_empty_password(self):
        with pytest.raises(ValueError):
            get_password_hash("")
        assert verify_password("", "$2b$04$whatever") is False


class TestTokens:
    """JWT access tokens"""

    def test_round_trip(self):
        payload = verify_token(create_access_token({"sub": "user-123"}))
        assert payload["sub"] == "user-123"
        assert "jti" in payload

    def test_expired_token(self):
        token = create_access_token({"sub": "user-123"}, expires_delta=timedelta(seconds=-1))
        assert verify_token(token) is None

    def test_garbage_token(self):
        assert verify_token("not-a-jwt") is None


class TestApiKeys:
    """Personal API keys"""

    def test_generate(self):
        raw, key_hash, prefix = generate_api_key()
        assert raw.startswith(API_KEY_PREFIX)
        assert key_hash == hash_api_key(raw)
        assert raw.startswith(prefix)
        assert len(prefix) == len(API_KEY_PREFIX) + 6

    def test_authenticate(self, mock_db):
        user = User(id="user-1", email="u@example.com", is_active=True)
        api_key = ApiKey(id="key-1", user_id="user-1", key_prefix="vp_abcdef", is_active=True, expires_at=None)
        mock_db.query.return_value.filter.return_value.first.side_effect = [api_key, user]

        assert authenticate_api_key(mock_db, "vp_secret") is user
        assert api_key.last_used_at is not None

    def test_expired_key(self, mock_db):
        api_key = ApiKey(id="key-1", user_id="user-1", key_prefix="vp_abcdef", is_active=True,
                         expires_at=datetime.utcnow() - timedelta(days=1))
        mock_db.query.return_value.filter.return_value.first.return_value = api_key
        assert authenticate_api_key(mock_db, "vp_secret") is None


class TestAuthEndpoints:
    """HTTP authentication"""

    def test_me_requires_token(self, client):
        assert client.get("/api/auth/me").status_code == 401

    def test_me_with_invalid_token(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer invalid"})
        assert response.status_code == 401

    def test_me_with_bearer_token(self, client, mock_db, mock_user):
        mock_db.query.return_value.filter.return_value.first.return_value = mock_user
        token = create_access_token({"sub": "user-123"})

        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json()["email"] == "test@example.com"
        assert response.json()["available_credits"] == 30

    def test_inactive_user(self, client, mock_db, mock_user):
        mock_user.is_active = False
        mock_db.query.return_value.filter.return_value.first.return_value = mock_user
        token = create_access_token({"sub": "user-123"})
        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 403

    def test_invalid_api_key(self, client, mock_db):
        mock_db.query.return_value.filter.return_value.first.return_value = None
        response = client.get("/api/auth/me", headers={"X-API-Key": "vp_nope"})
        assert response.status_code == 401

    def test_login_wrong_password(self, client, mock_db):
        user = User(id="user-1", email="test@example.com", hashed_password=get_password_hash("right-password"),
                    is_active=True)
        mock_db.query.return_value.filter.return_value.first.return_value = user
        response = client.post("/api/auth/login", json={"email": "test@example.com", "password": "wrong-password"})
        assert response.status_code == 401

    def test_logout_clears_cookie(self, client):
        response = client.post("/api/auth/logout")
        assert response.status_code == 200
        assert "auth_token" in response.headers.get("set-cookie", "")
