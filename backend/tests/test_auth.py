"""Tests for credential verification and the /auth routes."""
import time

import jwt
import pytest

from pairchat.auth.service import TokenService, bearer_token
from pairchat.errors import UnauthorizedError

from conftest import TEST_SECRET


class TestTokenService:
    """Tests for JWT issue/verify."""

    def test_round_trip_subject(self, tokens):
        assert tokens.verify(tokens.issue("user-1")) == "user-1"

    @pytest.mark.parametrize("token", [None, ""])
    def test_missing_token(self, tokens, token):
        with pytest.raises(UnauthorizedError, match="Authentication required"):
            tokens.verify(token)

    def test_expired_token(self, tokens):
        with pytest.raises(UnauthorizedError, match="Token expired"):
            tokens.verify(tokens.issue("user-1", expire_minutes=-1))

    def test_forged_signature(self, tokens):
        forged = TokenService("another-secret").issue("user-1")
        with pytest.raises(UnauthorizedError, match="Invalid token"):
            tokens.verify(forged)

    def test_token_without_expiry_rejected(self, tokens):
        token = jwt.encode({"sub": "user-1"}, TEST_SECRET, algorithm="HS256")
        with pytest.raises(UnauthorizedError, match="Invalid token"):
            tokens.verify(token)

    def test_token_without_subject_rejected(self, tokens):
        token = jwt.encode({"exp": int(time.time()) + 60}, TEST_SECRET, algorithm="HS256")
        with pytest.raises(UnauthorizedError, match="Invalid token"):
            tokens.verify(token)

    @pytest.mark.asyncio
    async def test_authenticate_verified_user(self, tokens, gateway, alice):
        user = await tokens.authenticate(tokens.issue(alice.id), gateway)
        assert user.id == alice.id

    @pytest.mark.asyncio
    async def test_authenticate_unverified_user(self, tokens, gateway, store):
        pending = store.create_user("pending@example.com")
        with pytest.raises(UnauthorizedError, match="not verified"):
            await tokens.authenticate(tokens.issue(pending.id), gateway)

    @pytest.mark.asyncio
    async def test_authenticate_unknown_user(self, tokens, gateway):
        with pytest.raises(UnauthorizedError, match="User not found"):
            await tokens.authenticate(tokens.issue("ghost"), gateway)


class TestBearerToken:

    @pytest.mark.parametrize("header,expected", [
        ("Bearer abc", "abc"),
        ("bearer  abc ", "abc"),
        ("Basic abc", None),
        ("Bearer", None),
        ("Bearer   ", None),
        ("", None),
        (None, None),
    ])
    def test_extracts_token(self, header, expected):
        assert bearer_token(header) == expected


class TestAuthRoutes:

    @pytest.fixture
    def alice(self, seed_user):
        return seed_user("alice@example.com")

    def test_get_me(self, api_client, auth_headers, alice):
        resp = api_client.get("/auth/me", headers=auth_headers(alice))
        assert resp.status_code == 200
        user = resp.json()["user"]
        assert user["id"] == alice.id
        assert user["displayName"] == "alice"
        assert user["isOnline"] is False

    def test_update_me(self, api_client, auth_headers, alice):
        resp = api_client.put(
            "/auth/me",
            json={"displayName": "Alice Liddell", "avatar": "data:image/png;base64,AAA"},
            headers=auth_headers(alice),
        )
        assert resp.status_code == 200
        assert resp.json()["user"]["displayName"] == "Alice Liddell"
        assert resp.json()["user"]["avatar"] == "data:image/png;base64,AAA"

        again = api_client.put("/auth/me", json={"displayName": ""}, headers=auth_headers(alice))
        assert again.json()["user"]["displayName"] == "alice"
        assert again.json()["user"]["avatar"] == "data:image/png;base64,AAA"

    def test_search_users(self, api_client, auth_headers, seed_user, alice):
        seed_user("bob@example.com")
        seed_user("bobby@example.com")
        seed_user("pending-bob@example.com", verified=False)
        seed_user("carol@example.com")

        resp = api_client.get("/auth/users", params={"search": "Bob"}, headers=auth_headers(alice))
        emails = [u["email"] for u in resp.json()["users"]]
        assert emails == ["bob@example.com", "bobby@example.com"]

    def test_search_excludes_caller(self, api_client, auth_headers, alice):
        resp = api_client.get("/auth/users", headers=auth_headers(alice))
        assert resp.json() == {"users": []}

    def test_search_caps_results(self, api_client, auth_headers, seed_user, alice):
        for i in range(25):
            seed_user(f"user{i:02d}@example.com")
        resp = api_client.get("/auth/users", headers=auth_headers(alice))
        assert len(resp.json()["users"]) == 20

    def test_search_reports_live_presence(self, api_client, auth_headers, token_for, seed_user, alice):
        bob = seed_user("bob@example.com")
        with api_client.websocket_connect(f"/ws?token={token_for(bob)}") as ws:
            ws.receive_json()
            users = api_client.get("/auth/users", headers=auth_headers(alice)).json()["users"]
            assert users[0]["isOnline"] is True
