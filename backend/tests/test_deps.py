"""Bearer-token authentication of requests."""

import uuid

import pytest
from httpx import AsyncClient

from wadai.api.deps import authenticate, extract_bearer_token
from wadai.core.errors import InvalidToken, Unauthorized
from wadai.db.session import async_session_maker


@pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer ", "Basic dXNlcjpwYXNz", "bearer abc", "Token abc"])
def test_extract_bearer_token_rejects(header):
    with pytest.raises(Unauthorized):
        extract_bearer_token(header)


def test_extract_bearer_token():
    assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"


@pytest.mark.asyncio
async def test_authenticate_loads_user(test_user, codec):
    user, token = test_user
    async with async_session_maker() as session:
        principal = await authenticate(f"Bearer {token}", session, codec)
    assert principal.user.id == user.id
    assert principal.claims.username == "testuser"


@pytest.mark.asyncio
async def test_authenticate_garbage_token(clean_db, codec):
    async with async_session_maker() as session:
        with pytest.raises(InvalidToken):
            await authenticate("Bearer not.a.jwt", session, codec)


@pytest.mark.asyncio
async def test_authenticate_token_for_missing_user(clean_db, codec):
    token = codec.issue(uuid.uuid4(), "ghost", "ghost@test.com")
    async with async_session_maker() as session:
        with pytest.raises(Unauthorized) as exc:
            await authenticate(f"Bearer {token}", session, codec)
    assert exc.value.message == "User not found"


@pytest.mark.asyncio
async def test_me_requires_auth(client: AsyncClient):
    resp = await client.get("/api/v1/users/me")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Missing or invalid Authorization header", "code": "unauthorized", "status": 401}


@pytest.mark.asyncio
async def test_me_rejects_basic_scheme(client: AsyncClient, test_user):
    resp = await client.get("/api/v1/users/me", headers={"Authorization": "Basic dXNlcjpwYXNz"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_me_rejects_token_signed_with_other_key(client: AsyncClient, test_user):
    from wadai.core.auth import AccessTokenCodec

    user, _ = test_user
    forged = AccessTokenCodec("some-other-secret-some-other-secret", 15).issue(user.id, user.username, user.email)
    resp = await client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {forged}"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Invalid token"


@pytest.mark.asyncio
async def test_me_with_valid_token(client: AsyncClient, test_user, auth_headers):
    user, _ = test_user
    resp = await client.get("/api/v1/users/me", headers=auth_headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["id"] == str(user.id)
    assert data["username"] == "testuser"
    assert data["email_verified"] is False
    assert resp.headers["cache-control"] == "no-store"
