"""Email verification and password reset tokens: issue, single use, expiry, plaintext storage."""

import asyncio
import string
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from wadai.core.errors import BadRequest
from wadai.db.base import utcnow
from wadai.db.session import async_session_maker
from wadai.models.user import User
from wadai.services.one_time_tokens import (
    TOKEN_LENGTH,
    OneTimeTokenManager,
    TokenPurpose,
    generate_one_time_token,
)

from tests.conftest import create_user

verification = OneTimeTokenManager(TokenPurpose.EMAIL_VERIFICATION, ttl_hours=24)
reset = OneTimeTokenManager(TokenPurpose.PASSWORD_RESET, ttl_hours=1)


def test_generated_token_shape():
    token = generate_one_time_token()
    assert len(token) == TOKEN_LENGTH
    assert set(token) <= set(string.ascii_letters + string.digits)
    assert generate_one_time_token() != token


async def _create(manager: OneTimeTokenManager, user_id) -> str:
    async with async_session_maker() as s:
        token = await manager.create(s, user_id)
        await s.commit()
        return token


async def _load(user_id) -> User:
    async with async_session_maker() as s:
        return (await s.execute(select(User).where(User.id == user_id))).scalar_one()


@pytest.mark.asyncio
async def test_token_is_stored_as_issued(clean_db):
    """Single-use tokens are kept in plaintext on the user row (unlike refresh tokens)."""
    user = await create_user()
    token = await _create(verification, user.id)
    stored = await _load(user.id)
    assert stored.verification_token == token
    assert stored.verification_token_expires_at is not None
    assert stored.password_reset_token is None


@pytest.mark.asyncio
async def test_verification_consume_marks_verified(clean_db):
    user = await create_user()
    token = await _create(verification, user.id)
    async with async_session_maker() as s:
        assert await verification.consume(s, token) == user.id
        await s.commit()
    stored = await _load(user.id)
    assert stored.email_verified is True
    assert stored.email_verified_at is not None
    assert stored.verification_token is None
    assert stored.verification_token_expires_at is None


@pytest.mark.asyncio
async def test_consume_twice_fails(clean_db):
    user = await create_user()
    token = await _create(reset, user.id)
    async with async_session_maker() as s:
        assert await reset.consume(s, token) == user.id
        await s.commit()
    async with async_session_maker() as s:
        with pytest.raises(BadRequest):
            await reset.consume(s, token)


@pytest.mark.asyncio
async def test_concurrent_consume_matches_once(clean_db):
    user = await create_user()
    token = await _create(reset, user.id)

    async def attempt():
        async with async_session_maker() as s:
            try:
                await reset.consume(s, token)
                await s.commit()
                return True
            except BadRequest:
                await s.rollback()
                return False

    results = await asyncio.gather(attempt(), attempt())
    assert sorted(results) == [False, True]


@pytest.mark.asyncio
async def test_expired_token_fails(clean_db):
    user = await create_user()
    token = await _create(reset, user.id)
    async with async_session_maker() as s:
        await s.execute(
            update(User).where(User.id == user.id).values(password_reset_token_expires_at=utcnow() - timedelta(minutes=1))
        )
        await s.commit()
    async with async_session_maker() as s:
        with pytest.raises(BadRequest):
            await reset.consume(s, token)


@pytest.mark.asyncio
async def test_purposes_do_not_cross(clean_db):
    user = await create_user()
    verify_token = await _create(verification, user.id)
    reset_token = await _create(reset, user.id)
    async with async_session_maker() as s:
        with pytest.raises(BadRequest):
            await reset.consume(s, verify_token)
        with pytest.raises(BadRequest):
            await verification.consume(s, reset_token)


@pytest.mark.asyncio
async def test_new_token_replaces_previous(clean_db):
    user = await create_user()
    first = await _create(verification, user.id)
    second = await _create(verification, user.id)
    async with async_session_maker() as s:
        with pytest.raises(BadRequest):
            await verification.consume(s, first)
        assert await verification.consume(s, second) == user.id


@pytest.mark.asyncio
async def test_verification_ignores_already_verified_user(clean_db):
    user = await create_user(email_verified=True)
    token = await _create(verification, user.id)
    async with async_session_maker() as s:
        with pytest.raises(BadRequest):
            await verification.consume(s, token)


@pytest.mark.asyncio
@pytest.mark.parametrize("bogus", ["", "nope", "x" * TOKEN_LENGTH])
async def test_unknown_token_fails(clean_db, bogus):
    async with async_session_maker() as s:
        with pytest.raises(BadRequest):
            await verification.consume(s, bogus)
