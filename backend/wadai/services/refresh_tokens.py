"""
Refresh token issue, rotation and revocation.

Refresh tokens are opaque random strings handed to the client exactly once; the
database keeps only their SHA-256 digest. A fast digest is enough because the
input already carries 256 bits of entropy and is only ever matched exactly.

Every redemption revokes the presented token and issues a successor. The revoke
is a single conditional UPDATE used as the gate, so two concurrent redemptions of
the same token cannot both succeed.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import secrets
import uuid
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wadai.core.errors import Unauthorized
from wadai.db.base import utcnow
from wadai.models.refresh_token import RefreshToken
from wadai.models.user import User

logger = logging.getLogger(__name__)

REFRESH_TOKEN_BYTES = 32


def generate_refresh_token() -> str:
    """Generate a new refresh token (plain string; caller must hash and store)."""
    return secrets.token_urlsafe(REFRESH_TOKEN_BYTES)


def hash_refresh_token(token: str) -> str:
    """SHA-256 of the token, base64 encoded (44 chars). Deterministic, unsalted."""
    digest = hashlib.sha256(token.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_refresh_token(token: str, token_hash: str) -> bool:
    return hmac.compare_digest(hash_refresh_token(token), token_hash)


class RefreshTokenStore:
    def __init__(self, ttl_days: int) -> None:
        self.ttl = timedelta(days=ttl_days)

    async def issue(self, session: AsyncSession, user_id: uuid.UUID) -> str:
        """Persist the digest of a new token for user_id; return the raw token (only time it exists)."""
        raw = generate_refresh_token()
        session.add(
            RefreshToken(
                user_id=user_id,
                token_hash=hash_refresh_token(raw),
                expires_at=utcnow() + self.ttl,
                revoked=False,
            )
        )
        await session.flush()
        return raw

    async def redeem(self, session: AsyncSession, raw_token: str) -> tuple[User, str]:
        """Revoke the presented token and issue its successor in the caller's transaction.

        Raises Unauthorized for unknown, revoked or expired tokens, and when the
        owning user no longer exists.
        """
        token = (raw_token or "").strip()
        if not token:
            raise Unauthorized("Invalid refresh token")
        result = await session.execute(
            update(RefreshToken)
            .where(
                RefreshToken.token_hash == hash_refresh_token(token),
                RefreshToken.revoked.is_(False),
                RefreshToken.expires_at > utcnow(),
            )
            .values(revoked=True)
            .returning(RefreshToken.user_id)
            .execution_options(synchronize_session=False)
        )
        user_id = result.scalars().first()
        if user_id is None:
            raise Unauthorized("Invalid refresh token")
        r_user = await session.execute(select(User).where(User.id == user_id))
        user = r_user.scalar_one_or_none()
        if user is None:
            raise Unauthorized("Invalid refresh token")
        new_raw = await self.issue(session, user.id)
        logger.debug("Refresh token rotated for user_id=%s", user.id)
        return user, new_raw

    async def revoke(self, session: AsyncSession, raw_token: str) -> int:
        """Mark the matching token revoked. Idempotent; returns the number of rows changed."""
        token = (raw_token or "").strip()
        if not token:
            return 0
        result = await session.execute(
            update(RefreshToken)
            .where(RefreshToken.token_hash == hash_refresh_token(token), RefreshToken.revoked.is_(False))
            .values(revoked=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def revoke_all(self, session: AsyncSession, user_id: uuid.UUID) -> int:
        """Revoke every active token of a user (after password change/reset)."""
        result = await session.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked.is_(False))
            .values(revoked=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
