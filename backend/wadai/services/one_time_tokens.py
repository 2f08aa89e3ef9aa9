"""
Single-use tokens for email verification and password reset.

Both live on the users row as a (token, expires_at) column pair. The token is
stored as issued, not hashed: it is short-lived, single-purpose and only ever
delivered by email. Consumption is one conditional UPDATE that clears the pair,
so a token can match at most once even under concurrent requests.
"""

from __future__ import annotations

import enum
import logging
import secrets
import string
import uuid
from datetime import timedelta

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from wadai.core.errors import BadRequest
from wadai.db.base import utcnow
from wadai.models.user import User

logger = logging.getLogger(__name__)

TOKEN_LENGTH = 64
_ALPHABET = string.ascii_letters + string.digits


class TokenPurpose(str, enum.Enum):
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


_COLUMNS = {
    TokenPurpose.EMAIL_VERIFICATION: (User.verification_token, User.verification_token_expires_at),
    TokenPurpose.PASSWORD_RESET: (User.password_reset_token, User.password_reset_token_expires_at),
}

_INVALID_MESSAGES = {
    TokenPurpose.EMAIL_VERIFICATION: "Invalid or expired verification token",
    TokenPurpose.PASSWORD_RESET: "Invalid or expired password reset token",
}


def generate_one_time_token(length: int = TOKEN_LENGTH) -> str:
    """Random alphanumeric string (~381 bits at the default length)."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


class OneTimeTokenManager:
    def __init__(self, purpose: TokenPurpose, ttl_hours: int) -> None:
        self.purpose = purpose
        self.ttl = timedelta(hours=ttl_hours)
        self._token_col, self._expires_col = _COLUMNS[purpose]

    @property
    def ttl_hours(self) -> int:
        return int(self.ttl.total_seconds() // 3600)

    async def create(self, session: AsyncSession, user_id: uuid.UUID) -> str:
        """Write a fresh token and expiry onto the user row; replaces any earlier token of this purpose."""
        token = generate_one_time_token()
        await session.execute(
            update(User)
            .where(User.id == user_id)
            .values({self._token_col: token, self._expires_col: utcnow() + self.ttl})
        )
        logger.debug("Issued %s token for user_id=%s", self.purpose.value, user_id)
        return token

    async def consume(self, session: AsyncSession, raw_token: str) -> uuid.UUID:
        """Match and clear the token in one statement; return the owning user id.

        Email verification also marks the address verified and only matches
        users whose address is not yet verified. Wrong, expired and already
        consumed tokens all raise BadRequest.
        """
        token = (raw_token or "").strip()
        if not token:
            raise BadRequest(_INVALID_MESSAGES[self.purpose])
        now = utcnow()
        conditions = [self._token_col == token, self._expires_col > now]
        values = {self._token_col: None, self._expires_col: None}
        if self.purpose is TokenPurpose.EMAIL_VERIFICATION:
            conditions.append(User.email_verified_at.is_(None))
            values[User.email_verified] = True
            values[User.email_verified_at] = now
        result = await session.execute(
            update(User)
            .where(*conditions)
            .values(values)
            .returning(User.id)
            .execution_options(synchronize_session=False)
        )
        user_id = result.scalars().first()
        if user_id is None:
            raise BadRequest(_INVALID_MESSAGES[self.purpose])
        logger.info("Consumed %s token for user_id=%s", self.purpose.value, user_id)
        return user_id
