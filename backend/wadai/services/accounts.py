"""
Account and credential flows: register, login, refresh, logout, change/reset
password, email verification and email change.

Every method runs inside the caller's session; the request-scoped session
commits once at the end (or rolls back on any exception), so each flow's writes
land together or not at all. Outgoing email is returned to the caller as an
EmailMessage and sent only after the commit.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass

from prometheus_client import Counter
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wadai.config import Settings
from wadai.core.auth import (
    AccessTokenCodec,
    hash_password,
    password_needs_rehash,
    verify_password,
)
from wadai.core.errors import BadRequest, Conflict, Forbidden, InternalError, Unauthorized
from wadai.models.credential import UserCredential
from wadai.models.user import User
from wadai.services.mailer import (
    EmailMessage,
    EmailSender,
    build_password_reset_email,
    build_verification_email,
)
from wadai.services.one_time_tokens import OneTimeTokenManager, TokenPurpose
from wadai.services.refresh_tokens import RefreshTokenStore

logger = logging.getLogger(__name__)

AUTH_EVENTS = Counter(
    "wadai_auth_events_total",
    "Authentication flow outcomes",
    ["event", "outcome"],
)

INVALID_CREDENTIALS = "Invalid credentials"

_dummy_hash: str | None = None


def _get_dummy_hash() -> str:
    # Verified against when the email is unknown so both login failures cost one Argon2 run
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash, _ = hash_password("wadai-timing-equalizer")
    return _dummy_hash


async def _hash(password: str) -> tuple[str, str]:
    # Argon2 is CPU and memory heavy; keep it off the event loop
    return await asyncio.to_thread(hash_password, password)


async def _verify(password: str, password_hash: str) -> bool:
    return await asyncio.to_thread(verify_password, password, password_hash)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


@dataclass(frozen=True)
class IssuedTokens:
    access_token: str
    refresh_token: str
    expires_in: int
    user: User
    token_type: str = "Bearer"


class AuthService:
    def __init__(
        self,
        settings: Settings,
        codec: AccessTokenCodec,
        refresh_tokens: RefreshTokenStore,
        verification_tokens: OneTimeTokenManager,
        reset_tokens: OneTimeTokenManager,
        email_sender: EmailSender,
    ) -> None:
        self.settings = settings
        self.codec = codec
        self.refresh_tokens = refresh_tokens
        self.verification_tokens = verification_tokens
        self.reset_tokens = reset_tokens
        self.email_sender = email_sender

    @classmethod
    def from_settings(cls, settings: Settings, email_sender: EmailSender) -> "AuthService":
        return cls(
            settings,
            AccessTokenCodec.from_settings(settings),
            RefreshTokenStore(settings.refresh_token_expire_days),
            OneTimeTokenManager(TokenPurpose.EMAIL_VERIFICATION, settings.email_verification_token_expire_hours),
            OneTimeTokenManager(TokenPurpose.PASSWORD_RESET, settings.password_reset_token_expire_hours),
            email_sender,
        )

    async def _issue_tokens(self, session: AsyncSession, user: User) -> IssuedTokens:
        """Mint an access token and persist a new refresh token for user."""
        access = self.codec.issue(user.id, user.username, user.email)
        refresh = await self.refresh_tokens.issue(session, user.id)
        return IssuedTokens(access, refresh, self.codec.expires_in_seconds, user)

    async def _get_credential(self, session: AsyncSession, user_id: uuid.UUID) -> UserCredential | None:
        r = await session.execute(select(UserCredential).where(UserCredential.user_id == user_id))
        return r.scalar_one_or_none()

    async def register(
        self,
        session: AsyncSession,
        username: str,
        email: str,
        password: str,
        display_name: str | None = None,
    ) -> tuple[IssuedTokens, EmailMessage]:
        """Create user + credential + first refresh token + verification token in one transaction."""
        username = username.strip()
        email = normalize_email(email)
        r = await session.execute(select(User.id).where(or_(User.email == email, User.username == username)))
        if r.first() is not None:
            AUTH_EVENTS.labels(event="register", outcome="conflict").inc()
            raise Conflict("User already exists")
        password_hash, salt = await _hash(password)
        user = User(
            id=uuid.uuid4(),
            username=username,
            email=email,
            display_name=(display_name or "").strip() or None,
            email_verified=False,
        )
        user.credential = UserCredential(password_hash=password_hash, salt=salt)
        session.add(user)
        try:
            await session.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent registration of the same username/email
            logger.warning("Register IntegrityError: %s", type(e).__name__)
            AUTH_EVENTS.labels(event="register", outcome="conflict").inc()
            raise Conflict("User already exists") from e
        verification_token = await self.verification_tokens.create(session, user.id)
        tokens = await self._issue_tokens(session, user)
        AUTH_EVENTS.labels(event="register", outcome="success").inc()
        logger.info("Registered user_id=%s", user.id)
        return tokens, build_verification_email(user, verification_token, self.settings)

    async def login(self, session: AsyncSession, email: str, password: str) -> IssuedTokens:
        """Unknown email and wrong password fail identically with Unauthorized."""
        r = await session.execute(select(User).where(User.email == normalize_email(email)))
        user = r.scalar_one_or_none()
        credential = await self._get_credential(session, user.id) if user else None
        if credential is None:
            try:
                await _verify(password, await asyncio.to_thread(_get_dummy_hash))
            except InternalError:
                pass
            AUTH_EVENTS.labels(event="login", outcome="failure").inc()
            raise Unauthorized(INVALID_CREDENTIALS)
        try:
            ok = await _verify(password, credential.password_hash)
        except InternalError:
            logger.error("Corrupt password hash for user_id=%s", user.id)
            ok = False
        if not ok:
            AUTH_EVENTS.labels(event="login", outcome="failure").inc()
            raise Unauthorized(INVALID_CREDENTIALS)
        if password_needs_rehash(credential.password_hash):
            credential.password_hash, credential.salt = await _hash(password)
            logger.info("Rehashed password for user_id=%s", user.id)
        tokens = await self._issue_tokens(session, user)
        AUTH_EVENTS.labels(event="login", outcome="success").inc()
        return tokens

    async def refresh(self, session: AsyncSession, refresh_token: str) -> IssuedTokens:
        """Rotate: the presented refresh token is revoked and replaced."""
        try:
            user, new_refresh = await self.refresh_tokens.redeem(session, refresh_token)
        except Unauthorized:
            AUTH_EVENTS.labels(event="refresh", outcome="failure").inc()
            raise
        access = self.codec.issue(user.id, user.username, user.email)
        AUTH_EVENTS.labels(event="refresh", outcome="success").inc()
        return IssuedTokens(access, new_refresh, self.codec.expires_in_seconds, user)

    async def logout(self, session: AsyncSession, refresh_token: str) -> None:
        revoked = await self.refresh_tokens.revoke(session, refresh_token)
        AUTH_EVENTS.labels(event="logout", outcome="success").inc()
        logger.debug("Logout revoked %d refresh token(s)", revoked)

    async def change_password(
        self,
        session: AsyncSession,
        user: User,
        current_password: str,
        new_password: str,
    ) -> None:
        """Replace the credential and revoke every refresh token of the user."""
        credential = await self._get_credential(session, user.id)
        try:
            ok = credential is not None and await _verify(current_password, credential.password_hash)
        except InternalError:
            logger.error("Corrupt password hash for user_id=%s", user.id)
            ok = False
        if not ok:
            AUTH_EVENTS.labels(event="change_password", outcome="failure").inc()
            raise Forbidden("Current password is incorrect")
        credential.password_hash, credential.salt = await _hash(new_password)
        await self.refresh_tokens.revoke_all(session, user.id)
        await session.flush()
        AUTH_EVENTS.labels(event="change_password", outcome="success").inc()
        logger.info("Password changed for user_id=%s", user.id)

    async def request_password_reset(self, session: AsyncSession, email: str) -> EmailMessage | None:
        """Issue a reset token when the email belongs to a user. Callers must not reveal which case happened."""
        r = await session.execute(select(User).where(User.email == normalize_email(email)))
        user = r.scalar_one_or_none()
        AUTH_EVENTS.labels(event="password_reset_request", outcome="success").inc()
        if user is None:
            return None
        token = await self.reset_tokens.create(session, user.id)
        return build_password_reset_email(user, token, self.settings)

    async def reset_password(self, session: AsyncSession, token: str, new_password: str) -> uuid.UUID:
        """Consume the reset token and overwrite the credential in the same transaction."""
        password_hash, salt = await _hash(new_password)
        try:
            user_id = await self.reset_tokens.consume(session, token)
        except BadRequest:
            AUTH_EVENTS.labels(event="password_reset", outcome="failure").inc()
            raise
        credential = await self._get_credential(session, user_id)
        if credential is None:
            session.add(UserCredential(user_id=user_id, password_hash=password_hash, salt=salt))
        else:
            credential.password_hash, credential.salt = password_hash, salt
        await self.refresh_tokens.revoke_all(session, user_id)
        await session.flush()
        AUTH_EVENTS.labels(event="password_reset", outcome="success").inc()
        logger.info("Password reset for user_id=%s", user_id)
        return user_id

    async def verify_email(self, session: AsyncSession, token: str) -> uuid.UUID:
        try:
            user_id = await self.verification_tokens.consume(session, token)
        except BadRequest:
            AUTH_EVENTS.labels(event="verify_email", outcome="failure").inc()
            raise
        AUTH_EVENTS.labels(event="verify_email", outcome="success").inc()
        return user_id

    async def resend_verification(self, session: AsyncSession, user: User) -> EmailMessage:
        if user.email_verified:
            raise BadRequest("Email address is already verified")
        token = await self.verification_tokens.create(session, user.id)
        return build_verification_email(user, token, self.settings)

    async def update_email(self, session: AsyncSession, user: User, new_email: str) -> EmailMessage:
        """Change address, drop verified state and start a new verification."""
        email = normalize_email(new_email)
        if email == user.email:
            raise BadRequest("New email must be different from current email")
        r = await session.execute(select(User.id).where(User.email == email, User.id != user.id))
        if r.first() is not None:
            raise Conflict("Email already exists")
        user.email = email
        user.email_verified = False
        user.email_verified_at = None
        try:
            await session.flush()
        except IntegrityError as e:
            raise Conflict("Email already exists") from e
        token = await self.verification_tokens.create(session, user.id)
        logger.info("Email changed for user_id=%s", user.id)
        return build_verification_email(user, token, self.settings)

    async def delete_account(self, session: AsyncSession, user: User) -> None:
        """Delete the user; credential and refresh tokens go with it."""
        user_id = user.id
        await session.delete(user)
        await session.flush()
        logger.info("Deleted user_id=%s", user_id)
