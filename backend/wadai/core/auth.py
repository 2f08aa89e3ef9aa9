"""Password hashing and access-token (JWT) creation/verification."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError
from jose import JWTError, jwt

from wadai.config import Settings
from wadai.core.errors import InternalError, InvalidToken

logger = logging.getLogger(__name__)

# Argon2id with argon2-cffi defaults (RFC 9106 low-memory profile); salt from os.urandom per call
_pwd_hasher = PasswordHasher(type=Type.ID)

DEFAULT_ISSUER = "wadai-us"
DEFAULT_ALGORITHM = "HS256"


def hash_password(password: str) -> tuple[str, str]:
    """Hash password with Argon2id. Returns (PHC hash string, salt).

    The salt is also encoded inside the hash; it is returned separately because
    the credential row stores it in its own column.
    """
    try:
        password_hash = _pwd_hasher.hash(password)
    except Exception as e:
        logger.exception("Password hashing failed")
        raise InternalError("Password hashing error") from e
    return password_hash, _salt_from_hash(password_hash)


def verify_password(password: str, password_hash: str) -> bool:
    """True if password matches. A corrupt stored hash raises InternalError, never returns False."""
    try:
        return _pwd_hasher.verify(password_hash, password)
    except VerifyMismatchError:
        return False
    except (InvalidHash, VerificationError) as e:
        logger.error("Stored password hash could not be verified: %s", type(e).__name__)
        raise InternalError("Password hashing error") from e


def password_needs_rehash(password_hash: str) -> bool:
    """True when the hash was made with weaker Argon2 parameters than the current ones."""
    try:
        return _pwd_hasher.check_needs_rehash(password_hash)
    except InvalidHash:
        return False


def _salt_from_hash(password_hash: str) -> str:
    # $argon2id$v=19$m=65536,t=3,p=4$<salt>$<digest>
    parts = password_hash.split("$")
    if len(parts) != 6:
        raise InternalError("Password hashing error")
    return parts[4]


@dataclass(frozen=True)
class Claims:
    sub: str
    username: str
    email: str
    iat: int
    exp: int
    iss: str

    @property
    def user_id(self) -> uuid.UUID:
        """Subject as UUID; a non-UUID subject is an invalid token."""
        try:
            return uuid.UUID(self.sub)
        except ValueError as e:
            raise InvalidToken() from e

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Claims":
        try:
            return cls(
                sub=str(payload["sub"]),
                username=str(payload["username"]),
                email=str(payload["email"]),
                iat=int(payload["iat"]),
                exp=int(payload["exp"]),
                iss=str(payload["iss"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidToken() from e


def create_access_token(
    user_id: uuid.UUID | str,
    username: str,
    email: str,
    secret: str,
    expires_in_minutes: int,
    *,
    algorithm: str = DEFAULT_ALGORITHM,
    issuer: str = DEFAULT_ISSUER,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "username": username,
        "email": email,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_in_minutes)).timestamp()),
        "iss": issuer,
    }
    result = jwt.encode(payload, secret, algorithm=algorithm)
    return result if isinstance(result, str) else result.decode("utf-8")


def decode_access_token(
    token: str,
    secret: str,
    *,
    algorithm: str = DEFAULT_ALGORITHM,
    issuer: str = DEFAULT_ISSUER,
) -> Claims:
    """Validate signature, expiry and issuer. Every failure raises the same InvalidToken."""
    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[algorithm],
            issuer=issuer,
            options={"require_exp": True, "require_iat": True, "require_sub": True},
        )
    except JWTError as e:
        raise InvalidToken() from e
    return Claims.from_payload(payload)


class AccessTokenCodec:
    """Access-token issue/validate bound to one signing secret and TTL (built once at startup)."""

    def __init__(
        self,
        secret: str,
        ttl_minutes: int,
        *,
        algorithm: str = DEFAULT_ALGORITHM,
        issuer: str = DEFAULT_ISSUER,
    ) -> None:
        self._secret = secret
        self.ttl_minutes = ttl_minutes
        self.algorithm = algorithm
        self.issuer = issuer

    @classmethod
    def from_settings(cls, settings: Settings) -> "AccessTokenCodec":
        return cls(
            settings.jwt_secret,
            settings.access_token_expire_minutes,
            algorithm=settings.jwt_algorithm,
            issuer=settings.jwt_issuer,
        )

    @property
    def expires_in_seconds(self) -> int:
        return self.ttl_minutes * 60

    def issue(self, user_id: uuid.UUID | str, username: str, email: str) -> str:
        return create_access_token(
            user_id, username, email, self._secret, self.ttl_minutes,
            algorithm=self.algorithm, issuer=self.issuer,
        )

    def validate(self, token: str) -> Claims:
        return decode_access_token(token, self._secret, algorithm=self.algorithm, issuer=self.issuer)
