"""FastAPI dependencies: auth service from app state, current principal from the bearer access token."""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wadai.core.auth import AccessTokenCodec, Claims
from wadai.core.errors import Unauthorized
from wadai.db.session import get_db
from wadai.models.user import User
from wadai.services.accounts import AuthService

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class Principal:
    user: User
    claims: Claims


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def extract_bearer_token(authorization: str | None) -> str:
    """Token from 'Bearer <token>'. Missing header or any other scheme is rejected before parsing."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise Unauthorized("Missing or invalid Authorization header")
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        raise Unauthorized("Missing or invalid Authorization header")
    return token


async def authenticate(
    authorization: str | None,
    session: AsyncSession,
    codec: AccessTokenCodec,
) -> Principal:
    """Validate the access token and load its user: one read, no writes."""
    token = extract_bearer_token(authorization)
    claims = codec.validate(token)
    r = await session.execute(select(User).where(User.id == claims.user_id))
    user = r.scalar_one_or_none()
    if user is None:
        # Token outlived its account
        raise Unauthorized("User not found")
    return Principal(user=user, claims=claims)


async def get_principal(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> Principal:
    principal = await authenticate(request.headers.get("Authorization"), session, auth.codec)
    request.state.principal = principal
    return principal


async def get_current_user(principal: Annotated[Principal, Depends(get_principal)]) -> User:
    return principal.user
