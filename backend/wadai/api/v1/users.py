"""User endpoints: current user, email change, account deletion."""

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from wadai.api.deps import get_auth_service, get_current_user
from wadai.db.session import get_db
from wadai.models.user import User
from wadai.schemas.auth import MessageResponse, UpdateEmailBody, UserOut
from wadai.services.accounts import AuthService
from wadai.services.mailer import deliver

router = APIRouter(prefix="/users", tags=["users"])


@router.get(
    "/me",
    response_model=UserOut,
    summary="Get current authenticated user",
    responses={401: {"description": "Not authenticated or invalid token"}},
)
async def me(user: Annotated[User, Depends(get_current_user)]) -> UserOut:
    return UserOut.model_validate(user)


@router.put(
    "/me/email",
    response_model=MessageResponse,
    summary="Change email address (requires re-verification)",
    responses={
        400: {"description": "Same as current email"},
        401: {"description": "Not authenticated"},
        409: {"description": "Email already in use"},
    },
)
async def update_email(
    session: Annotated[AsyncSession, Depends(get_db)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
    user: Annotated[User, Depends(get_current_user)],
    body: UpdateEmailBody,
    background_tasks: BackgroundTasks,
) -> MessageResponse:
    message = await auth.update_email(session, user, body.email)
    background_tasks.add_task(deliver, auth.email_sender, message)
    return MessageResponse(message="Email updated. A verification email has been sent to the new address.")


@router.delete(
    "/me",
    response_model=MessageResponse,
    summary="Delete the current account",
    responses={401: {"description": "Not authenticated"}},
)
async def delete_me(
    session: Annotated[AsyncSession, Depends(get_db)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
    user: Annotated[User, Depends(get_current_user)],
) -> MessageResponse:
    """Removes the user with its credential and refresh tokens. Outstanding access tokens stop working."""
    await auth.delete_account(session, user)
    return MessageResponse(message="Account deleted")
