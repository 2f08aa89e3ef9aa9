"""Auth: register, login, refresh, logout, change password, password reset, email verification."""

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from wadai.api.deps import Principal, get_auth_service, get_principal
from wadai.db.session import get_db
from wadai.schemas.auth import (
    ChangePasswordBody,
    LoginBody,
    MessageResponse,
    PasswordResetRequestBody,
    RefreshBody,
    RegisterBody,
    ResetPasswordBody,
    TokenResponse,
    UserOut,
    VerifyEmailResponse,
)
from wadai.services.accounts import AuthService, IssuedTokens
from wadai.services.mailer import deliver

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

PASSWORD_RESET_REQUESTED = (
    "If an account exists for that email, a password reset link has been sent. "
    "Follow the link in the email to set a new password."
)


def _token_response(tokens: IssuedTokens) -> TokenResponse:
    return TokenResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type=tokens.token_type,
        expires_in=tokens.expires_in,
        user=UserOut.model_validate(tokens.user),
    )


@router.post(
    "/register",
    response_model=TokenResponse,
    status_code=201,
    summary="Register a new user",
    responses={
        409: {"description": "Username or email already registered"},
        422: {"description": "Invalid username, email or password"},
    },
)
async def register(
    session: Annotated[AsyncSession, Depends(get_db)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
    body: RegisterBody,
    background_tasks: BackgroundTasks,
) -> TokenResponse:
    tokens, message = await auth.register(
        session, body.username, body.email, body.password, body.display_name
    )
    background_tasks.add_task(deliver, auth.email_sender, message)
    return _token_response(tokens)


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login with email and password",
    responses={401: {"description": "Invalid email or password"}},
)
async def login(
    session: Annotated[AsyncSession, Depends(get_db)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
    body: LoginBody,
) -> TokenResponse:
    return _token_response(await auth.login(session, body.email, body.password))


@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Exchange refresh token for new access and refresh tokens",
    responses={401: {"description": "Refresh token invalid, revoked or expired"}},
)
async def refresh_tokens(
    session: Annotated[AsyncSession, Depends(get_db)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
    body: RefreshBody,
) -> TokenResponse:
    """Exchange refresh_token for new access_token and refresh_token (rotation)."""
    return _token_response(await auth.refresh(session, body.refresh_token))


@router.post("/logout", response_model=MessageResponse, summary="Revoke a refresh token")
async def logout(
    session: Annotated[AsyncSession, Depends(get_db)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
    body: RefreshBody,
) -> MessageResponse:
    """Always succeeds; revoking an unknown or already revoked token is a no-op."""
    await auth.logout(session, body.refresh_token)
    return MessageResponse(message="Logged out successfully")


@router.post(
    "/change-password",
    response_model=MessageResponse,
    summary="Change password of the current user",
    responses={
        401: {"description": "Not authenticated"},
        403: {"description": "Current password is incorrect"},
        422: {"description": "New password does not meet requirements"},
    },
)
async def change_password(
    session: Annotated[AsyncSession, Depends(get_db)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
    principal: Annotated[Principal, Depends(get_principal)],
    body: ChangePasswordBody,
) -> MessageResponse:
    await auth.change_password(session, principal.user, body.current_password, body.new_password)
    return MessageResponse(message="Password changed successfully")


@router.post(
    "/password-reset/request",
    response_model=MessageResponse,
    summary="Request a password reset email",
)
async def request_password_reset(
    session: Annotated[AsyncSession, Depends(get_db)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
    body: PasswordResetRequestBody,
    background_tasks: BackgroundTasks,
) -> MessageResponse:
    """Same response whether or not the email is registered."""
    message = await auth.request_password_reset(session, body.email)
    if message is not None:
        background_tasks.add_task(deliver, auth.email_sender, message)
    return MessageResponse(message=PASSWORD_RESET_REQUESTED)


@router.post(
    "/password-reset/{token}",
    response_model=MessageResponse,
    summary="Set a new password with a reset token",
    responses={400: {"description": "Invalid or expired token"}},
)
async def reset_password(
    token: str,
    session: Annotated[AsyncSession, Depends(get_db)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
    body: ResetPasswordBody,
) -> MessageResponse:
    await auth.reset_password(session, token, body.new_password)
    return MessageResponse(message="Password has been reset. Please log in with your new password.")


@router.post(
    "/verify-email/{token}",
    response_model=VerifyEmailResponse,
    summary="Verify email address",
    responses={400: {"description": "Invalid, expired or already used token"}},
)
async def verify_email(
    token: str,
    session: Annotated[AsyncSession, Depends(get_db)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> VerifyEmailResponse:
    await auth.verify_email(session, token)
    return VerifyEmailResponse(message="Email address verified", verified=True)


@router.post(
    "/resend-verification",
    response_model=MessageResponse,
    summary="Resend the verification email",
    responses={
        400: {"description": "Email already verified"},
        401: {"description": "Not authenticated"},
    },
)
async def resend_verification(
    session: Annotated[AsyncSession, Depends(get_db)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
    principal: Annotated[Principal, Depends(get_principal)],
    background_tasks: BackgroundTasks,
) -> MessageResponse:
    message = await auth.resend_verification(session, principal.user)
    background_tasks.add_task(deliver, auth.email_sender, message)
    return MessageResponse(message="Verification email sent")
