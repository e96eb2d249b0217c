"""
Authentication API Endpoints
============================

Handles login, token refresh, the current-user lookup and logout.
"""

import logging

from fastapi import APIRouter, Depends

from tasktracker.core.errors import AuthenticationError, ErrorCodes
from tasktracker.core.rate_limit import create_rate_limit_dependency
from tasktracker.core.security import create_tokens_for_user
from tasktracker.dependencies import CurrentUser, DBSession
from tasktracker.schemas.auth import (
    LoginResponse,
    LogoutResponse,
    MeResponse,
    RefreshTokenRequest,
    TokenRefreshResponse,
    UserLogin,
)
from tasktracker.schemas.common import ErrorResponse
from tasktracker.services.auth_service import AuthService

logger = logging.getLogger(__name__)

router = APIRouter()

# Login and refresh share one budget per client IP
auth_rate_limit = create_rate_limit_dependency("auth")


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        429: {"model": ErrorResponse, "description": "Too many attempts"},
    },
    dependencies=[Depends(auth_rate_limit)],
)
async def login(credentials: UserLogin, db: DBSession):
    """
    Authenticate user and return tokens.
    """
    auth_service = AuthService(db)

    user = await auth_service.authenticate_user(
        email=credentials.email,
        password=credentials.password,
    )

    if user is None:
        raise AuthenticationError(
            code=ErrorCodes.AUTH_INVALID_CREDENTIALS,
            message="Invalid credentials",
        )

    tokens = create_tokens_for_user(
        user_id=user.user_id,
        email=user.email,
        roles=[role.value for role in user.role_set],
    )
    logger.info("User %s logged in", user.user_id)

    return LoginResponse(
        success=True,
        data={"user": user.to_api_dict(), "tokens": tokens},
    )


@router.post(
    "/refresh",
    response_model=TokenRefreshResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid refresh token"},
        429: {"model": ErrorResponse, "description": "Too many attempts"},
    },
    dependencies=[Depends(auth_rate_limit)],
)
async def refresh_token(request: RefreshTokenRequest, db: DBSession):
    """
    Refresh access token using refresh token.
    """
    tokens = await AuthService(db).refresh_tokens(request.refresh_token)

    if tokens is None:
        raise AuthenticationError(
            code=ErrorCodes.AUTH_TOKEN_EXPIRED,
            message="Invalid or expired refresh token",
        )

    return TokenRefreshResponse(success=True, data=tokens)


@router.get("/me", response_model=MeResponse)
async def me(current_user: CurrentUser):
    """Return the authenticated user."""
    return MeResponse(success=True, data=current_user.to_api_dict())


@router.post("/logout", response_model=LogoutResponse)
async def logout(current_user: CurrentUser):
    """
    Logout user (client should discard tokens).

    Tokens are stateless; nothing is revoked server-side.
    """
    return LogoutResponse(success=True, message="Logged out successfully")
