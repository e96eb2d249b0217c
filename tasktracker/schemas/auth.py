"""
Authentication Schemas
======================

Pydantic schemas for authentication endpoints.
"""

from typing import Optional

from pydantic import BaseModel, EmailStr


class UserLogin(BaseModel):
    """Request schema for user login."""

    email: EmailStr
    password: str


class RefreshTokenRequest(BaseModel):
    """Request schema for token refresh."""

    refresh_token: str


class TokenResponse(BaseModel):
    """Response schema for tokens."""

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: int  # seconds


class UserInfo(BaseModel):
    """Public user representation."""

    id: str
    name: str
    email: EmailStr
    roles: list[str]


class LoginData(BaseModel):
    user: UserInfo
    tokens: TokenResponse


class LoginResponse(BaseModel):
    """Response schema for user login."""

    success: bool = True
    data: LoginData


class TokenRefreshResponse(BaseModel):
    success: bool = True
    data: TokenResponse


class MeResponse(BaseModel):
    success: bool = True
    data: UserInfo


class LogoutResponse(BaseModel):
    """Response schema for logout."""

    success: bool = True
    message: str = "Successfully logged out"
