"""
Authentication Service
======================

Business logic for user lookup, password login, and token management.
"""

import logging
from typing import Iterable, Optional
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.core.security import (
    create_tokens_for_user,
    decode_token,
    hash_password,
    verify_password,
)
from tasktracker.models.user import Role, User

logger = logging.getLogger(__name__)


def _user_id_from(payload: Optional[dict], token_type: str) -> Optional[uuid.UUID]:
    if payload is None or payload.get("type") != token_type:
        return None

    user_id_str = payload.get("sub")
    if user_id_str is None:
        return None

    try:
        return uuid.UUID(user_id_str)
    except ValueError:
        return None


class AuthService:
    """Service for authentication operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by email address."""
        stmt = select(User).where(User.email == email.lower())
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        """Get user by ID."""
        stmt = select(User).where(User.user_id == user_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def create_user(
        self,
        name: str,
        email: str,
        password: str,
        roles: Iterable[Role] = (Role.USER,),
    ) -> User:
        """Create a user with a hashed password."""
        user = User(
            name=name,
            email=email.lower(),
            password_hash=hash_password(password),
            roles=sorted({Role(role).value for role in roles}),
        )
        self.db.add(user)
        await self.db.flush()
        return user

    async def authenticate_user(
        self,
        email: str,
        password: str,
    ) -> Optional[User]:
        """
        Authenticate user by email and password.

        Returns:
            User if authentication successful, None otherwise
        """
        user = await self.get_user_by_email(email)

        if user is None or not user.password_hash:
            return None

        if not verify_password(password, user.password_hash):
            logger.info("Failed login attempt for %s", email)
            return None

        return user

    async def verify_token(self, token: str) -> Optional[User]:
        """Return the user an access token belongs to, or None."""
        user_id = _user_id_from(decode_token(token), "access")
        if user_id is None:
            return None
        return await self.get_user_by_id(user_id)

    async def refresh_tokens(self, refresh_token: str) -> Optional[dict]:
        """Issue a new token pair from a valid refresh token."""
        user_id = _user_id_from(decode_token(refresh_token), "refresh")
        if user_id is None:
            return None

        user = await self.get_user_by_id(user_id)
        if user is None:
            return None

        return create_tokens_for_user(
            user_id=user.user_id,
            email=user.email,
            roles=[role.value for role in user.role_set],
        )
