"""
Common Dependencies
===================

Shared dependencies used across the application.
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.config import settings
from tasktracker.core.errors import AuthenticationError, ErrorCodes, ForbiddenError
from tasktracker.core.security import api_key_matches
from tasktracker.db.session import get_db
from tasktracker.models.user import User
from tasktracker.services.auth_service import AuthService
from tasktracker.services.cache import TaskCache, get_task_cache
from tasktracker.services.external_sync import ExternalTodoClient, TaskSyncReconciler
from tasktracker.services.notifications import TaskNotifier, get_notifier
from tasktracker.services.task_service import TaskService

logger = logging.getLogger(__name__)

# Database session dependency
DBSession = Annotated[AsyncSession, Depends(get_db)]

# Security scheme for JWT authentication
security = HTTPBearer(auto_error=False)


# =============================================================================
# User resolution
# =============================================================================

async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: DBSession,
) -> User:
    """
    Get current authenticated user.

    Raises 401 if not authenticated or token is invalid.
    """
    if credentials is None:
        raise AuthenticationError(
            code=ErrorCodes.AUTH_TOKEN_EXPIRED,
            message="Not authenticated",
        )

    user = await AuthService(db).verify_token(credentials.credentials)

    if user is None:
        raise AuthenticationError(
            code=ErrorCodes.AUTH_INVALID_TOKEN,
            message="Invalid or expired token",
        )

    return user


# Type alias for authenticated user dependency
CurrentUser = Annotated[User, Depends(get_current_user)]


# =============================================================================
# Services
# =============================================================================

def get_external_client() -> ExternalTodoClient:
    """External todo client built from settings."""
    return ExternalTodoClient()


async def get_task_service(
    db: DBSession,
    cache: Annotated[TaskCache, Depends(get_task_cache)],
    notifier: Annotated[TaskNotifier, Depends(get_notifier)],
) -> TaskService:
    return TaskService(db, cache=cache, notifier=notifier)


async def get_sync_reconciler(
    db: DBSession,
    cache: Annotated[TaskCache, Depends(get_task_cache)],
    client: Annotated[ExternalTodoClient, Depends(get_external_client)],
) -> TaskSyncReconciler:
    return TaskSyncReconciler(db, client=client, cache=cache)


TaskServiceDep = Annotated[TaskService, Depends(get_task_service)]
SyncReconcilerDep = Annotated[TaskSyncReconciler, Depends(get_sync_reconciler)]


# =============================================================================
# API key gate
# =============================================================================

async def require_populate_key(
    x_api_key: Annotated[Optional[str], Header(alias="X-API-KEY")] = None,
) -> None:
    """
    Reject requests whose ``X-API-KEY`` header does not match the configured
    populate key. An unset key disables the endpoint.
    """
    if not api_key_matches(x_api_key, settings.API_POPULATE_KEY):
        logger.warning("Rejected populate request with invalid API key")
        raise ForbiddenError(
            code=ErrorCodes.INVALID_API_KEY,
            message="Invalid API key",
        )
