"""FastAPI dependencies for auth, tenant resolution and services."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.auth import decode_access_token
from app.core.background import background_tasks
from app.core.encryption import EncryptionService
from app.domain.services.handoff_service import HandoffService
from app.domain.services.webhook_analytics_service import WebhookAnalyticsService
from app.domain.services.webhook_service import WebhookDeliveryService
from app.infrastructure.notifications import dashboard_notifier
from app.infrastructure.session_cleanup import build_session_cleanup
from app.persistence.database import get_db, get_session_factory
from app.persistence.models.tenant import User
from app.persistence.repositories.user_repository import UserRepository
from app.settings import settings

security = HTTPBearer()


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Get current authenticated user from JWT token.

    Args:
        credentials: HTTP bearer credentials
        db: Database session

    Returns:
        Current user

    Raises:
        HTTPException: If authentication fails
    """
    payload = decode_access_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user_id = int(payload.get("sub"))
    except (ValueError, TypeError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    user_repo = UserRepository(db)
    user = await user_repo.get_by_id(None, user_id)  # No tenant scoping for user lookup

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    return user


async def require_tenant_context(
    current_user: Annotated[User, Depends(get_current_user)],
) -> int:
    """Return the caller's tenant id.

    The tenant is always passed explicitly to services; it is never stored
    in ambient request state.

    Raises:
        HTTPException: If the user has no tenant
    """
    if current_user.tenant_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Tenant context required",
        )
    return current_user.tenant_id


async def require_worker_token(
    x_worker_token: Annotated[str | None, Header(alias="X-Worker-Token")] = None,
) -> None:
    """Guard scheduler-triggered worker endpoints when a token is configured."""
    if settings.worker_token and x_worker_token != settings.worker_token:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid worker token",
        )


def get_webhook_service(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
) -> WebhookDeliveryService:
    """Build the delivery engine; it opens its own sessions."""
    return WebhookDeliveryService(
        session_factory,
        encryption=EncryptionService.from_settings(),
    )


def get_handoff_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    webhook_service: Annotated[WebhookDeliveryService, Depends(get_webhook_service)],
) -> HandoffService:
    return HandoffService(
        db,
        notifier=dashboard_notifier,
        background=background_tasks,
        webhook_service=webhook_service,
        session_cleanup=build_session_cleanup(),
    )


def get_webhook_analytics_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> WebhookAnalyticsService:
    return WebhookAnalyticsService(db)
