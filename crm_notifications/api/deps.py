"""
FastAPI Dependencies

Provides dependency injection for database sessions, authentication,
the notification repository and the realtime connection manager.

SECURITY NOTES:
- JWT payloads are never logged
- Bearer token is the primary auth method (SPA-friendly, no CSRF needed)
- WebSocket clients pass the same JWT as a ``token`` query parameter
"""

from typing import Annotated, Optional
from fastapi import Depends, HTTPException, Request, status, Cookie
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from jose import JWTError, jwt
from datetime import timedelta
import logging

from crm_notifications.database import get_db, async_session_maker
from crm_notifications.config import settings
from crm_notifications.models.user import User
from crm_notifications.services.event_sources import InMemoryEventSource
from crm_notifications.services.notification_producer import NotificationProducer
from crm_notifications.services.notification_repository import NotificationRepository
from crm_notifications.services.websocket_manager import NotificationConnectionManager
from crm_notifications.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


# HTTP Bearer for JWT - primary auth method
security = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_user_id(token: str) -> Optional[int]:
    """Return the ``sub`` claim as a user id, or None for any invalid token."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        # SECURITY: Never log JWT payloads - they contain sensitive data
        sub = payload.get("sub")
        return int(sub) if sub is not None else None
    except JWTError:
        logger.warning("JWT validation failed")
    except (TypeError, ValueError):
        logger.warning("Invalid token format")
    return None


async def get_current_user(
    db: Annotated[AsyncSession, Depends(get_db)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
    session_token: Annotated[str | None, Cookie(alias="session")] = None,
) -> User:
    """
    Get current user from JWT token or session cookie.

    SECURITY:
    - Bearer token is preferred (no CSRF vulnerability)
    - Session cookie supported for browser convenience
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token = credentials.credentials if credentials else session_token
    if not token:
        raise credentials_exception

    user_id = decode_user_id(token)
    if user_id is None:
        raise credentials_exception

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise credentials_exception
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is disabled")

    logger.debug("User authenticated", extra={"user_id": user.id})
    return user


async def get_current_user_ws(token: Optional[str], session_factory=async_session_maker) -> Optional[User]:
    """Resolve the user for a WebSocket handshake; None rejects the connection."""
    if not token:
        return None
    user_id = decode_user_id(token)
    if user_id is None:
        return None
    async with session_factory() as db:
        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        return None
    return user


def get_repository(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> NotificationRepository:
    return NotificationRepository(db, current_user.id)


def get_connection_manager(request: Request) -> NotificationConnectionManager:
    return request.app.state.connection_manager


def get_producer(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> NotificationProducer:
    """Producer wired to the in-process feed; Postgres is fed by its insert trigger."""
    event_source = request.app.state.event_source
    announce = event_source.publish if isinstance(event_source, InMemoryEventSource) else None
    return NotificationProducer(db, announce=announce)


# Type aliases for dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentUser = Annotated[User, Depends(get_current_user)]
Repository = Annotated[NotificationRepository, Depends(get_repository)]
Producer = Annotated[NotificationProducer, Depends(get_producer)]
ConnectionManager = Annotated[NotificationConnectionManager, Depends(get_connection_manager)]
