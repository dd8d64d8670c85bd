"""Shared API dependencies for authentication and engine components."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from parley.core.errors import (
    DeliveryError,
    NotFoundError,
    PermissionDeniedError,
    TransientStoreError,
    ValidationError,
)
from parley.core.security import decode_user_id
from parley.db.session import get_db
from parley.models import User
from parley.services.delivery import DeliveryRouter
from parley.services.presence import PresenceRegistry
from parley.services.scheduler import LifecycleScheduler

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]

_ERROR_STATUS: dict[type[DeliveryError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
    TransientStoreError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def http_error(exc: DeliveryError) -> HTTPException:
    """Translate a core failure into the matching HTTP error."""
    status_code = _ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(status_code=status_code, detail=exc.message)


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    db: SessionDep,
) -> User:
    """Get the current authenticated user from a bearer token.

    Raises:
        HTTPException: If the token is invalid or the user does not exist.
    """
    user_id = decode_user_id(credentials.credentials)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


def get_presence(request: Request) -> PresenceRegistry:
    """Return the application's presence registry."""
    return request.app.state.presence


def get_router(request: Request) -> DeliveryRouter:
    """Return the application's delivery router."""
    return request.app.state.router


def get_scheduler(request: Request) -> LifecycleScheduler:
    """Return the application's lifecycle scheduler."""
    return request.app.state.scheduler


# Type aliases for dependency injection
CurrentUserDep = Annotated[User, Depends(get_current_user)]
PresenceDep = Annotated[PresenceRegistry, Depends(get_presence)]
RouterDep = Annotated[DeliveryRouter, Depends(get_router)]
SchedulerDep = Annotated[LifecycleScheduler, Depends(get_scheduler)]
