from typing import Callable, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from jose import JWTError
from sqlalchemy.orm import Session

from studio_admin.auth.models import ADMIN_ROLES, User, UserRole
from studio_admin.core.config import settings
from studio_admin.core.database import get_db
from studio_admin.core.logger import logger
from studio_admin.core.security import decode_access_token, secrets_match


def _extract_token(request: Request) -> Optional[str]:
    """Bearer header first, then the access_token cookie."""
    header = request.headers.get("Authorization")
    if header:
        scheme, _, param = header.partition(" ")
        if scheme.lower() == "bearer" and param:
            return param.strip()
    cookie = request.cookies.get("access_token")
    if cookie:
        scheme, _, param = cookie.partition(" ")
        return (param or scheme).strip()
    return None


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    """
    Resolves the caller from the bearer token and loads the users row.
    Deactivated accounts are rejected even when the token is still valid.
    """
    token = _extract_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(token)
        user_id = payload.get("sub")
        if not user_id or not isinstance(user_id, str):
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        raise credentials_exception

    return user


def require_roles(*roles: UserRole) -> Callable[..., User]:
    """Builds a dependency that admits only the given roles."""

    def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions"
            )
        return user

    return dependency


require_admin = require_roles(*ADMIN_ROLES)
require_super_admin = require_roles(UserRole.SUPER_ADMIN)
require_model = require_roles(UserRole.MODEL)


def require_cron_secret(
    authorization: Optional[str] = Header(default=None),
    x_cron_secret: Optional[str] = Header(default=None),
) -> None:
    """Scheduled triggers authenticate with the shared cron secret."""
    provided = x_cron_secret
    if not provided and authorization:
        scheme, _, param = authorization.partition(" ")
        if scheme.lower() == "bearer":
            provided = param.strip()
    if not secrets_match(provided, settings.CRON_SECRET):
        logger.warning("Rejected scheduled trigger with invalid secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cron secret")


def require_emergency_secret(x_emergency_secret: Optional[str] = Header(default=None)) -> None:
    if not secrets_match(x_emergency_secret, settings.EMERGENCY_UNFREEZE_SECRET):
        logger.warning("Rejected emergency unfreeze with invalid secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid emergency secret")


def is_testing_mode(x_testing_mode: Optional[str] = Header(default=None)) -> bool:
    """`x-testing-mode: true` bypasses the wall-clock windows of scheduled jobs."""
    return (x_testing_mode or "").strip().lower() == "true"
