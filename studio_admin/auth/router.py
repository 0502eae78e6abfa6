"""
Authentication, user administration and affiliate studio endpoints.
"""
from datetime import timedelta
from typing import List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Header, HTTPException, Response
from sqlalchemy.orm import Session

from studio_admin.auth import service
from studio_admin.auth.dependencies import get_current_user, require_admin, require_super_admin
from studio_admin.auth.models import User, UserRole
from studio_admin.auth.schemas import (
    AffiliateCreate,
    AffiliateResponse,
    TokenResponse,
    UserCreate,
    UserLogin,
    UserResponse,
    UserUpdate,
)
from studio_admin.core.config import settings
from studio_admin.core.database import get_db
from studio_admin.core.errors import DOMAIN_ERRORS, to_http_exception
from studio_admin.core.logger import get_logger_with_correlation
from studio_admin.core.security import create_access_token, mask_sensitive_data

router = APIRouter(tags=["Auth"])
users_router = APIRouter(tags=["Users"])
affiliates_router = APIRouter(tags=["Affiliates"])


@router.post("/login", response_model=TokenResponse)
def login(
    response: Response,
    user_in: UserLogin,
    db: Session = Depends(get_db),
    x_correlation_id: Optional[str] = Header(default=None)
) -> TokenResponse:
    logger = get_logger_with_correlation(x_correlation_id or str(uuid4()))
    user = service.authenticate(db, user_in.email, user_in.password)
    if not user:
        logger.info(f"Login rejected: email={mask_sensitive_data(user_in.email)}")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    access_token = create_access_token(
        data={"sub": user.id, "role": user.role.value},
        expires_delta=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )

    response.set_cookie(
        key="access_token",
        value=f"Bearer {access_token}",
        httponly=True,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )
    logger.info(f"Login ok: user_id={user.id}")
    return TokenResponse(access_token=access_token, name=user.name, role=user.role)


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie("access_token")
    return {"success": True, "message": "Logged out"}


@router.get("/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> User:
    return current_user


@users_router.get("", response_model=List[UserResponse])
def list_users(
    role: Optional[UserRole] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
) -> List[User]:
    return service.list_users(db, current_user, role)


@users_router.post("", response_model=UserResponse, status_code=201)
def create_user(
    data: UserCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
    x_correlation_id: Optional[str] = Header(default=None)
) -> User:
    logger = get_logger_with_correlation(x_correlation_id or str(uuid4()))
    try:
        user = service.create_user(db, current_user, data)
        logger.info(f"User created: id={user.id}, role={user.role.value}")
        return user
    except DOMAIN_ERRORS as e:
        logger.warning(f"User creation rejected: {str(e)}")
        raise to_http_exception(e)


@users_router.patch("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: str,
    data: UserUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
) -> User:
    try:
        return service.update_user(db, current_user, user_id, data)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@users_router.delete("/{user_id}", response_model=UserResponse)
def deactivate_user(
    user_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
) -> User:
    try:
        return service.deactivate_user(db, current_user, user_id)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@affiliates_router.get("", response_model=List[AffiliateResponse])
def list_affiliates(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_super_admin)
):
    return service.list_affiliates(db)


@affiliates_router.post("", response_model=AffiliateResponse, status_code=201)
def create_affiliate(
    data: AffiliateCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_super_admin)
):
    try:
        return service.create_affiliate(db, current_user, data.name)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)
