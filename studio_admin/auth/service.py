"""
User administration and authentication.
Admins act inside their affiliate scope; super admins see every tenant.
"""
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from studio_admin.auth.models import AffiliateStudio, User, UserRole
from studio_admin.auth.schemas import UserCreate, UserUpdate
from studio_admin.core.exceptions import ConflictError, NotFoundError, ScopeError
from studio_admin.core.logger import audit_log, logger
from studio_admin.core.security import get_password_hash, verify_password


def authenticate(db: Session, email: str, password: str) -> Optional[User]:
    user = db.query(User).filter(User.email == email).first()
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


def ensure_same_scope(actor: User, target_affiliate_id: Optional[str]) -> None:
    """Admins of an affiliate may only touch rows of that affiliate."""
    if actor.role == UserRole.SUPER_ADMIN:
        return
    if actor.affiliate_studio_id != target_affiliate_id:
        raise ScopeError("Resource belongs to another studio")


def list_users(db: Session, actor: User, role: Optional[UserRole] = None) -> List[User]:
    query = db.query(User)
    if actor.role != UserRole.SUPER_ADMIN:
        query = query.filter(User.affiliate_studio_id == actor.affiliate_studio_id)
    if role:
        query = query.filter(User.role == role)
    return query.order_by(User.name).all()


def get_user(db: Session, actor: User, user_id: str) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found")
    ensure_same_scope(actor, user.affiliate_studio_id)
    return user


def create_user(db: Session, actor: User, data: UserCreate) -> User:
    if data.role == UserRole.SUPER_ADMIN and actor.role != UserRole.SUPER_ADMIN:
        raise ScopeError("Only super admins can create super admins")

    affiliate_id = data.affiliate_studio_id
    if actor.role != UserRole.SUPER_ADMIN:
        # Admins always create inside their own studio
        affiliate_id = actor.affiliate_studio_id

    user = User(
        name=data.name,
        email=data.email,
        hashed_password=get_password_hash(data.password),
        role=data.role,
        group_id=data.group_id,
        affiliate_studio_id=affiliate_id,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Email already registered")
    db.refresh(user)

    audit_log(
        action="user_created",
        user=actor.id,
        resource=f"user_id={user.id}",
        details={"role": user.role.value, "affiliate_studio_id": affiliate_id}
    )
    return user


def update_user(db: Session, actor: User, user_id: str, data: UserUpdate) -> User:
    user = get_user(db, actor, user_id)
    if data.role == UserRole.SUPER_ADMIN and actor.role != UserRole.SUPER_ADMIN:
        raise ScopeError("Only super admins can grant super admin")

    changes = data.model_dump(exclude_unset=True)
    password = changes.pop("password", None)
    for field, value in changes.items():
        setattr(user, field, value)
    if password:
        user.hashed_password = get_password_hash(password)

    db.commit()
    db.refresh(user)
    audit_log(
        action="user_updated",
        user=actor.id,
        resource=f"user_id={user.id}",
        details={"fields": sorted(changes) + (["password"] if password else [])}
    )
    return user


def deactivate_user(db: Session, actor: User, user_id: str) -> User:
    user = get_user(db, actor, user_id)
    if user.id == actor.id:
        raise ValueError("You cannot deactivate your own account")
    user.is_active = False
    db.commit()
    db.refresh(user)
    audit_log(action="user_deactivated", user=actor.id, resource=f"user_id={user.id}")
    logger.info(f"User deactivated: {user.id}")
    return user


def list_affiliates(db: Session) -> List[AffiliateStudio]:
    return db.query(AffiliateStudio).order_by(AffiliateStudio.name).all()


def create_affiliate(db: Session, actor: User, name: str) -> AffiliateStudio:
    affiliate = AffiliateStudio(name=name.strip())
    db.add(affiliate)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Affiliate studio already exists")
    db.refresh(affiliate)
    audit_log(action="affiliate_created", user=actor.id, resource=f"affiliate_id={affiliate.id}")
    return affiliate
