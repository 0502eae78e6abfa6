"""
Business logic for sedes, rooms and jornada assignments.
Uniqueness of active assignments is guaranteed by partial unique indexes; the
checks here only produce friendlier errors before the database has to.
"""
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from studio_admin.auth.models import User, UserRole
from studio_admin.auth.service import ensure_same_scope
from studio_admin.core.exceptions import AssignmentConflictError, ConflictError, NotFoundError
from studio_admin.core.logger import audit_log, logger
from studio_admin.core.utils import utcnow
from studio_admin.sedes.models import Assignment, Group, Jornada, Room
from studio_admin.sedes.schemas import GroupCreate, GroupUpdate


def list_groups(db: Session) -> List[Group]:
    return db.query(Group).order_by(Group.name).all()


def get_group(db: Session, group_id: str) -> Group:
    group = db.query(Group).filter(Group.id == group_id).first()
    if not group:
        raise NotFoundError("Group not found")
    return group


def create_group(db: Session, actor: User, data: GroupCreate) -> Group:
    group = Group(name=data.name, percentage=data.percentage, min_quota_usd=data.min_quota_usd)
    db.add(group)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Group name already exists")
    db.refresh(group)
    audit_log(action="group_created", user=actor.id, resource=f"group_id={group.id}")
    return group


def update_group(db: Session, actor: User, group_id: str, data: GroupUpdate) -> Group:
    group = get_group(db, group_id)
    changes = data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(group, field, value)
    db.commit()
    db.refresh(group)
    audit_log(
        action="group_updated",
        user=actor.id,
        resource=f"group_id={group.id}",
        details={k: str(v) for k, v in changes.items()}
    )
    return group


def list_rooms(db: Session, group_id: Optional[str] = None) -> List[Room]:
    query = db.query(Room).filter(Room.is_active == True)  # noqa: E712
    if group_id:
        query = query.filter(Room.group_id == group_id)
    return query.order_by(Room.name).all()


def create_room(db: Session, actor: User, group_id: str, name: str) -> Room:
    get_group(db, group_id)
    room = Room(group_id=group_id, name=name)
    db.add(room)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Room already exists in this group")
    db.refresh(room)
    audit_log(action="room_created", user=actor.id, resource=f"room_id={room.id}")
    return room


def assign(
    db: Session,
    actor: User,
    model_id: str,
    room_id: str,
    jornada: Jornada,
    action: str = "assign",
) -> Assignment:
    """
    Places a model in a room for a jornada.

    `move` first releases every active assignment of the model. The model's
    active row for the jornada is then updated in place or inserted.
    """
    model = db.query(User).filter(User.id == model_id).first()
    if not model or model.role != UserRole.MODEL:
        raise NotFoundError("Model not found")
    if not model.is_active:
        raise ValueError("Model is inactive")
    ensure_same_scope(actor, model.affiliate_studio_id)

    room = db.query(Room).filter(Room.id == room_id).first()
    if not room or not room.is_active:
        raise NotFoundError("Room not found")

    holder = db.query(Assignment).filter(
        Assignment.room_id == room_id,
        Assignment.jornada == jornada,
        Assignment.is_active == True,  # noqa: E712
        Assignment.model_id != model_id,
    ).first()
    if holder:
        raise AssignmentConflictError(f"Room already assigned for jornada {jornada.value}")

    try:
        if action == "move":
            released = db.query(Assignment).filter(
                Assignment.model_id == model_id,
                Assignment.is_active == True,  # noqa: E712
            ).update({Assignment.is_active: False, Assignment.updated_at: utcnow()}, synchronize_session=False)
            logger.info(f"Move: released {released} active assignments of model {model_id}")

        updated = db.query(Assignment).filter(
            Assignment.model_id == model_id,
            Assignment.jornada == jornada,
            Assignment.is_active == True,  # noqa: E712
        ).update({
            Assignment.room_id: room_id,
            Assignment.assigned_by: actor.id,
            Assignment.updated_at: utcnow(),
        }, synchronize_session=False)

        if not updated:
            db.add(Assignment(
                model_id=model_id,
                room_id=room_id,
                jornada=jornada,
                is_active=True,
                assigned_by=actor.id,
            ))
        db.commit()
    except IntegrityError:
        db.rollback()
        raise AssignmentConflictError(f"Room or model already assigned for jornada {jornada.value}")

    assignment = db.query(Assignment).filter(
        Assignment.model_id == model_id,
        Assignment.jornada == jornada,
        Assignment.is_active == True,  # noqa: E712
    ).first()

    audit_log(
        action=f"assignment_{action}",
        user=actor.id,
        resource=f"assignment_id={assignment.id}",
        details={"model_id": model_id, "room_id": room_id, "jornada": jornada.value}
    )
    return assignment


def unassign(db: Session, actor: User, assignment_id: str) -> Assignment:
    assignment = db.query(Assignment).filter(Assignment.id == assignment_id).first()
    if not assignment:
        raise NotFoundError("Assignment not found")
    model = db.query(User).filter(User.id == assignment.model_id).first()
    ensure_same_scope(actor, model.affiliate_studio_id if model else None)
    if not assignment.is_active:
        raise ValueError("Assignment is already inactive")

    assignment.is_active = False
    db.commit()
    db.refresh(assignment)
    audit_log(action="assignment_removed", user=actor.id, resource=f"assignment_id={assignment.id}")
    return assignment


def list_assignments(
    db: Session,
    actor: User,
    room_id: Optional[str] = None,
    model_id: Optional[str] = None,
    include_inactive: bool = False,
) -> List[Assignment]:
    """Assignments visible to `actor`: every studio for super admins, their own studio otherwise."""
    query = db.query(Assignment)
    if actor.role != UserRole.SUPER_ADMIN:
        query = query.join(User, User.id == Assignment.model_id).filter(
            User.affiliate_studio_id == actor.affiliate_studio_id
        )
    if not include_inactive:
        query = query.filter(Assignment.is_active == True)  # noqa: E712
    if room_id:
        query = query.filter(Assignment.room_id == room_id)
    if model_id:
        query = query.filter(Assignment.model_id == model_id)
    return query.order_by(Assignment.assigned_at).all()


def purge_inactive_assignments(db: Session, older_than_days: int = 90) -> int:
    """Physically removes inactive assignments not touched for a while."""
    cutoff = utcnow() - timedelta(days=older_than_days)
    deleted = db.query(Assignment).filter(
        Assignment.is_active == False,  # noqa: E712
        Assignment.updated_at < cutoff,
    ).delete(synchronize_session=False)
    db.commit()
    logger.info(f"Purged {deleted} inactive assignments older than {older_than_days} days")
    return deleted
