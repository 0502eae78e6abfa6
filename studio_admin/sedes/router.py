"""
Endpoints for sedes, rooms and jornada assignments.
"""
from typing import List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from studio_admin.auth.dependencies import get_current_user, require_admin
from studio_admin.auth.models import User
from studio_admin.core.database import get_db
from studio_admin.core.errors import DOMAIN_ERRORS, to_http_exception
from studio_admin.core.logger import get_logger_with_correlation
from studio_admin.sedes import service
from studio_admin.sedes.schemas import (
    AssignmentRequest,
    AssignmentResponse,
    GroupCreate,
    GroupResponse,
    GroupUpdate,
    RoomCreate,
    RoomResponse,
)

groups_router = APIRouter(tags=["Groups"])
rooms_router = APIRouter(tags=["Rooms"])
assignments_router = APIRouter(tags=["Assignments"])


@groups_router.get("", response_model=List[GroupResponse])
def list_groups(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return service.list_groups(db)


@groups_router.post("", response_model=GroupResponse, status_code=201)
def create_group(
    data: GroupCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    try:
        return service.create_group(db, current_user, data)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@groups_router.patch("/{group_id}", response_model=GroupResponse)
def update_group(
    group_id: str,
    data: GroupUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    try:
        return service.update_group(db, current_user, group_id, data)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@rooms_router.get("", response_model=List[RoomResponse])
def list_rooms(
    group_id: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return service.list_rooms(db, group_id)


@rooms_router.post("", response_model=RoomResponse, status_code=201)
def create_room(
    data: RoomCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    try:
        return service.create_room(db, current_user, data.group_id, data.name)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@assignments_router.get("", response_model=List[AssignmentResponse])
def list_assignments(
    room_id: Optional[str] = None,
    model_id: Optional[str] = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    if not current_user.is_admin:
        # Models only see their own schedule
        model_id = current_user.id
    return service.list_assignments(db, current_user, room_id, model_id, include_inactive)


@assignments_router.post("", response_model=AssignmentResponse)
def create_assignment(
    data: AssignmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
    x_correlation_id: Optional[str] = Header(default=None)
):
    """
    Assigns a model to a room for a jornada.

    - **action=assign**: adds or updates the model's row for this jornada
    - **action=move**: releases every active assignment of the model first
    """
    logger = get_logger_with_correlation(x_correlation_id or str(uuid4()))
    try:
        assignment = service.assign(db, current_user, data.model_id, data.room_id, data.jornada, data.action)
        logger.info(f"Assignment stored: id={assignment.id}, action={data.action}")
        return assignment
    except DOMAIN_ERRORS as e:
        logger.warning(f"Assignment rejected: {str(e)}")
        raise to_http_exception(e)


@assignments_router.delete("/{assignment_id}", response_model=AssignmentResponse)
def delete_assignment(
    assignment_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    try:
        return service.unassign(db, current_user, assignment_id)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)
