"""
Chat endpoints: bot conversation, message history, read receipts and the
admin support inbox.
"""
from typing import List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from studio_admin.auth.dependencies import get_current_user, require_admin
from studio_admin.auth.models import User
from studio_admin.chat import service
from studio_admin.chat.bot import build_responder
from studio_admin.chat.models import TicketStatus
from studio_admin.chat.schemas import (
    AdminMessageRequest,
    ChatReply,
    ChatRequest,
    MarkReadRequest,
    MessageResponse,
    SessionResponse,
    TicketResponse,
    TicketUpdate,
)
from studio_admin.core.database import get_db
from studio_admin.core.errors import DOMAIN_ERRORS, to_http_exception
from studio_admin.core.logger import get_logger_with_correlation
from studio_admin.core.utils import now_in_business_tz

router = APIRouter(tags=["Chat"])


@router.post("", response_model=ChatReply)
def send_message(
    data: ChatRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    x_correlation_id: Optional[str] = Header(default=None)
):
    """
    Sends a message to the support bot.

    Sessions expire after inactivity or once the message limit is reached (429).
    Urgent messages and explicit requests open a support ticket.
    """
    logger = get_logger_with_correlation(x_correlation_id or str(uuid4()))
    try:
        result = service.send_message(
            db,
            current_user,
            data.message,
            session_id=data.session_id,
            responder=build_responder(),
            today=now_in_business_tz().date(),
        )
        if result["escalated"]:
            logger.info(f"Chat escalated: session={result['session_id']}, ticket={result['ticket_id']}")
        return result
    except DOMAIN_ERRORS as e:
        logger.warning(f"Chat message rejected: {str(e)}")
        raise to_http_exception(e)


@router.get("/sessions", response_model=List[SessionResponse])
def list_sessions(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return service.list_sessions(db, current_user)


@router.get("/messages", response_model=List[MessageResponse])
def list_messages(
    session_id: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        return service.list_messages(db, current_user, session_id)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@router.post("/messages", response_model=MessageResponse, status_code=201)
def post_admin_message(
    data: AdminMessageRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    try:
        return service.post_admin_message(db, current_user, data.session_id, data.message)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@router.post("/messages/read")
def mark_read(
    data: MarkReadRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        return {"success": True, "marked": service.mark_read(db, current_user, data.session_id)}
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)


@router.get("/tickets", response_model=List[TicketResponse])
def list_tickets(
    status: Optional[TicketStatus] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    return service.list_tickets(db, current_user, status)


@router.patch("/tickets/{ticket_id}", response_model=TicketResponse)
def update_ticket(
    ticket_id: str,
    data: TicketUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    try:
        if data.status != TicketStatus.RESOLVED:
            raise ValueError("Tickets can only be resolved")
        return service.resolve_ticket(db, current_user, ticket_id)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)
