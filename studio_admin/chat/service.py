"""
Business logic for support chat and bot notifications.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from studio_admin.auth.models import ADMIN_ROLES, User, UserRole
from studio_admin.calculator.models import CalculatorConfig, ModelValue
from studio_admin.calculator.service import compute_model_totals
from studio_admin.chat.bot import (
    GeminiResponder,
    detect_escalation,
    detect_intent,
    fallback_response,
)
from studio_admin.chat.models import (
    ChatMessage,
    ChatMessageRead,
    ChatSession,
    SenderType,
    SupportTicket,
    TicketPriority,
    TicketStatus,
)
from studio_admin.chat.security_filter import security_filter
from studio_admin.core.config import settings
from studio_admin.core.exceptions import ChatLimitError, NotFoundError, ScopeError
from studio_admin.core.logger import audit_log, logger
from studio_admin.core.utils import as_utc, round_money, utcnow
from studio_admin.periods.dates import normalize_period
from studio_admin.shop.models import Financing, FinancingInstallment, FinancingStatus, InstallmentStatus


# Sessions

def _session_expired(chat_session: ChatSession, now: datetime) -> bool:
    return as_utc(chat_session.last_activity) < now - timedelta(minutes=settings.CHATBOT_SESSION_MINUTES)


def get_or_create_session(db: Session, user: User, session_id: Optional[str], now: datetime) -> ChatSession:
    """
    An explicit session must belong to the caller and still be usable.
    Without one, the latest live session is reused or a new one is opened.
    """
    if session_id:
        chat_session = db.query(ChatSession).filter(ChatSession.id == session_id).first()
        if not chat_session:
            raise NotFoundError("Chat session not found")
        if chat_session.user_id != user.id:
            raise ScopeError("Chat session belongs to another user")
        check_limits(db, chat_session, now)
        return chat_session

    chat_session = db.query(ChatSession).filter(
        ChatSession.user_id == user.id,
        ChatSession.is_active == True,  # noqa: E712
    ).order_by(ChatSession.last_activity.desc()).first()

    if chat_session and not _session_expired(chat_session, now) \
            and chat_session.message_count < settings.CHATBOT_MAX_MSGS:
        return chat_session
    if chat_session:
        chat_session.is_active = False

    chat_session = ChatSession(user_id=user.id, last_activity=now)
    db.add(chat_session)
    db.commit()
    db.refresh(chat_session)
    logger.info(f"Chat session opened: {chat_session.id}")
    return chat_session


def check_limits(db: Session, chat_session: ChatSession, now: datetime) -> None:
    if not chat_session.is_active:
        raise ChatLimitError("Chat session closed; start a new one")
    if chat_session.message_count >= settings.CHATBOT_MAX_MSGS:
        raise ChatLimitError(f"Message limit of {settings.CHATBOT_MAX_MSGS} reached for this session")
    if _session_expired(chat_session, now):
        chat_session.is_active = False
        db.commit()
        raise ChatLimitError(f"Session expired after {settings.CHATBOT_SESSION_MINUTES} minutes of inactivity")


def _save_message(
    db: Session,
    chat_session: ChatSession,
    sender_type: SenderType,
    sender_id: Optional[str],
    text: str,
    kind: str = "message",
) -> ChatMessage:
    message = ChatMessage(
        session_id=chat_session.id,
        sender_type=sender_type,
        sender_id=sender_id,
        kind=kind,
        message=text,
    )
    db.add(message)
    return message


# Notifications

def send_bot_notification(db: Session, user_id: str, kind: str, text: str) -> ChatMessage:
    """Drops a bot message into the user's live session, opening one if needed."""
    chat_session = db.query(ChatSession).filter(
        ChatSession.user_id == user_id,
        ChatSession.is_active == True,  # noqa: E712
    ).order_by(ChatSession.last_activity.desc()).first()
    if not chat_session:
        chat_session = ChatSession(user_id=user_id)
        db.add(chat_session)
        db.flush()

    message = _save_message(db, chat_session, SenderType.BOT, None, text, kind=kind)
    db.commit()
    logger.info(f"Bot notification '{kind}' sent to user {user_id}")
    return message


def admins_for(db: Session, user: User) -> List[User]:
    """Admins of the user's studio plus every super admin."""
    return db.query(User).filter(
        User.is_active == True,  # noqa: E712
        User.role.in_(ADMIN_ROLES),
        (User.role == UserRole.SUPER_ADMIN) | (User.affiliate_studio_id == user.affiliate_studio_id),
    ).all()


def notify_admins(db: Session, user: User, kind: str, text: str) -> int:
    admins = admins_for(db, user)
    for admin in admins:
        send_bot_notification(db, admin.id, kind, text)
    return len(admins)


# Conversation

def _escalate(db: Session, chat_session: ChatSession, user: User, message: str, reason: str, priority: str) -> SupportTicket:
    ticket = SupportTicket(
        session_id=chat_session.id,
        user_id=user.id,
        title=f"Escalamiento: {reason}",
        description=security_filter.sanitize_message(message, [user.name])[:2000],
        priority=TicketPriority(priority),
    )
    chat_session.escalated = True
    chat_session.escalated_at = utcnow()
    db.add(ticket)
    db.commit()
    db.refresh(ticket)

    notify_admins(
        db,
        user,
        "escalation",
        f"Nuevo ticket {ticket.priority.value}: {ticket.title}. Revisa la bandeja de soporte.",
    )
    audit_log(
        action="chat_escalated",
        user=user.id,
        resource=f"ticket_id={ticket.id}",
        details={"reason": reason, "priority": priority}
    )
    return ticket


def _totals_reply(db: Session, user: User, today) -> str:
    period_date, period_type = normalize_period(today)
    result = compute_model_totals(db, user, period_date=period_date)
    if not result.per_platform:
        return "Aún no encuentro valores registrados para esta quincena. Ingresa tus valores en la calculadora."
    return (
        f"Totales de la quincena {period_type} ({period_date.isoformat()}):\n"
        f"- USD bruto: {round_money(result.total_usd_bruto)}\n"
        f"- USD modelo: {round_money(result.total_usd_modelo)}\n"
        f"- COP modelo: {round_money(result.total_cop_modelo)}"
    )


def _financing_reply(db: Session, user: User) -> str:
    pending = db.query(FinancingInstallment).join(
        Financing, Financing.id == FinancingInstallment.financing_id
    ).filter(
        Financing.model_id == user.id,
        Financing.status == FinancingStatus.APPROVED,
        FinancingInstallment.status == InstallmentStatus.PENDING,
    ).order_by(FinancingInstallment.period_date).all()
    if not pending:
        return "No tienes cuotas pendientes."
    lines = [f"- {i.period_date.isoformat()} ({i.period_type}): COP {i.amount}" for i in pending[:6]]
    return "Tus próximas cuotas:\n" + "\n".join(lines)


def _llm_reply(
    db: Session,
    user: User,
    chat_session: ChatSession,
    message: str,
    responder: GeminiResponder,
    today,
    current_message_id: Optional[str] = None,
) -> str:
    """Generative answer. The message being answered is sent once, never repeated in the history."""
    period_date, _ = normalize_period(today)
    config = db.query(CalculatorConfig).filter(CalculatorConfig.model_id == user.id).first()
    has_values = db.query(ModelValue.id).filter(
        ModelValue.model_id == user.id,
        ModelValue.period_date == period_date,
    ).first() is not None
    open_tickets = db.query(SupportTicket).filter(
        SupportTicket.user_id == user.id,
        SupportTicket.status == TicketStatus.OPEN,
    ).count()

    safe_context = security_filter.create_safe_context(
        role=user.role.value,
        has_calculator_config=config is not None,
        enabled_platform_count=len(config.enabled_platforms) if config else 0,
        has_values_this_period=has_values,
        open_ticket_count=open_tickets,
    )
    names = [user.name]
    history: List[str] = []
    if settings.CHATBOT_MODE != "ultra_safe":
        recent = db.query(ChatMessage).filter(
            ChatMessage.session_id == chat_session.id,
            ChatMessage.id != current_message_id,
        ).order_by(ChatMessage.created_at.desc()).limit(6).all()
        history = [
            f"{m.sender_type.value}: {security_filter.sanitize_message(m.message, names)}"
            for m in reversed(recent)
        ]

    prompt = security_filter.build_safe_prompt(
        safe_context,
        security_filter.sanitize_message(message, names),
        history,
    )
    reply = responder.generate(prompt)
    return security_filter.sanitize_message(reply, names) or fallback_response(message, user.name, user.role.value)


def send_message(
    db: Session,
    user: User,
    message: str,
    session_id: Optional[str] = None,
    responder: Optional[GeminiResponder] = None,
    now: Optional[datetime] = None,
    today=None,
) -> Dict[str, Any]:
    """
    Stores the user's message and answers it.

    Order: limits, escalation, read-only intents, generative answer when a
    responder is available, keyword fallback otherwise.
    """
    now = now or utcnow()
    today = today or now.date()
    chat_session = get_or_create_session(db, user, session_id, now)
    check_limits(db, chat_session, now)

    user_message = _save_message(db, chat_session, SenderType.USER, user.id, message)
    chat_session.message_count += 1
    chat_session.last_activity = now
    db.commit()

    ticket: Optional[SupportTicket] = None
    if settings.CHATBOT_ENABLE_ESCALATION and not chat_session.escalated:
        decision = detect_escalation(message, chat_session.message_count)
        if decision.should_escalate:
            ticket = _escalate(db, chat_session, user, message, decision.reason, decision.priority)

    if ticket:
        reply = (
            "He escalado tu consulta a un administrador. Un miembro del equipo te contactará pronto. "
            f"Número de ticket: {ticket.id[:8]}"
        )
    else:
        intent = detect_intent(message, user.role.value)
        if intent == "totals":
            reply = _totals_reply(db, user, today)
        elif intent == "financing":
            reply = _financing_reply(db, user)
        elif intent == "ticket":
            reply = "Puedo crear un ticket de soporte con tu descripción. Escribe 'hablar con admin' para escalar."
        elif responder is not None:
            try:
                reply = _llm_reply(db, user, chat_session, message, responder, today, user_message.id)
            except Exception as e:
                logger.error(f"Generative reply failed, using fallback: {str(e)}", exc_info=True)
                reply = fallback_response(message, user.name, user.role.value)
        else:
            reply = fallback_response(message, user.name, user.role.value)

    bot_message = _save_message(db, chat_session, SenderType.BOT, None, reply)
    db.commit()
    db.refresh(bot_message)

    return {
        "session_id": chat_session.id,
        "reply": reply,
        "message_id": bot_message.id,
        "escalated": ticket is not None,
        "ticket_id": ticket.id if ticket else None,
        "message_count": chat_session.message_count,
    }


def _visible_session(db: Session, actor: User, session_id: str) -> ChatSession:
    chat_session = db.query(ChatSession).filter(ChatSession.id == session_id).first()
    if not chat_session:
        raise NotFoundError("Chat session not found")
    if chat_session.user_id != actor.id and not actor.is_admin:
        raise ScopeError("Chat session belongs to another user")
    return chat_session


def list_sessions(db: Session, actor: User) -> List[ChatSession]:
    return db.query(ChatSession).filter(
        ChatSession.user_id == actor.id
    ).order_by(ChatSession.last_activity.desc()).all()


def list_messages(db: Session, actor: User, session_id: str) -> List[ChatMessage]:
    chat_session = _visible_session(db, actor, session_id)
    return db.query(ChatMessage).filter(
        ChatMessage.session_id == chat_session.id
    ).order_by(ChatMessage.created_at, ChatMessage.id).all()


def post_admin_message(db: Session, actor: User, session_id: str, text: str) -> ChatMessage:
    chat_session = _visible_session(db, actor, session_id)
    message = _save_message(db, chat_session, SenderType.ADMIN, actor.id, text)
    chat_session.last_activity = utcnow()
    db.commit()
    db.refresh(message)
    return message


def mark_read(db: Session, actor: User, session_id: str) -> int:
    """
    Records receipts for messages the actor did not send. Only missing
    (message_id, user_id) pairs are inserted; a concurrent duplicate is ignored.
    """
    chat_session = _visible_session(db, actor, session_id)
    already = db.query(ChatMessageRead.message_id).join(
        ChatMessage, ChatMessage.id == ChatMessageRead.message_id
    ).filter(
        ChatMessage.session_id == chat_session.id,
        ChatMessageRead.user_id == actor.id,
    )
    unread = db.query(ChatMessage.id).filter(
        ChatMessage.session_id == chat_session.id,
        (ChatMessage.sender_id.is_(None)) | (ChatMessage.sender_id != actor.id),
        ChatMessage.id.notin_(already),
    ).all()

    inserted = 0
    for (message_id,) in unread:
        try:
            with db.begin_nested():
                db.add(ChatMessageRead(message_id=message_id, user_id=actor.id))
            inserted += 1
        except IntegrityError:
            logger.info(f"Read receipt already present: message={message_id}, user={actor.id}")
    db.commit()
    return inserted


# Tickets

def list_tickets(db: Session, actor: User, status: Optional[TicketStatus] = None) -> List[SupportTicket]:
    query = db.query(SupportTicket)
    if actor.role != UserRole.SUPER_ADMIN:
        query = query.join(User, User.id == SupportTicket.user_id).filter(
            User.affiliate_studio_id == actor.affiliate_studio_id
        )
    if status:
        query = query.filter(SupportTicket.status == status)
    return query.order_by(SupportTicket.created_at.desc()).all()


def resolve_ticket(db: Session, actor: User, ticket_id: str) -> SupportTicket:
    ticket = db.query(SupportTicket).filter(SupportTicket.id == ticket_id).first()
    if not ticket:
        raise NotFoundError("Ticket not found")
    owner = db.query(User).filter(User.id == ticket.user_id).first()
    if owner and actor.role != UserRole.SUPER_ADMIN and owner.affiliate_studio_id != actor.affiliate_studio_id:
        raise ScopeError("Ticket belongs to another studio")
    ticket.status = TicketStatus.RESOLVED
    ticket.resolved_by = actor.id
    db.commit()
    db.refresh(ticket)
    send_bot_notification(db, ticket.user_id, "ticket_resolved", "Tu ticket de soporte fue resuelto por un administrador.")
    audit_log(action="ticket_resolved", user=actor.id, resource=f"ticket_id={ticket.id}")
    return ticket


# Maintenance

def cleanup_sessions(db: Session, now: Optional[datetime] = None) -> Dict[str, int]:
    """Closes idle sessions and drops conversations past retention unless escalated."""
    now = now or utcnow()
    idle_cutoff = now - timedelta(minutes=settings.CHATBOT_SESSION_MINUTES)
    retention_cutoff = now - timedelta(hours=settings.CHAT_RETENTION_HOURS)

    closed = db.query(ChatSession).filter(
        ChatSession.is_active == True,  # noqa: E712
        ChatSession.last_activity < idle_cutoff,
    ).update({ChatSession.is_active: False}, synchronize_session=False)

    expired_ids = [row[0] for row in db.query(ChatSession.id).filter(
        ChatSession.is_active == False,  # noqa: E712
        ChatSession.escalated == False,  # noqa: E712
        ChatSession.last_activity < retention_cutoff,
    ).all()]

    deleted_messages = 0
    if expired_ids:
        message_ids = db.query(ChatMessage.id).filter(ChatMessage.session_id.in_(expired_ids))
        db.query(ChatMessageRead).filter(
            ChatMessageRead.message_id.in_(message_ids)
        ).delete(synchronize_session=False)
        deleted_messages = db.query(ChatMessage).filter(
            ChatMessage.session_id.in_(expired_ids)
        ).delete(synchronize_session=False)
        db.query(ChatSession).filter(ChatSession.id.in_(expired_ids)).delete(synchronize_session=False)
    db.commit()

    logger.info(f"Chat cleanup: closed={closed}, sessions_deleted={len(expired_ids)}, messages_deleted={deleted_messages}")
    return {"sessions_closed": closed, "sessions_deleted": len(expired_ids), "messages_deleted": deleted_messages}
