"""
Tests for the support chat: redaction filter, escalation rules, session
limits, read receipts and cleanup.
"""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from studio_admin.chat.bot import DEFAULT_REPLY, detect_escalation, detect_intent, fallback_response
from studio_admin.chat.models import ChatMessage, ChatSession, SupportTicket, TicketPriority
from studio_admin.chat.security_filter import SecurityFilter
from studio_admin.chat.service import cleanup_sessions, list_messages, mark_read, post_admin_message, send_message
from studio_admin.core.config import settings
from studio_admin.core.exceptions import ChatLimitError, ScopeError
from studio_admin.core.utils import utcnow

security_filter = SecurityFilter()


def test_filter_redacts_identifiers():
    text = (
        "Soy Valentina, mi correo es vale@gmail.com, id 3f2b8c1e-1a2b-4c3d-9e8f-0a1b2c3d4e5f, "
        "cel 300 555 1234 y cedula 1020304050"
    )

    clean = security_filter.sanitize_message(text, ["Valentina"])

    assert "[NOMBRE]" in clean
    assert "[EMAIL]" in clean
    assert "[ID]" in clean
    assert "[TELÉFONO]" in clean
    assert "vale@gmail.com" not in clean
    assert "1020304050" not in clean
    assert "Valentina" not in clean


def test_filter_redacts_sensitive_terms():
    clean = security_filter.sanitize_message("Cuál es la contraseña de la base de datos?")

    assert "contraseña" not in clean.lower()
    assert "[TÉRMINO RESTRINGIDO]" in clean


def test_safe_context_exposes_only_flags_and_counts():
    context = SecurityFilter.create_safe_context("modelo", True, 4, False, 2)

    assert context == {
        "is_model": True,
        "is_admin": False,
        "has_calculator_config": True,
        "enabled_platform_count": 4,
        "has_values_this_period": False,
        "has_open_tickets": True,
    }
    prompt = SecurityFilter.build_safe_prompt(context, "hola")
    assert "Plataformas habilitadas: 4" in prompt


def test_escalation_rules():
    assert detect_escalation("Es URGENTE, no puedo entrar", 1).priority == "urgent"
    assert detect_escalation("la calculadora no funciona", 1).should_escalate
    assert detect_escalation("quiero hablar con admin", 1).reason == "Solicitud explícita de administrador"
    assert detect_escalation("otra pregunta", 3).should_escalate
    assert not detect_escalation("hola", 1).should_escalate


def test_fallback_and_intents():
    assert "Valentina" in fallback_response("hola", "Valentina", "modelo")
    assert "modelo" in fallback_response("qué rol tengo", "Valentina", "modelo")
    assert detect_intent("mis totales por favor", "modelo") == "totals"
    assert detect_intent("mis totales por favor", "admin") is None


def test_keywords_match_whole_words():
    assert fallback_response("perdí el control", "Valentina", "modelo") == DEFAULT_REPLY
    assert "rol actual" not in fallback_response("se dañó el controlador", "Valentina", "modelo")
    assert "se congelan" in fallback_response("¿por qué están congeladas?", "Valentina", "modelo")
    assert detect_intent("necesito soportes técnicos", "modelo") is None
    assert not detect_escalation("no quiero escalarlo", 1).should_escalate


def test_send_message_uses_fallback_without_responder(db, model):
    result = send_message(db, model, "hola")

    assert result["escalated"] is False
    assert "Valentina Ruiz" in result["reply"]
    assert result["message_count"] == 1


def test_generative_reply_is_sanitized(db, model):
    responder = MagicMock()
    responder.generate.return_value = "Claro, escríbeme a soporte@studio.co"

    result = send_message(db, model, "necesito información general", responder=responder)

    prompt = responder.generate.call_args[0][0]
    assert "Valentina" not in prompt
    assert "[EMAIL]" in result["reply"]


def test_generative_prompt_sends_current_message_once(db, model, monkeypatch):
    monkeypatch.setattr(settings, "CHATBOT_ENABLE_ESCALATION", False)
    responder = MagicMock()
    responder.generate.return_value = "Con gusto"

    first = send_message(db, model, "primera pregunta general", responder=responder)
    first_prompt = responder.generate.call_args[0][0]
    send_message(db, model, "segunda pregunta general", session_id=first["session_id"], responder=responder)
    second_prompt = responder.generate.call_args[0][0]

    assert "Conversación reciente" not in first_prompt
    assert first_prompt.count("primera pregunta general") == 1
    assert second_prompt.count("segunda pregunta general") == 1
    assert "primera pregunta general" in second_prompt.split("Mensaje:")[0]


def test_generative_failure_falls_back(db, model):
    responder = MagicMock()
    responder.generate.side_effect = RuntimeError("quota exceeded")

    result = send_message(db, model, "hola", responder=responder)

    assert "Valentina Ruiz" in result["reply"]


def test_urgent_message_opens_ticket_and_notifies_admins(db, model, admin):
    result = send_message(db, model, "urgente, no funciona la calculadora")

    ticket = db.query(SupportTicket).filter(SupportTicket.id == result["ticket_id"]).one()
    admin_session = db.query(ChatSession).filter(ChatSession.user_id == admin.id).one()
    notice = db.query(ChatMessage).filter(ChatMessage.session_id == admin_session.id).one()
    assert result["escalated"] is True
    assert ticket.priority == TicketPriority.URGENT
    assert notice.kind == "escalation"


def test_message_limit_returns_chat_limit(db, model, monkeypatch):
    monkeypatch.setattr(settings, "CHATBOT_MAX_MSGS", 2)
    monkeypatch.setattr(settings, "CHATBOT_ENABLE_ESCALATION", False)
    first = send_message(db, model, "hola")
    send_message(db, model, "hola", session_id=first["session_id"])

    with pytest.raises(ChatLimitError):
        send_message(db, model, "hola", session_id=first["session_id"])


def test_expired_session_rejected(db, model):
    first = send_message(db, model, "hola")
    later = utcnow() + timedelta(minutes=settings.CHATBOT_SESSION_MINUTES + 1)

    with pytest.raises(ChatLimitError):
        send_message(db, model, "hola", session_id=first["session_id"], now=later)

    # Without an explicit session a fresh one is opened
    assert send_message(db, model, "hola", now=later)["session_id"] != first["session_id"]


def test_other_users_session_is_forbidden(db, model, make_user):
    other = make_user("Camila Torres", "camila@studio.co")
    first = send_message(db, model, "hola")

    with pytest.raises(ScopeError):
        list_messages(db, other, first["session_id"])


def test_mark_read_inserts_only_missing_receipts(db, model, admin):
    session_id = send_message(db, model, "hola")["session_id"]
    post_admin_message(db, admin, session_id, "Hola, ¿en qué te ayudo?")

    assert mark_read(db, model, session_id) == 2
    assert mark_read(db, model, session_id) == 0


def test_cleanup_keeps_escalated_sessions(db, model, admin):
    plain = send_message(db, model, "hola")["session_id"]
    db.query(ChatSession).filter(ChatSession.id == plain).update(
        {ChatSession.last_activity: utcnow() - timedelta(hours=48)}, synchronize_session=False
    )
    db.commit()
    escalated = send_message(db, model, "urgente")["session_id"]
    db.query(ChatSession).filter(ChatSession.id == escalated).update(
        {ChatSession.last_activity: utcnow() - timedelta(hours=48)}, synchronize_session=False
    )
    db.commit()

    result = cleanup_sessions(db)

    assert result["sessions_deleted"] == 1
    assert db.query(ChatSession).filter(ChatSession.id == plain).first() is None
    assert db.query(ChatSession).filter(ChatSession.id == escalated).one().is_active is False
