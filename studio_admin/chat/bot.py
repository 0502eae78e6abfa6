"""
Support bot rules.

Escalation and canned replies are keyword rules evaluated in order, the first
match wins. Generative answers go through Gemini only when an API key is
configured; every prompt and answer crosses the security filter.
"""
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from google import genai
from google.genai import types

from studio_admin.core.config import settings
from studio_admin.core.logger import logger

URGENT_KEYWORDS = ("urgente", "emergencia", "crítico", "critico", "no funciona", "error grave")
ADMIN_REQUEST_KEYWORDS = ("hablar con admin", "contactar administrador", "necesito admin", "escalar")
MAX_ATTEMPTS_BEFORE_ESCALATION = 3


def keyword_pattern(keywords: Sequence[str]) -> "re.Pattern[str]":
    """
    Matches any of `keywords` as whole words. A trailing `*` marks a stem
    that also matches longer words, so `congelad*` finds `congeladas`.
    """
    parts = []
    for keyword in keywords:
        if keyword.endswith("*"):
            parts.append(re.escape(keyword[:-1]) + r"\w*")
        else:
            parts.append(re.escape(keyword))
    return re.compile(r"\b(?:" + "|".join(parts) + r")\b")


URGENT_PATTERN = keyword_pattern(URGENT_KEYWORDS)
ADMIN_REQUEST_PATTERN = keyword_pattern(ADMIN_REQUEST_KEYWORDS)


@dataclass
class EscalationDecision:
    should_escalate: bool
    reason: str = ""
    priority: str = "high"


def detect_escalation(message: str, user_attempts: int) -> EscalationDecision:
    """
    `user_attempts` counts the user's messages in the session, this one included.
    """
    text = message.lower()
    priority = "urgent" if re.search(r"\burgente\b", text) else "high"
    if URGENT_PATTERN.search(text):
        return EscalationDecision(True, "Palabra clave urgente detectada", priority)
    if user_attempts >= MAX_ATTEMPTS_BEFORE_ESCALATION:
        return EscalationDecision(True, "Máximo de intentos alcanzado", priority)
    if ADMIN_REQUEST_PATTERN.search(text):
        return EscalationDecision(True, "Solicitud explícita de administrador", priority)
    return EscalationDecision(False)


class ReplyRule:
    """A canned reply triggered by any of its keywords."""

    def __init__(self, name: str, keywords: Sequence[str], reply: str, roles: Optional[Sequence[str]] = None):
        self.name = name
        self.keywords = keywords
        self.pattern = keyword_pattern(keywords)
        self.reply = reply
        self.roles = roles

    def matches(self, text: str, role: str) -> bool:
        if self.roles and role not in self.roles:
            return False
        return self.pattern.search(text) is not None

    def render(self, name: str, role: str) -> str:
        return self.reply.format(name=name, role=role)


FALLBACK_RULES: List[ReplyRule] = [
    ReplyRule(
        "GREETING",
        ("hola", "buenos días", "buenas tardes", "buenas noches"),
        "¡Hola {name}! Soy el asistente del estudio. ¿En qué puedo ayudarte hoy?",
    ),
    ReplyRule(
        "CALCULATOR",
        ("calculadora", "tasa*", "rates"),
        "La calculadora convierte tus valores por plataforma a USD y COP con las tasas vigentes "
        "(USD→COP, EUR→USD, GBP→USD). Puedes escribir 'mis totales' para ver tu quincena.",
    ),
    ReplyRule(
        "CLOSURE",
        ("cierre", "congelad*", "bloquead*"),
        "Al final de cada quincena algunas plataformas se congelan a medianoche de Europa y el "
        "cierre completo ocurre el día 1 y 16. Los valores congelados ya no se pueden editar.",
    ),
    ReplyRule(
        "SHOP",
        ("tienda", "producto*", "cuota*", "financia*"),
        "En la tienda puedes pagar de contado o financiar en 2 a 4 quincenas si el producto lo permite. "
        "Las cuotas se descuentan al cerrar cada quincena.",
    ),
    ReplyRule(
        "SEDES",
        ("sede*", "room*", "jornada*", "turno*"),
        "Tu sede y tu jornada (mañana, tarde o noche) las asigna un administrador.",
    ),
    ReplyRule(
        "ROLE",
        ("rol", "permisos", "acceso"),
        "Tu rol actual es: {role}.",
    ),
    ReplyRule(
        "HELP",
        ("ayuda", "help", "cómo", "como"),
        "Puedo ayudarte con la calculadora, el cierre de periodos, la tienda y tus asignaciones. "
        "Si necesitas a una persona, escribe 'hablar con admin'.",
    ),
]

DEFAULT_REPLY = (
    "Puedo ayudarte con información sobre la calculadora, el cierre de quincenas, la tienda y las sedes. "
    "¿Podrías ser más específico?"
)

TICKET_KEYWORDS = ("crear ticket", "abrir ticket", "soporte")
TOTALS_KEYWORDS = ("mi calculadora", "mis totales", "totales", "cuánto llevo", "cuanto llevo", "quincena*")
FINANCING_KEYWORDS = ("mis cuotas", "mi financiación", "mi financiacion", "mis compras")

TICKET_PATTERN = keyword_pattern(TICKET_KEYWORDS)
TOTALS_PATTERN = keyword_pattern(TOTALS_KEYWORDS)
FINANCING_PATTERN = keyword_pattern(FINANCING_KEYWORDS)


def fallback_response(message: str, name: str, role: str) -> str:
    text = message.lower()
    for rule in FALLBACK_RULES:
        if rule.matches(text, role):
            return rule.render(name=name, role=role)
    return DEFAULT_REPLY


def detect_intent(message: str, role: str) -> Optional[str]:
    """Read-only intents answered from the caller's own data."""
    text = message.lower()
    if role == "modelo" and TOTALS_PATTERN.search(text):
        return "totals"
    if role == "modelo" and FINANCING_PATTERN.search(text):
        return "financing"
    if TICKET_PATTERN.search(text):
        return "ticket"
    return None


class GeminiResponder:
    """Thin wrapper over the google-genai client."""

    def __init__(self, api_key: str, model: str):
        self.model = model
        self.client = genai.Client(api_key=api_key)

    def generate(self, prompt: str) -> str:
        response = self.client.models.generate_content(
            model=self.model,
            contents=prompt,
            config=types.GenerateContentConfig(temperature=0.4, max_output_tokens=512),
        )
        return (response.text or "").strip()


def build_responder() -> Optional[GeminiResponder]:
    if not settings.GEMINI_API_KEY:
        return None
    logger.info(f"Chat bot using Gemini model {settings.GEMINI_MODEL}")
    return GeminiResponder(settings.GEMINI_API_KEY, settings.GEMINI_MODEL)
