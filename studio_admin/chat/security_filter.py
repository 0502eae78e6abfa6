"""
Redaction layer between user text and any generative model.

Built as a chain of redaction rules: each rule finds one class of sensitive
content and replaces it with a placeholder. Order matters; structured
patterns (UUIDs, emails, phones) run before the generic numeric rule.
"""
import re
from typing import Any, Dict, Iterable, List, Optional, Pattern, Tuple

from studio_admin.core.logger import logger

SENSITIVE_TERMS = (
    "contraseña",
    "password",
    "clave",
    "token",
    "api key",
    "apikey",
    "secret",
    "cuenta bancaria",
    "número de cuenta",
    "tarjeta",
    "cédula",
    "cedula",
    "nómina",
    "salario",
    "porcentaje de la empresa",
    "ganancia del estudio",
    "tasa interna",
    "base de datos",
    "supabase",
    "service role",
)


class RedactionRule:
    """One class of sensitive content and its placeholder."""

    def __init__(self, name: str, pattern: Pattern[str], placeholder: str):
        self.name = name
        self.pattern = pattern
        self.placeholder = placeholder

    def apply(self, text: str) -> Tuple[str, int]:
        return self.pattern.subn(self.placeholder, text)


UUID_RULE = RedactionRule(
    "UUID",
    re.compile(r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}\b"),
    "[ID]",
)
EMAIL_RULE = RedactionRule(
    "EMAIL",
    re.compile(r"\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b"),
    "[EMAIL]",
)
PHONE_RULE = RedactionRule(
    "PHONE",
    re.compile(r"(?<!\w)(?:\+?\d{1,3}[\s.\-]?)?(?:\(?\d{3}\)?[\s.\-]?)\d{3}[\s.\-]?\d{4}(?!\w)"),
    "[TELÉFONO]",
)
NUMERIC_ID_RULE = RedactionRule("NUMERIC_ID", re.compile(r"\b\d{5,}\b"), "[NÚMERO]")


class SecurityFilter:
    """
    Sanitizes free text before it is stored for prompting or sent to an LLM.

    Named entities are matched case-insensitively on whole words; the caller
    supplies them (user names, studio names) since they are not guessable.
    """

    def __init__(self, sensitive_terms: Iterable[str] = SENSITIVE_TERMS):
        self.rules: List[RedactionRule] = [UUID_RULE, EMAIL_RULE, PHONE_RULE, NUMERIC_ID_RULE]
        terms = sorted({t.lower() for t in sensitive_terms if t}, key=len, reverse=True)
        self.terms_rule = RedactionRule(
            "SENSITIVE_TERM",
            re.compile(r"\b(?:" + "|".join(re.escape(t) for t in terms) + r")\b", re.IGNORECASE),
            "[TÉRMINO RESTRINGIDO]",
        ) if terms else None

    def sanitize_message(self, text: str, named_entities: Optional[Iterable[str]] = None) -> str:
        if not text:
            return ""

        counts: Dict[str, int] = {}
        for rule in self.rules:
            text, n = rule.apply(text)
            if n:
                counts[rule.name] = n

        names = sorted({n.strip() for n in (named_entities or []) if n and len(n.strip()) >= 3}, key=len, reverse=True)
        if names:
            names_rule = RedactionRule(
                "NAME",
                re.compile(r"\b(?:" + "|".join(re.escape(n) for n in names) + r")\b", re.IGNORECASE),
                "[NOMBRE]",
            )
            text, n = names_rule.apply(text)
            if n:
                counts[names_rule.name] = n

        if self.terms_rule:
            text, n = self.terms_rule.apply(text)
            if n:
                counts[self.terms_rule.name] = n

        if counts:
            logger.info(f"Security filter redactions: {counts}")
        return text

    @staticmethod
    def create_safe_context(
        role: str,
        has_calculator_config: bool = False,
        enabled_platform_count: int = 0,
        has_values_this_period: bool = False,
        open_ticket_count: int = 0,
    ) -> Dict[str, Any]:
        """Only booleans and counts leave this function; never ids, names or amounts."""
        return {
            "is_model": role == "modelo",
            "is_admin": role in ("admin", "super_admin"),
            "has_calculator_config": bool(has_calculator_config),
            "enabled_platform_count": int(enabled_platform_count),
            "has_values_this_period": bool(has_values_this_period),
            "has_open_tickets": open_ticket_count > 0,
        }

    @staticmethod
    def build_safe_prompt(safe_context: Dict[str, Any], user_message: str, history: Optional[List[str]] = None) -> str:
        """System prompt built solely from the safe context and already-sanitized text."""
        lines = [
            "Eres el asistente virtual de soporte de un estudio.",
            "Responde en español, breve y amable.",
            "Nunca pidas ni reveles datos personales, credenciales, montos, porcentajes internos ni identificadores.",
            "Si la consulta requiere a un administrador, sugiere escribir 'hablar con admin'.",
            "",
            "Contexto del usuario:",
            f"- Rol: {'modelo' if safe_context.get('is_model') else 'administrador' if safe_context.get('is_admin') else 'usuario'}",
            f"- Calculadora configurada: {'sí' if safe_context.get('has_calculator_config') else 'no'}",
            f"- Plataformas habilitadas: {safe_context.get('enabled_platform_count', 0)}",
            f"- Valores registrados este periodo: {'sí' if safe_context.get('has_values_this_period') else 'no'}",
            f"- Tickets abiertos: {'sí' if safe_context.get('has_open_tickets') else 'no'}",
        ]
        if history:
            lines.append("")
            lines.append("Conversación reciente:")
            lines.extend(f"- {h}" for h in history[-6:])
        lines.append("")
        lines.append(f"Mensaje: {user_message}")
        return "\n".join(lines)


# Singleton filter instance
security_filter = SecurityFilter()
