"""Structured logging helpers (PII-safe)."""

from typing import Any


def build_log_context(
    *,
    org_id: str | None = None,
    sequence_id: str | None = None,
    execution_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict."""
    context: dict[str, Any] = {}
    if org_id:
        context["org_id"] = str(org_id)
    if sequence_id:
        context["sequence_id"] = str(sequence_id)
    if execution_id:
        context["execution_id"] = str(execution_id)
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context


def mask_phone(phone: str | None) -> str:
    """Keep the last four digits of a phone number for log lines."""
    if not phone:
        return ""
    digits = "".join(ch for ch in phone if ch.isdigit())
    if len(digits) <= 4:
        return "***"
    return f"***{digits[-4:]}"
