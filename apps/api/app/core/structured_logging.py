"""Structured logging helpers (PII-safe)."""

from typing import Any


def build_log_context(
    *,
    org_id: str | None = None,
    lead_id: str | None = None,
    task_id: str | None = None,
    task_type: str | None = None,
    request_id: str | None = None,
    route: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict (ids only, never names or contact details)."""
    context: dict[str, Any] = {}
    if org_id:
        context["org_id"] = str(org_id)
    if lead_id:
        context["lead_id"] = str(lead_id)
    if task_id:
        context["task_id"] = str(task_id)
    if task_type:
        context["task_type"] = task_type
    if request_id:
        context["request_id"] = request_id
    if route:
        context["route"] = route
    return context
