"""Structured logging helpers (token- and payload-safe)."""

from typing import Any


def build_log_context(
    *,
    sync_log_id: str | None = None,
    resource: str | None = None,
    mode: str | None = None,
    triggered_by: str | None = None,
    job_name: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict for sync runs, omitting empty values."""
    context: dict[str, Any] = {}
    if sync_log_id:
        context["sync_log_id"] = sync_log_id
    if resource:
        context["resource"] = resource
    if mode:
        context["mode"] = mode
    if triggered_by:
        context["triggered_by"] = triggered_by
    if job_name:
        context["job_name"] = job_name
    return context
