"""Observability helpers."""

from gls.observability.otel import (
    initialize,
    is_enabled,
    shutdown,
    start_span,
    record_page_fetch,
    record_pruned,
    record_refresh_cycle,
)

__all__ = [
    "initialize",
    "is_enabled",
    "shutdown",
    "start_span",
    "record_page_fetch",
    "record_pruned",
    "record_refresh_cycle",
]
