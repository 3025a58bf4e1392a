"""Observability helpers."""

from sessionwatch.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_tail_pass,
    record_parser_failure,
    record_lifecycle_event,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_tail_pass",
    "record_parser_failure",
    "record_lifecycle_event",
]
