"""Observability helpers."""

from session_distill.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_distill,
    record_parser_failure,
    record_token_cost,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_distill",
    "record_parser_failure",
    "record_token_cost",
]
