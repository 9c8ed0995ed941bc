"""Utility modules."""

from .cache import TTLCache
from .headers import (
    HeaderValidation,
    TraceContext,
    TrackingIds,
    create_headers_attribute,
    extract_trace_context,
    extract_tracking_ids,
    sanitize_headers,
    validate_headers,
)
from .logging import get_logger, setup_logging

__all__ = [
    "setup_logging",
    "get_logger",
    "TTLCache",
    "HeaderValidation",
    "TraceContext",
    "TrackingIds",
    "create_headers_attribute",
    "extract_trace_context",
    "extract_tracking_ids",
    "sanitize_headers",
    "validate_headers",
]
