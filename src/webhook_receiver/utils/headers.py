"""
Header processing utilities.

Handles header sanitization, tracking-id extraction, advisory
validation, and the size-bounded serialized headers attribute
attached to fan-out messages.
"""

import json
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_MAX_HEADER_SIZE = 50000
MAX_HEADER_VALUE_LENGTH = 8192

# Reserved room for the marker appended to truncated headers
TRUNCATION_BUDGET = 20
TRUNCATION_SUFFIX = ',"_truncated":true}'

CORRELATION_ID_HEADERS = ("x-correlation-id", "correlation-id")
REQUEST_ID_HEADERS = ("x-request-id", "request-id")

SUSPICIOUS_PATTERNS = (
    (re.compile(r"script", re.IGNORECASE), "Script content detected in headers"),
    (re.compile(r"<[^>]*>"), "HTML tags detected in headers"),
    (re.compile(r"javascript:", re.IGNORECASE), "JavaScript protocol detected in headers"),
)


@dataclass(frozen=True)
class TrackingIds:
    """Correlation and request identifiers for one inbound request."""

    correlation_id: str
    request_id: str


@dataclass(frozen=True)
class TraceContext:
    """Distributed tracing identifiers carried by the inbound request."""

    trace_id: Optional[str] = None
    span_id: Optional[str] = None
    traceparent: Optional[str] = None

    @property
    def is_present(self) -> bool:
        return bool(self.trace_id or self.span_id or self.traceparent)


@dataclass
class HeaderValidation:
    """Advisory result of header validation."""

    is_valid: bool
    issues: List[str] = field(default_factory=list)


def _to_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def sanitize_headers(headers: Any) -> Dict[str, Any]:
    """
    Copy headers, dropping any entry whose key is "headers" in any case.

    Only an exact (case-insensitive) match is dropped; keys such as
    "x-headers" pass through, as do non-string values.
    """
    if not isinstance(headers, Mapping):
        return {}

    return {key: value for key, value in headers.items() if str(key).lower() != "headers"}


def create_headers_attribute(
    headers: Any, max_size: int = DEFAULT_MAX_HEADER_SIZE
) -> Optional[str]:
    """
    Serialize headers for use as a message attribute value.

    Args:
        headers: HTTP headers to process
        max_size: Nominal maximum size of the serialized value

    Returns:
        The JSON string, a truncated JSON-like string marked with
        ``"_truncated":true`` when too large, or None if there is
        nothing to send.
    """
    if not isinstance(headers, Mapping) or not headers:
        return None

    sanitized = sanitize_headers(headers)
    if not sanitized:
        return None

    try:
        headers_json = _to_json(sanitized)
    except (TypeError, ValueError) as e:
        logger.error("Failed to create headers attribute", error=str(e))
        return None

    if len(headers_json) <= max_size:
        return headers_json

    # Output is max_size - 1 long and not valid JSON; consumers rely on this shape
    truncated = headers_json[: max_size - TRUNCATION_BUDGET] + TRUNCATION_SUFFIX
    logger.warning(
        "Headers truncated",
        original_size=len(headers_json),
        truncated_size=len(truncated),
    )
    return truncated


def parse_headers_attribute(value: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse a serialized headers attribute back into a mapping."""
    if not value or not isinstance(value, str):
        return None

    try:
        headers = json.loads(value)
    except ValueError as e:
        logger.error("Failed to parse headers attribute", error=str(e))
        return None

    if not isinstance(headers, dict):
        return None

    if headers.pop("_truncated", False):
        logger.warning("Headers were truncated in the original message")

    return headers


def _lookup(headers: Mapping[str, Any], name: str) -> Optional[Any]:
    name = name.lower()
    for key, value in headers.items():
        if str(key).lower() == name:
            return value
    return None


def _first_header(headers: Mapping[str, Any], names: tuple) -> Optional[str]:
    for name in names:
        value = _lookup(headers, name)
        if value:
            return str(value)
    return None


def extract_tracking_ids(headers: Any) -> TrackingIds:
    """
    Extract correlation and request ids from headers (case-insensitive).

    Missing ids are generated fresh on every call.
    """
    if not isinstance(headers, Mapping):
        headers = {}

    return TrackingIds(
        correlation_id=_first_header(headers, CORRELATION_ID_HEADERS) or str(uuid.uuid4()),
        request_id=_first_header(headers, REQUEST_ID_HEADERS) or str(uuid.uuid4()),
    )


def extract_trace_context(headers: Any) -> TraceContext:
    """
    Read Datadog tracing ids and the W3C traceparent header.

    A traceparent is carried verbatim; it never fills the Datadog fields.
    """
    if not isinstance(headers, Mapping):
        return TraceContext()

    return TraceContext(
        trace_id=_first_header(headers, ("x-datadog-trace-id",)),
        span_id=_first_header(headers, ("x-datadog-parent-id",)),
        traceparent=_first_header(headers, ("traceparent",)),
    )


def validate_headers(headers: Any) -> HeaderValidation:
    """
    Check headers for oversized values and suspicious content.

    Advisory only: the result is logged by callers and never blocks
    ingestion.
    """
    issues: List[str] = []

    if not isinstance(headers, Mapping):
        return HeaderValidation(is_valid=True, issues=issues)

    for key, value in headers.items():
        key = str(key)
        header_value = str(value)

        if len(header_value) > MAX_HEADER_VALUE_LENGTH:
            issues.append(
                f'Header "{key}" exceeds maximum length ({len(header_value)} bytes)'
            )

        for pattern, message in SUSPICIOUS_PATTERNS:
            if pattern.search(header_value) or pattern.search(key):
                issues.append(f'{message} in header "{key}"')

    return HeaderValidation(is_valid=not issues, issues=issues)


def get_headers_stats(headers: Any, max_size: int = DEFAULT_MAX_HEADER_SIZE) -> Dict[str, Any]:
    """Get size statistics for headers."""
    if not isinstance(headers, Mapping):
        return {"total_size": 0, "header_count": 0, "average_size": 0, "would_be_truncated": False}

    sanitized = sanitize_headers(headers)
    json_string = _to_json(sanitized)
    header_count = len(sanitized)

    return {
        "total_size": len(json_string),
        "header_count": header_count,
        "average_size": round(len(json_string) / header_count) if header_count else 0,
        "would_be_truncated": len(json_string) > max_size,
    }
