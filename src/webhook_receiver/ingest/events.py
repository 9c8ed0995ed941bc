"""
Event definitions for webhook ingestion.

Converts raw inbound requests into canonical immutable events and
derives the storage partition for each one.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from ..utils.headers import sanitize_headers

CONTENT_TYPE_JSON = "application/json"
CONTENT_TYPE_TEXT = "text/plain"

_NON_ALPHANUMERIC = re.compile(r"[^A-Za-z0-9]")


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Non-standard JSON constant: {name}")


@dataclass(frozen=True)
class InboundRequest:
    """Raw request as handed over by the HTTP front door."""

    method: Optional[str] = None
    path: Optional[str] = None
    headers: Dict[str, Any] = field(default_factory=dict)
    query_parameters: Dict[str, Any] = field(default_factory=dict)
    body: Optional[str] = None
    is_base64_encoded: bool = False
    source_ip: Optional[str] = None
    domain: Optional[str] = None
    stage: Optional[str] = None

    @classmethod
    def from_api_gateway(cls, event: Dict[str, Any]) -> "InboundRequest":
        """Build from an API Gateway REST proxy event."""
        context = event.get("requestContext") or {}
        identity = context.get("identity") or {}
        return cls(
            method=context.get("httpMethod") or event.get("httpMethod"),
            path=event.get("path"),
            headers=event.get("headers") or {},
            query_parameters=event.get("queryStringParameters") or {},
            body=event.get("body"),
            is_base64_encoded=bool(event.get("isBase64Encoded", False)),
            source_ip=identity.get("sourceIp"),
            domain=context.get("domainName"),
            stage=context.get("stage"),
        )


@dataclass(frozen=True)
class Transport:
    """Transport details of an inbound request."""

    method: str
    path: str
    headers: Dict[str, Any]
    query_parameters: Dict[str, Any]
    source_ip: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "path": self.path,
            "headers": dict(self.headers),
            "queryStringParameters": dict(self.query_parameters),
            "sourceIp": self.source_ip,
        }


@dataclass(frozen=True)
class Event:
    """Canonical normalized representation of one inbound webhook request."""

    timestamp: str
    source: str
    transport: Transport
    payload: Any
    type: str
    is_base64_encoded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire format stored and published downstream."""
        return {
            "timestamp": self.timestamp,
            "source": self.source,
            "transport": self.transport.to_dict(),
            "payload": self.payload,
            "type": self.type,
            "isBase64Encoded": self.is_base64_encoded,
        }


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    now = now or datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_event(request: InboundRequest, now: Optional[datetime] = None) -> Event:
    """
    Normalize an inbound request into an Event.

    The body is parsed as JSON when possible; otherwise it is kept
    verbatim as text. No other validation is applied.
    """
    domain = request.domain or "unknown-domain"
    stage = request.stage or ""
    path = request.path or "/"
    source = f"https://{domain}{'/' + stage if stage else ''}{path}"

    payload: Any = request.body or ""
    content_type = CONTENT_TYPE_TEXT

    if payload:
        try:
            payload = json.loads(payload, parse_constant=_reject_constant)
            content_type = CONTENT_TYPE_JSON
        except ValueError:
            pass

    return Event(
        timestamp=utc_timestamp(now),
        source=source,
        transport=Transport(
            method=request.method or "UNKNOWN",
            path=path,
            headers=sanitize_headers(request.headers),
            query_parameters=dict(request.query_parameters or {}),
            source_ip=request.source_ip or "unknown",
        ),
        payload=payload,
        type=content_type,
        is_base64_encoded=request.is_base64_encoded,
    )


def partition_name(path: Optional[str]) -> str:
    """
    Derive the storage partition (collection) name from a request path.

    Total: every input maps to a non-empty name made of letters,
    digits and inner dashes.
    """
    if not path or path == "/":
        return "root"

    name = _NON_ALPHANUMERIC.sub("-", str(path)).strip("-")
    return name or "unknown"
