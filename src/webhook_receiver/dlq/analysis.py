"""
Failure analysis for dead-letter entries.

Classifies why a fan-out delivery failed and decides whether the
entry is worth redelivering. The classification is a plain substring
heuristic on the free-text failure reason: any "5" reads as a server
error and any "4" as a client error, whether or not it is part of an
HTTP status code.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

CRITICAL_PATH_MARKERS = ("/payment", "/security", "/critical")

FAILURE_TIMEOUT = "timeout"
FAILURE_SERVER_ERROR = "server_error"
FAILURE_CLIENT_ERROR = "client_error"
FAILURE_UNKNOWN = "unknown"


def _attribute(attributes: Mapping[str, Any], name: str) -> Optional[str]:
    """Read a message attribute in either Lambda or SQS API casing."""
    attribute = attributes.get(name)
    if attribute is None:
        return None
    if isinstance(attribute, Mapping):
        return attribute.get("stringValue") or attribute.get("StringValue")
    return str(attribute)


def _to_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class DeadLetterEntry:
    """One entry received from the dead-letter queue."""

    message_id: str
    body: str
    attributes: Dict[str, Optional[str]] = field(default_factory=dict)
    metadata: Dict[str, Optional[str]] = field(default_factory=dict)
    receipt_handle: Optional[str] = None

    @classmethod
    def from_sqs_record(cls, record: Mapping[str, Any]) -> "DeadLetterEntry":
        """
        Build from an SQS record.

        Accepts both the Lambda event shape (``messageId``,
        ``messageAttributes``) and the ReceiveMessage API shape
        (``MessageId``, ``MessageAttributes``).
        """
        message_attributes = record.get("messageAttributes") or record.get("MessageAttributes") or {}
        system_attributes = record.get("attributes") or record.get("Attributes") or {}

        return cls(
            message_id=record.get("messageId") or record.get("MessageId") or "",
            body=record.get("body") or record.get("Body") or "",
            attributes={
                "topicRef": _attribute(message_attributes, "TopicArn"),
                "failureReason": _attribute(message_attributes, "FailureReason"),
                "endpoint": _attribute(message_attributes, "Endpoint"),
                "protocol": _attribute(message_attributes, "Protocol"),
            },
            metadata={
                "approxReceiveCount": system_attributes.get("ApproximateReceiveCount"),
                "firstReceiveTimestamp": system_attributes.get("ApproximateFirstReceiveTimestamp"),
                "sentTimestamp": system_attributes.get("SentTimestamp"),
            },
            receipt_handle=record.get("receiptHandle") or record.get("ReceiptHandle"),
        )


@dataclass(frozen=True)
class FailureInfo:
    """Failure details derived once per dead-letter entry."""

    message_id: str
    receive_count: int = 1
    first_receive_timestamp: Optional[int] = None
    sent_timestamp: Optional[int] = None
    original_topic_ref: Optional[str] = None
    failure_reason: str = "Unknown"
    subscriber_endpoint: Optional[str] = None
    protocol: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: DeadLetterEntry) -> "FailureInfo":
        return cls(
            message_id=entry.message_id,
            receive_count=_to_int(entry.metadata.get("approxReceiveCount"), 1),
            first_receive_timestamp=_to_int(entry.metadata.get("firstReceiveTimestamp")),
            sent_timestamp=_to_int(entry.metadata.get("sentTimestamp")),
            original_topic_ref=entry.attributes.get("topicRef"),
            failure_reason=entry.attributes.get("failureReason") or "Unknown",
            subscriber_endpoint=entry.attributes.get("endpoint"),
            protocol=entry.attributes.get("protocol"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "messageId": self.message_id,
            "receiveCount": self.receive_count,
            "firstReceiveTimestamp": self.first_receive_timestamp,
            "sentTimestamp": self.sent_timestamp,
            "originalTopicArn": self.original_topic_ref,
            "failureReason": self.failure_reason,
            "subscriberEndpoint": self.subscriber_endpoint,
            "protocol": self.protocol,
        }


@dataclass
class FailureAnalysis:
    """Retry and escalation decision for one dead-letter entry."""

    should_retry: bool = False
    is_critical: bool = False
    failure_type: str = FAILURE_UNKNOWN
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shouldRetry": self.should_retry,
            "isCritical": self.is_critical,
            "failureType": self.failure_type,
            "recommendations": list(self.recommendations),
        }


def parse_original_event(body: str) -> Any:
    """
    Recover the original webhook event from a dead-letter body.

    The body is usually an SNS envelope whose ``Message`` holds the
    JSON event; a bare JSON event or plain text is passed through.
    """
    try:
        message_body = json.loads(body)
    except (TypeError, ValueError):
        return body

    inner = message_body.get("Message", message_body) if isinstance(message_body, dict) else message_body
    if isinstance(inner, str):
        try:
            return json.loads(inner)
        except ValueError:
            return inner
    return inner


def event_field(event: Any, name: str) -> Optional[Any]:
    """Read a transport field from an event, falling back to a top-level key."""
    if not isinstance(event, Mapping):
        return None
    transport = event.get("transport")
    if isinstance(transport, Mapping) and transport.get(name) is not None:
        return transport.get(name)
    return event.get(name)


def analyze_failure(
    info: FailureInfo,
    event: Any,
    now: Optional[float] = None,
    max_age_hours: float = 24,
) -> FailureAnalysis:
    """
    Decide retry eligibility and criticality for a failed delivery.

    Args:
        info: Failure details of the entry
        event: The original webhook event (parsed dict or raw text)
        now: Current time in epoch seconds (defaults to time.time())
        max_age_hours: Entries sent longer ago than this are never retried

    Returns:
        The analysis; a pure function of its inputs
    """
    analysis = FailureAnalysis()
    reason = info.failure_reason or ""

    if "timeout" in reason.lower():
        analysis.failure_type = FAILURE_TIMEOUT
        analysis.should_retry = True
        analysis.recommendations.append("Consider increasing timeout for subscriber")
    elif "5" in reason:
        analysis.failure_type = FAILURE_SERVER_ERROR
        analysis.should_retry = True
        analysis.recommendations.append("Subscriber experiencing server errors")
    elif "4" in reason:
        analysis.failure_type = FAILURE_CLIENT_ERROR
        analysis.should_retry = False
        analysis.recommendations.append("Check subscriber configuration or webhook payload")

    path = event_field(event, "path")
    if isinstance(path, str) and any(marker in path for marker in CRITICAL_PATH_MARKERS):
        analysis.is_critical = True

    if info.sent_timestamp is not None:
        now = time.time() if now is None else now
        age_hours = (now * 1000 - info.sent_timestamp) / (1000 * 60 * 60)
        if age_hours > max_age_hours:
            analysis.should_retry = False
            analysis.recommendations.append("Message too old for retry")

    return analysis
