"""
Fan-out publishing to an SNS topic.

Builds the webhook message body and its attribute set, including the
size-bounded serialized headers attribute and tracing attributes.
"""

import json
import re
from typing import TYPE_CHECKING, Any, Dict, Optional, Union

import structlog

from ..utils.headers import (
    DEFAULT_MAX_HEADER_SIZE,
    TraceContext,
    TrackingIds,
    create_headers_attribute,
)
from .aws import AwsClientFactory
from .errors import UpstreamDependencyError

if TYPE_CHECKING:
    from ..ingest.events import Event

logger = structlog.get_logger(__name__)

TOPIC_ARN_PATTERN = re.compile(r"^arn:aws:sns:[a-z0-9-]+:\d+:[a-zA-Z0-9_-]+$")


def string_attribute(value: Any) -> Dict[str, str]:
    return {"DataType": "String", "StringValue": str(value)}


def number_attribute(value: Union[int, float]) -> Dict[str, str]:
    return {"DataType": "Number", "StringValue": str(value)}


class TopicPublisher:
    """Publishes messages to SNS topics."""

    def __init__(self, clients: AwsClientFactory, max_header_size: int = DEFAULT_MAX_HEADER_SIZE):
        self.clients = clients
        self.max_header_size = max_header_size

    async def publish(
        self,
        topic_arn: str,
        message: Union[str, Dict[str, Any]],
        subject: Optional[str] = None,
        attributes: Optional[Dict[str, Dict[str, str]]] = None,
    ) -> str:
        """
        Publish one message.

        Returns:
            The delivery (message) id

        Raises:
            UpstreamDependencyError: If the publish fails
        """
        body = message if isinstance(message, str) else json.dumps(message, default=str)
        params: Dict[str, Any] = {"TopicArn": topic_arn, "Message": body}
        if subject:
            params["Subject"] = subject
        if attributes:
            params["MessageAttributes"] = attributes

        try:
            client = await self.clients.get_client("sns")
            response = await client.publish(**params)
        except Exception as e:
            logger.error("Failed to publish to topic", topic_arn=topic_arn, error=str(e))
            raise UpstreamDependencyError(
                f"SNS publish failed: {e}", operation="fanout", original_error=e
            ) from e

        return response["MessageId"]

    async def publish_webhook_event(
        self,
        topic_arn: str,
        event: "Event",
        environment: str,
        tracking_ids: TrackingIds,
        trace_context: Optional[TraceContext] = None,
    ) -> str:
        """Publish a webhook event with its full attribute set."""
        message = self.build_message(event, environment)
        attributes = self.build_attributes(event, environment, tracking_ids, trace_context)

        message_id = await self.publish(
            topic_arn,
            message,
            subject=f"Webhook Event - {event.transport.method} {event.transport.path}",
            attributes=attributes,
        )

        logger.info(
            "Webhook event published",
            topic_arn=topic_arn,
            message_id=message_id,
            correlation_id=tracking_ids.correlation_id,
            request_id=tracking_ids.request_id,
        )
        return message_id

    @staticmethod
    def build_message(event: "Event", environment: str) -> Dict[str, Any]:
        data = event.to_dict()
        return {
            "environment": environment,
            "timestamp": data["timestamp"],
            "source": data["source"],
            "transport": data["transport"],
            "payload": data["payload"],
            "type": data["type"],
            "isBase64Encoded": data["isBase64Encoded"],
        }

    def build_attributes(
        self,
        event: "Event",
        environment: str,
        tracking_ids: TrackingIds,
        trace_context: Optional[TraceContext] = None,
    ) -> Dict[str, Dict[str, str]]:
        attributes = {
            "environment": string_attribute(environment),
            "method": string_attribute(event.transport.method),
            "path": string_attribute(event.transport.path),
            "contentType": string_attribute(event.type),
            "x-correlation-id": string_attribute(tracking_ids.correlation_id),
            "x-request-id": string_attribute(tracking_ids.request_id),
            "content-type": string_attribute("application/json"),
        }

        headers_value = create_headers_attribute(event.transport.headers, self.max_header_size)
        if headers_value:
            attributes["headers"] = string_attribute(headers_value)

        if trace_context is not None:
            if trace_context.trace_id:
                attributes["x-datadog-trace-id"] = string_attribute(trace_context.trace_id)
            if trace_context.span_id:
                attributes["x-datadog-parent-id"] = string_attribute(trace_context.span_id)
            if trace_context.traceparent:
                attributes["traceparent"] = string_attribute(trace_context.traceparent)

        return attributes

    @staticmethod
    def validate_topic_arn(topic_arn: Any) -> bool:
        if not topic_arn or not isinstance(topic_arn, str):
            return False
        return bool(TOPIC_ARN_PATTERN.match(topic_arn))

    @staticmethod
    def calculate_message_size(message: Dict[str, Any], attributes: Dict[str, Any]) -> int:
        """Approximate size in bytes of a message and its attributes."""
        return len(json.dumps(message, default=str)) + len(json.dumps(attributes))
