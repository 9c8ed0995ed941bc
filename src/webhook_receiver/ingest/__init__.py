"""
Webhook ingestion.

Normalizes inbound requests into events and dispatches them to the
document store and the fan-out topic.
"""

from .dispatcher import (
    DispatchState,
    OperationOutcome,
    WebhookDispatcher,
    WebhookResponse,
    classify_outcomes,
)
from .events import Event, InboundRequest, Transport, build_event, partition_name

__all__ = [
    "DispatchState",
    "Event",
    "InboundRequest",
    "OperationOutcome",
    "Transport",
    "WebhookDispatcher",
    "WebhookResponse",
    "build_event",
    "classify_outcomes",
    "partition_name",
]
