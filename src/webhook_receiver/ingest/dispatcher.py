"""
Dual-sink dispatch of webhook events.

Each accepted request is written to the document store and published
to the fan-out topic concurrently. Both branches always run to
completion and the sender is acknowledged regardless of their outcome;
the per-branch result is reported in the response body and logs.
"""

import asyncio
import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Dict, Optional, Tuple

import structlog

from ..config.settings import Config, ConfigurationError
from ..utils.headers import (
    TraceContext,
    TrackingIds,
    extract_trace_context,
    extract_tracking_ids,
    validate_headers,
)
from .events import Event, InboundRequest, build_event, partition_name

logger = structlog.get_logger(__name__)

STORE_OPERATION = "store"
FANOUT_OPERATION = "fanout"


class DispatchState(str, Enum):
    """Joined outcome of the two dispatch branches."""

    ALL_SUCCEEDED = "all_succeeded"
    STORE_ONLY = "store_only"
    FANOUT_ONLY = "fanout_only"
    ALL_FAILED = "all_failed"


DISPATCH_MESSAGES = {
    DispatchState.ALL_SUCCEEDED: "Webhook received, logged, stored, and published successfully",
    DispatchState.STORE_ONLY: (
        "Webhook received, logged, and stored successfully. Fan-out publishing failed."
    ),
    DispatchState.FANOUT_ONLY: (
        "Webhook received, logged, and published successfully. Durable storage failed."
    ),
    DispatchState.ALL_FAILED: (
        "Webhook received and logged successfully. "
        "Both durable storage and fan-out publishing failed."
    ),
}


@dataclass(frozen=True)
class OperationOutcome:
    """Result of one dispatch branch."""

    operation: str
    success: bool
    error: Optional[str] = None
    attempted: bool = True

    @property
    def status(self) -> str:
        return "success" if self.success else "failed"


@dataclass
class WebhookResponse:
    """HTTP-style response handed back to the front door."""

    status_code: int
    body: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=lambda: {"Content-Type": "application/json"})

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the API Gateway proxy response format."""
        return {
            "statusCode": self.status_code,
            "headers": dict(self.headers),
            "body": json.dumps(self.body),
        }


def classify_outcomes(store: OperationOutcome, fanout: OperationOutcome) -> DispatchState:
    if store.success and fanout.success:
        return DispatchState.ALL_SUCCEEDED
    if store.success:
        return DispatchState.STORE_ONLY
    if fanout.success:
        return DispatchState.FANOUT_ONLY
    return DispatchState.ALL_FAILED


async def _settle(operation: str, coro: Awaitable[Any]) -> OperationOutcome:
    """Await one branch and turn any failure into an outcome."""
    try:
        await coro
    except Exception as e:
        logger.error(f"{operation} operation failed", operation=operation, error=str(e))
        return OperationOutcome(operation=operation, success=False, error=str(e))
    return OperationOutcome(operation=operation, success=True)


class WebhookDispatcher:
    """
    Routes inbound webhook requests to the store and the fan-out topic.

    Collaborators are injected: ``parameters`` resolves the store
    connection secret, ``store`` persists the event document and
    ``publisher`` publishes it. A missing publisher (or topic) disables
    fan-out, which then counts as a vacuous success.
    """

    def __init__(
        self,
        config: Config,
        parameters: Any,
        store: Any,
        publisher: Optional[Any] = None,
    ):
        self.config = config
        self.parameters = parameters
        self.store = store
        self.publisher = publisher

    @property
    def allowed_methods(self) -> Tuple[str, ...]:
        return tuple(self.config.webhook.allowed_methods)

    def is_method_allowed(self, method: Optional[str]) -> bool:
        return bool(method) and method in self.allowed_methods

    async def handle(
        self, request: InboundRequest, request_id: Optional[str] = None
    ) -> WebhookResponse:
        """
        Process one inbound request.

        Returns:
            405 for methods outside the allow-list, 500 for failures
            outside the two dispatch branches, 200 otherwise
        """
        request_id = request_id or str(uuid.uuid4())

        if not self.is_method_allowed(request.method):
            return self.reject_method(request, request_id)

        try:
            return await self._process(request, request_id)
        except Exception as e:
            logger.error(
                "Error processing webhook",
                request_id=request_id,
                error=str(e),
                exc_info=True,
            )
            return WebhookResponse(
                status_code=500,
                body={
                    "message": "Error processing webhook",
                    "error": str(e),
                    "requestId": request_id,
                },
            )

    def reject_method(self, request: InboundRequest, request_id: str) -> WebhookResponse:
        method = request.method or "UNKNOWN"
        logger.info(
            "Request method rejected",
            method=method,
            source_ip=request.source_ip or "unknown",
            path=request.path or "/",
        )

        if method == "GET":
            error = "GET requests are not supported by this webhook endpoint"
        else:
            error = f"{method} requests are not supported"

        allowed = list(self.allowed_methods)
        return WebhookResponse(
            status_code=405,
            headers={"Content-Type": "application/json", "Allow": ", ".join(allowed)},
            body={
                "message": "Method Not Allowed",
                "error": error,
                "allowed_methods": allowed,
                "requestId": request_id,
            },
        )

    async def _process(self, request: InboundRequest, request_id: str) -> WebhookResponse:
        event = build_event(request)
        logger.info("Webhook request", request_id=request_id, webhook_event=event.to_dict())

        await self._resolve_connection_secret()

        database = self.config.database_name
        collection = partition_name(event.transport.path)

        tracking_ids = extract_tracking_ids(event.transport.headers)
        trace_context = extract_trace_context(event.transport.headers)

        validation = validate_headers(event.transport.headers)
        if not validation.is_valid:
            logger.warning(
                "Suspicious webhook headers",
                correlation_id=tracking_ids.correlation_id,
                issues=validation.issues,
            )

        logger.info(
            "Processing webhook",
            correlation_id=tracking_ids.correlation_id,
            request_id=tracking_ids.request_id,
            trace_id=trace_context.trace_id,
            span_id=trace_context.span_id,
            traceparent=trace_context.traceparent,
            path=event.transport.path,
            method=event.transport.method,
        )

        start_time = time.monotonic()
        store_outcome, fanout_outcome = await self.dispatch(
            event, database, collection, tracking_ids, trace_context
        )
        processing_time_ms = int((time.monotonic() - start_time) * 1000)

        state = classify_outcomes(store_outcome, fanout_outcome)
        logger.info(
            "Concurrent operations completed",
            correlation_id=tracking_ids.correlation_id,
            state=state.value,
            store=store_outcome.status,
            fanout=fanout_outcome.status if fanout_outcome.attempted else "skipped",
            processing_time_ms=processing_time_ms,
        )

        return WebhookResponse(
            status_code=200,
            body={
                "message": DISPATCH_MESSAGES[state],
                "requestId": request_id,
                "database": database,
                "collection": collection,
                "operations_status": {
                    STORE_OPERATION: store_outcome.status,
                    FANOUT_OPERATION: fanout_outcome.status,
                },
                "processing_time_ms": processing_time_ms,
            },
        )

    async def dispatch(
        self,
        event: Event,
        database: str,
        collection: str,
        tracking_ids: TrackingIds,
        trace_context: Optional[TraceContext] = None,
    ) -> Tuple[OperationOutcome, OperationOutcome]:
        """
        Run the store write and the fan-out publish concurrently.

        Both branches are awaited to completion; neither failure cancels
        or fails the other.

        Returns:
            A ``(store, fanout)`` outcome pair
        """
        store_branch = _settle(
            STORE_OPERATION, self.store.store(database, collection, event.to_dict())
        )

        if self.publisher is not None and self.config.is_fanout_configured():
            fanout_branch = _settle(
                FANOUT_OPERATION,
                self.publisher.publish_webhook_event(
                    self.config.aws.topic_arn,
                    event,
                    self.config.environment,
                    tracking_ids,
                    trace_context,
                ),
            )
            store_outcome, fanout_outcome = await asyncio.gather(store_branch, fanout_branch)
        else:
            store_outcome = await store_branch
            fanout_outcome = OperationOutcome(
                operation=FANOUT_OPERATION, success=True, attempted=False
            )

        return store_outcome, fanout_outcome

    async def _resolve_connection_secret(self) -> str:
        name = self.config.aws.mongodb_uri_parameter
        if not name:
            raise ConfigurationError(
                "Missing required configuration: MONGODB_URI_PARAMETER",
                missing=["MONGODB_URI_PARAMETER"],
            )
        return await self.parameters.get_parameter(name)
