"""
Dead-letter queue processing.

Handles failed fan-out deliveries by analyzing the failure, redelivering
the original event when it is worth it, escalating critical failures,
and recording metrics and an archival record for every entry.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, Iterable, List, Mapping, Optional, Set

import structlog

from ..client.metrics import count_metric
from ..client.publisher import number_attribute
from ..config.settings import Config
from ..ingest.events import utc_timestamp
from .analysis import (
    DeadLetterEntry,
    FailureAnalysis,
    FailureInfo,
    analyze_failure,
    event_field,
    parse_original_event,
)
from .archive import FailureArchive

logger = structlog.get_logger(__name__)

METRICS_NAMESPACE = "WebhookReceiver/DLQ"

STATUS_PROCESSED = "processed"
STATUS_FAILED = "failed"


@dataclass
class BatchResult:
    """Outcome of one dead-letter batch."""

    results: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        processed = sum(1 for result in self.results if result["status"] == STATUS_PROCESSED)
        failed = sum(1 for result in self.results if result["status"] == STATUS_FAILED)
        return {"processed": processed, "failed": failed, "total": len(self.results)}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": "DLQ processing complete",
            "summary": self.summary,
            "results": self.results,
        }


class DeadLetterProcessor:
    """
    Processes dead-letter entries one at a time.

    Collaborators are injected: ``publisher`` republishes and escalates,
    ``metrics`` emits CloudWatch data, ``archive`` keeps failure records
    and ``queue`` deletes entries once processed. Metrics, escalation and
    archival run as best-effort background tasks; their failures are
    logged and never affect the entry's outcome.
    """

    def __init__(
        self,
        config: Config,
        publisher: Any,
        metrics: Optional[Any] = None,
        archive: Optional[FailureArchive] = None,
        queue: Optional[Any] = None,
    ):
        self.config = config
        self.publisher = publisher
        self.metrics = metrics
        self.archive = archive or FailureArchive()
        self.queue = queue
        self._side_tasks: Set["asyncio.Task[None]"] = set()

    async def process_entry(self, entry: DeadLetterEntry) -> Dict[str, Any]:
        """
        Process one dead-letter entry.

        Raises:
            Exception: If redelivery fails; the entry must then stay queued
        """
        info = FailureInfo.from_entry(entry)
        logger.info("Processing DLQ message", failure=info.to_dict())

        event = parse_original_event(entry.body)
        analysis = analyze_failure(info, event, max_age_hours=self.config.webhook.message_age_hours)

        self._run_side_task("metrics", self.send_metrics(info, analysis))

        if analysis.should_retry and info.receive_count < self.config.webhook.max_retries:
            logger.info("Attempting to retry message delivery", message_id=info.message_id)
            await self.retry_delivery(event, info)
        else:
            logger.info(
                "Message will not be retried",
                message_id=info.message_id,
                should_retry=analysis.should_retry,
                receive_count=info.receive_count,
            )
            if analysis.is_critical and self.config.is_escalation_configured():
                self._run_side_task("escalation", self.notify_critical(info, event, analysis))

        self._run_side_task("archive", self.archive.archive(self.failure_record(info, event, analysis)))

        return {
            "status": STATUS_PROCESSED,
            "messageId": info.message_id,
            "analysis": analysis.to_dict(),
        }

    async def process_batch(self, entries: Iterable[DeadLetterEntry]) -> BatchResult:
        """
        Process a batch of entries independently.

        A failing entry is reported and left in the queue; the remaining
        entries are still processed. Entries are deleted only after
        processing completes without raising.
        """
        batch = BatchResult()

        for entry in entries:
            try:
                result = await self.process_entry(entry)
                if self.queue is not None and entry.receipt_handle:
                    await self.queue.delete(entry.receipt_handle)
                batch.results.append(result)
            except Exception as e:
                logger.error(
                    "Failed to process message",
                    message_id=entry.message_id,
                    error=str(e),
                    exc_info=True,
                )
                batch.results.append(
                    {"status": STATUS_FAILED, "messageId": entry.message_id, "error": str(e)}
                )

        await self.flush()
        logger.info("DLQ processing complete", **batch.summary)
        return batch

    async def handle_sqs_event(self, event: Mapping[str, Any]) -> Dict[str, Any]:
        """Process a Lambda-style SQS event and build the invocation response."""
        records = event.get("Records") or []
        logger.info("DLQ processor started", message_count=len(records))

        entries = [DeadLetterEntry.from_sqs_record(record) for record in records]
        batch = await self.process_batch(entries)
        return {"statusCode": 200, "body": json.dumps(batch.to_dict(), default=str)}

    async def retry_delivery(self, event: Any, info: FailureInfo) -> bool:
        """
        Republish the original event to its topic with retry metadata.

        Returns:
            True if the event was republished, False if no topic is known
        """
        topic_arn = info.original_topic_ref or self.config.aws.original_topic_arn
        if not topic_arn:
            logger.warning("No original topic for retry", message_id=info.message_id)
            return False

        retry_block = {
            "attempt": info.receive_count,
            "originalMessageId": info.message_id,
            "originalFailure": info.failure_reason,
            "retryTimestamp": utc_timestamp(),
        }
        if isinstance(event, Mapping):
            retry_message = {**event, "_retry": retry_block}
        else:
            retry_message = {"message": event, "_retry": retry_block}

        await self.publisher.publish(
            topic_arn,
            retry_message,
            attributes={"RetryAttempt": number_attribute(info.receive_count)},
        )
        logger.info("Message republished for retry", message_id=info.message_id, topic_arn=topic_arn)
        return True

    async def notify_critical(self, info: FailureInfo, event: Any, analysis: FailureAnalysis) -> None:
        notification = {
            "level": "CRITICAL",
            "service": self.config.service,
            "environment": self.config.environment,
            "failure": {
                "messageId": info.message_id,
                "endpoint": info.subscriber_endpoint,
                "protocol": info.protocol,
                "reason": info.failure_reason,
                "receiveCount": info.receive_count,
            },
            "webhookEvent": {
                "path": event_field(event, "path"),
                "method": event_field(event, "method"),
                "timestamp": event.get("timestamp") if isinstance(event, Mapping) else None,
            },
            "analysis": analysis.to_dict(),
            "timestamp": utc_timestamp(),
        }

        await self.publisher.publish(
            self.config.aws.critical_failure_topic_arn,
            json.dumps(notification, indent=2, default=str),
            subject=f"Critical Webhook Failure - {analysis.failure_type}",
        )
        logger.warning("Critical failure escalated", message_id=info.message_id)

    async def send_metrics(self, info: FailureInfo, analysis: FailureAnalysis) -> None:
        if self.metrics is None:
            return

        protocol = info.protocol or "unknown"
        metric_data = [
            count_metric(
                "ProcessedMessages",
                {"Protocol": protocol, "FailureType": analysis.failure_type},
            )
        ]
        if analysis.is_critical:
            metric_data.append(count_metric("CriticalFailures", {"Protocol": protocol}))

        await self.metrics.put_metrics(METRICS_NAMESPACE, metric_data)

    def failure_record(
        self, info: FailureInfo, event: Any, analysis: FailureAnalysis
    ) -> Dict[str, Any]:
        return {
            "timestamp": utc_timestamp(),
            "messageId": info.message_id,
            "failure": info.to_dict(),
            "webhookEvent": event,
            "analysis": analysis.to_dict(),
            "environment": self.config.environment,
        }

    def _run_side_task(self, name: str, coro: Awaitable[None]) -> None:
        async def run() -> None:
            try:
                await coro
            except Exception as e:
                logger.error(f"Error in {name}", error=str(e))

        task = asyncio.ensure_future(run())
        self._side_tasks.add(task)
        task.add_done_callback(self._side_tasks.discard)

    async def flush(self) -> None:
        """Wait for outstanding metrics, escalation and archival tasks."""
        if self._side_tasks:
            await asyncio.gather(*list(self._side_tasks))
