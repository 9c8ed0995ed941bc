"""
Unit tests for dead-letter queue processing.
"""

import json
import time
from unittest.mock import AsyncMock

import pytest

from webhook_receiver.client.errors import UpstreamDependencyError
from webhook_receiver.dlq.analysis import DeadLetterEntry
from webhook_receiver.dlq.archive import FailureArchive
from webhook_receiver.dlq.processor import METRICS_NAMESPACE, DeadLetterProcessor

ORIGINAL_TOPIC = "arn:aws:sns:ap-southeast-3:123456789012:webhook-events"


def make_record(
    message_id="m-1",
    reason="Timeout",
    receive_count=1,
    path="/messages/telegram",
    protocol="https",
    sent_timestamp=None,
    topic_arn=ORIGINAL_TOPIC,
):
    event = {
        "timestamp": "2024-01-02T03:04:05.678Z",
        "transport": {"method": "POST", "path": path},
        "payload": {"a": 1},
    }
    attributes = {"ApproximateReceiveCount": str(receive_count)}
    if sent_timestamp is not None:
        attributes["SentTimestamp"] = str(sent_timestamp)

    message_attributes = {
        "FailureReason": {"stringValue": reason},
        "Protocol": {"stringValue": protocol},
    }
    if topic_arn:
        message_attributes["TopicArn"] = {"stringValue": topic_arn}

    return {
        "messageId": message_id,
        "receiptHandle": f"rh-{message_id}",
        "body": json.dumps({"Type": "Notification", "Message": json.dumps(event)}),
        "attributes": attributes,
        "messageAttributes": message_attributes,
    }


def make_entry(**kwargs):
    return DeadLetterEntry.from_sqs_record(make_record(**kwargs))


@pytest.fixture
def mock_archive():
    """Create a mock failure archive."""
    return AsyncMock(spec=FailureArchive)


@pytest.fixture
def processor(test_config, mock_publisher, mock_metrics, mock_archive, mock_queue):
    """Create a processor with mocked collaborators."""
    return DeadLetterProcessor(
        test_config,
        publisher=mock_publisher,
        metrics=mock_metrics,
        archive=mock_archive,
        queue=mock_queue,
    )


class TestRetry:
    """Test redelivery decisions."""

    @pytest.mark.asyncio
    async def test_timeout_is_republished(self, processor, mock_publisher):
        """Test that a first-time timeout is republished with retry metadata."""
        result = await processor.process_entry(make_entry(reason="Timeout", receive_count=1))
        await processor.flush()

        assert result["status"] == "processed"
        assert result["analysis"]["shouldRetry"] is True
        assert result["analysis"]["failureType"] == "timeout"

        mock_publisher.publish.assert_awaited_once()
        call = mock_publisher.publish.call_args
        topic_arn, message = call.args
        assert topic_arn == ORIGINAL_TOPIC
        assert call.kwargs["attributes"] == {
            "RetryAttempt": {"DataType": "Number", "StringValue": "1"}
        }
        assert message["payload"] == {"a": 1}
        assert message["_retry"]["attempt"] == 1
        assert message["_retry"]["originalMessageId"] == "m-1"
        assert message["_retry"]["originalFailure"] == "Timeout"
        assert message["_retry"]["retryTimestamp"].endswith("Z")

    @pytest.mark.asyncio
    async def test_retry_limit_reached(self, processor, mock_publisher):
        """Test that entries at the retry limit are not republished."""
        result = await processor.process_entry(make_entry(reason="Timeout", receive_count=3))
        await processor.flush()

        assert result["analysis"]["shouldRetry"] is True
        mock_publisher.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, processor, mock_publisher):
        """Test that client errors are never republished."""
        await processor.process_entry(make_entry(reason="HTTP 404"))
        await processor.flush()
        mock_publisher.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_old_message_not_retried(self, processor, mock_publisher):
        """Test that stale entries are not republished."""
        sent = int((time.time() - 25 * 3600) * 1000)
        result = await processor.process_entry(make_entry(sent_timestamp=sent))
        await processor.flush()

        assert result["analysis"]["shouldRetry"] is False
        mock_publisher.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_falls_back_to_configured_topic(self, test_config, mock_publisher):
        """Test redelivery to the configured topic when the entry names none."""
        test_config.aws.original_topic_arn = ORIGINAL_TOPIC
        processor = DeadLetterProcessor(test_config, publisher=mock_publisher)

        await processor.process_entry(make_entry(topic_arn=None))
        await processor.flush()

        assert mock_publisher.publish.call_args.args[0] == ORIGINAL_TOPIC

    @pytest.mark.asyncio
    async def test_no_topic_known(self, processor, mock_publisher):
        """Test that redelivery is skipped without any topic."""
        result = await processor.process_entry(make_entry(topic_arn=None))
        await processor.flush()

        assert result["status"] == "processed"
        mock_publisher.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_text_event_is_wrapped(self, processor, mock_publisher):
        """Test redelivery of an event that is not JSON."""
        record = make_record()
        record["body"] = json.dumps({"Message": "plain text"})

        await processor.process_entry(DeadLetterEntry.from_sqs_record(record))
        await processor.flush()

        message = mock_publisher.publish.call_args.args[1]
        assert message["message"] == "plain text"
        assert message["_retry"]["attempt"] == 1

    @pytest.mark.asyncio
    async def test_redelivery_failure_propagates(self, processor, mock_publisher):
        """Test that a failed redelivery fails the entry."""
        mock_publisher.publish.side_effect = UpstreamDependencyError("SNS publish failed: x")

        with pytest.raises(UpstreamDependencyError):
            await processor.process_entry(make_entry())
        await processor.flush()


class TestEscalation:
    """Test critical failure escalation."""

    @pytest.mark.asyncio
    async def test_critical_failure_escalated(self, processor, test_config, mock_publisher):
        """Test that a non-retried critical failure is escalated."""
        await processor.process_entry(
            make_entry(reason="HTTP 400", path="/payment/charge", receive_count=2)
        )
        await processor.flush()

        mock_publisher.publish.assert_awaited_once()
        call = mock_publisher.publish.call_args
        assert call.args[0] == test_config.aws.critical_failure_topic_arn
        assert call.kwargs["subject"] == "Critical Webhook Failure - client_error"

        notification = json.loads(call.args[1])
        assert notification["level"] == "CRITICAL"
        assert notification["environment"] == "dev"
        assert notification["failure"]["messageId"] == "m-1"
        assert notification["failure"]["protocol"] == "https"
        assert notification["failure"]["reason"] == "HTTP 400"
        assert notification["failure"]["receiveCount"] == 2
        assert notification["webhookEvent"]["path"] == "/payment/charge"
        assert notification["webhookEvent"]["method"] == "POST"
        assert notification["analysis"]["isCritical"] is True

    @pytest.mark.asyncio
    async def test_retried_critical_not_escalated(self, processor, mock_publisher):
        """Test that a critical failure still being retried is not escalated."""
        await processor.process_entry(make_entry(reason="Timeout", path="/security/alert"))
        await processor.flush()

        assert mock_publisher.publish.await_count == 1
        assert mock_publisher.publish.call_args.args[0] == ORIGINAL_TOPIC

    @pytest.mark.asyncio
    async def test_non_critical_not_escalated(self, processor, mock_publisher):
        """Test that ordinary paths are not escalated."""
        await processor.process_entry(make_entry(reason="HTTP 400", path="/generatives"))
        await processor.flush()
        mock_publisher.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_escalation_unconfigured(self, test_config, mock_publisher):
        """Test that escalation is skipped without an escalation topic."""
        test_config.aws.critical_failure_topic_arn = None
        processor = DeadLetterProcessor(test_config, publisher=mock_publisher)

        await processor.process_entry(make_entry(reason="HTTP 400", path="/payment"))
        await processor.flush()

        mock_publisher.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_escalation_failure_is_swallowed(self, processor, mock_publisher):
        """Test that escalation failures do not fail the entry."""
        mock_publisher.publish.side_effect = UpstreamDependencyError("down")

        result = await processor.process_entry(make_entry(reason="HTTP 400", path="/payment"))
        await processor.flush()

        assert result["status"] == "processed"


class TestSideEffects:
    """Test metrics and archival."""

    @pytest.mark.asyncio
    async def test_metrics(self, processor, mock_metrics):
        """Test the processed-message metric and its dimensions."""
        await processor.process_entry(make_entry(reason="HTTP 503", protocol="lambda"))
        await processor.flush()

        namespace, metric_data = mock_metrics.put_metrics.call_args.args
        assert namespace == METRICS_NAMESPACE == "WebhookReceiver/DLQ"
        assert metric_data == [
            {
                "MetricName": "ProcessedMessages",
                "Value": 1,
                "Unit": "Count",
                "Dimensions": [
                    {"Name": "Protocol", "Value": "lambda"},
                    {"Name": "FailureType", "Value": "server_error"},
                ],
            }
        ]

    @pytest.mark.asyncio
    async def test_critical_metric(self, processor, mock_metrics):
        """Test that critical failures emit an extra metric."""
        await processor.process_entry(make_entry(reason="HTTP 400", path="/critical"))
        await processor.flush()

        metric_data = mock_metrics.put_metrics.call_args.args[1]
        assert [datum["MetricName"] for datum in metric_data] == [
            "ProcessedMessages",
            "CriticalFailures",
        ]
        assert metric_data[1]["Dimensions"] == [{"Name": "Protocol", "Value": "https"}]

    @pytest.mark.asyncio
    async def test_metrics_failure_is_swallowed(self, processor, mock_metrics):
        """Test that metric failures do not fail the entry."""
        mock_metrics.put_metrics.side_effect = UpstreamDependencyError("throttled")

        result = await processor.process_entry(make_entry(reason="HTTP 400"))
        await processor.flush()

        assert result["status"] == "processed"

    @pytest.mark.asyncio
    async def test_archive_record(self, processor, mock_archive):
        """Test that every entry is archived with its analysis."""
        await processor.process_entry(make_entry(reason="HTTP 400"))
        await processor.flush()

        record = mock_archive.archive.call_args.args[0]
        assert record["messageId"] == "m-1"
        assert record["environment"] == "dev"
        assert record["failure"]["failureReason"] == "HTTP 400"
        assert record["webhookEvent"]["transport"]["path"] == "/messages/telegram"
        assert record["analysis"]["failureType"] == "client_error"

    @pytest.mark.asyncio
    async def test_archive_failure_is_swallowed(self, processor, mock_archive):
        """Test that archival failures do not fail the entry."""
        mock_archive.archive.side_effect = RuntimeError("store down")

        result = await processor.process_entry(make_entry(reason="HTTP 400"))
        await processor.flush()

        assert result["status"] == "processed"

    @pytest.mark.asyncio
    async def test_archive_to_store(self, mock_store):
        """Test archival into the document store."""
        archive = FailureArchive(store=mock_store, database="dev-webhook")
        await archive.archive({"messageId": "m-1"})
        mock_store.store.assert_awaited_once_with(
            "dev-webhook", "dlq-failures", {"messageId": "m-1"}
        )

    @pytest.mark.asyncio
    async def test_archive_log_only(self, mock_store):
        """Test that archival without a database only logs."""
        await FailureArchive(store=mock_store).archive({"messageId": "m-1"})
        mock_store.store.assert_not_called()


class TestBatch:
    """Test batch processing."""

    @pytest.mark.asyncio
    async def test_failures_are_isolated(self, processor, mock_publisher, mock_queue):
        """Test that one failing entry does not stop the batch."""

        async def publish(topic_arn, message, **kwargs):
            if message["_retry"]["originalMessageId"] == "m-2":
                raise UpstreamDependencyError("SNS publish failed: throttled")
            return "ok"

        mock_publisher.publish.side_effect = publish
        entries = [make_entry(message_id=f"m-{i}") for i in range(1, 4)]

        batch = await processor.process_batch(entries)

        assert batch.summary == {"processed": 2, "failed": 1, "total": 3}
        assert [result["status"] for result in batch.results] == [
            "processed",
            "failed",
            "processed",
        ]
        assert batch.results[1]["error"] == "SNS publish failed: throttled"
        assert mock_publisher.publish.await_count == 3

        deleted = [call.args[0] for call in mock_queue.delete.call_args_list]
        assert deleted == ["rh-m-1", "rh-m-3"]

    @pytest.mark.asyncio
    async def test_delete_failure_keeps_entry(self, processor, mock_queue):
        """Test that a failed delete is reported as a failed entry."""
        mock_queue.delete.side_effect = UpstreamDependencyError("SQS delete failed: x")

        batch = await processor.process_batch([make_entry(reason="HTTP 400")])

        assert batch.summary == {"processed": 0, "failed": 1, "total": 1}

    @pytest.mark.asyncio
    async def test_empty_batch(self, processor):
        """Test an empty batch."""
        batch = await processor.process_batch([])
        assert batch.to_dict() == {
            "message": "DLQ processing complete",
            "summary": {"processed": 0, "failed": 0, "total": 0},
            "results": [],
        }

    @pytest.mark.asyncio
    async def test_handle_sqs_event(self, processor):
        """Test the Lambda-style invocation response."""
        event = {"Records": [make_record(reason="HTTP 400"), make_record(message_id="m-2")]}

        response = await processor.handle_sqs_event(event)

        assert response["statusCode"] == 200
        body = json.loads(response["body"])
        assert body["message"] == "DLQ processing complete"
        assert body["summary"] == {"processed": 2, "failed": 0, "total": 2}
        assert body["results"][0]["analysis"]["failureType"] == "client_error"
        assert body["results"][1]["analysis"]["failureType"] == "timeout"
