"""Dead-letter queue access over SQS."""

from typing import Any, Dict, List

import structlog

from .aws import AwsClientFactory
from .errors import UpstreamDependencyError

logger = structlog.get_logger(__name__)


class DeadLetterQueue:
    """Receives and deletes dead-letter entries from one SQS queue."""

    def __init__(self, clients: AwsClientFactory, queue_url: str):
        self.clients = clients
        self.queue_url = queue_url

    async def receive(self, max_messages: int = 10, wait_seconds: int = 20) -> List[Dict[str, Any]]:
        """Long-poll for up to max_messages raw SQS messages."""
        try:
            client = await self.clients.get_client("sqs")
            response = await client.receive_message(
                QueueUrl=self.queue_url,
                MaxNumberOfMessages=max_messages,
                WaitTimeSeconds=wait_seconds,
                AttributeNames=["All"],
                MessageAttributeNames=["All"],
            )
        except Exception as e:
            raise UpstreamDependencyError(
                f"SQS receive failed: {e}", operation="dlq_receive", original_error=e
            ) from e

        return response.get("Messages", [])

    async def delete(self, receipt_handle: str) -> None:
        """Remove a processed entry. Deleting an already removed entry is harmless."""
        try:
            client = await self.clients.get_client("sqs")
            await client.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)
        except Exception as e:
            raise UpstreamDependencyError(
                f"SQS delete failed: {e}", operation="dlq_delete", original_error=e
            ) from e

        logger.debug("Deleted dead-letter entry", queue_url=self.queue_url)
