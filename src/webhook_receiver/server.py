"""
Main webhook receiver implementation.

Wires the collaborator adapters, the dispatcher and the dead-letter
processor together. One instance lives for the whole process so the
resolved secret, the MongoDB client and the AWS clients are reused
across requests.
"""

from typing import Optional

import structlog
from aiohttp import web

from .client.aws import AwsClientFactory
from .client.dead_letter import DeadLetterQueue
from .client.metrics import MetricsEmitter
from .client.parameters import ParameterStore
from .client.publisher import TopicPublisher
from .client.store import MongoEventStore
from .config.settings import Config, ConfigurationError
from .dlq.analysis import DeadLetterEntry
from .dlq.archive import FailureArchive
from .dlq.processor import BatchResult, DeadLetterProcessor
from .ingest.dispatcher import WebhookDispatcher
from .ingest.http import create_app
from .utils.cache import TTLCache

logger = structlog.get_logger(__name__)


class WebhookReceiverServer:
    """
    Process-wide container for the receiver's components.

    Coordinates the HTTP front door and the dead-letter drain loop.
    """

    def __init__(self, config: Config):
        """
        Initialize the server.

        Args:
            config: Validated configuration

        Raises:
            ConfigurationError: If a mandatory setting is missing
        """
        config.validate_required()
        self.config = config

        self.clients = AwsClientFactory(config.aws.region, endpoint_url=config.aws.endpoint_url)
        self.cache = TTLCache(default_ttl_seconds=config.cache.parameter_ttl_seconds)
        self.parameters = ParameterStore(self.clients, self.cache)
        self.store = MongoEventStore(self._mongodb_uri)
        self.publisher = TopicPublisher(self.clients, max_header_size=config.webhook.max_header_size)
        self.metrics = MetricsEmitter(self.clients)

        self.queue: Optional[DeadLetterQueue] = None
        if config.is_dlq_configured():
            self.queue = DeadLetterQueue(self.clients, config.aws.dlq_url)

        if config.webhook.archive_failures_to_store:
            archive = FailureArchive(store=self.store, database=config.database_name)
        else:
            archive = FailureArchive()

        self.dispatcher = WebhookDispatcher(
            config,
            parameters=self.parameters,
            store=self.store,
            publisher=self.publisher,
        )
        self.processor = DeadLetterProcessor(
            config,
            publisher=self.publisher,
            metrics=self.metrics,
            archive=archive,
            queue=self.queue,
        )

        if not config.is_fanout_configured():
            logger.warning("SNS_TOPIC_ARN not set; fan-out publishing disabled")

    async def _mongodb_uri(self) -> str:
        return await self.parameters.get_parameter(self.config.aws.mongodb_uri_parameter)

    def create_app(self) -> web.Application:
        """Build the HTTP application; components are closed on shutdown."""
        app = create_app(self.dispatcher)

        async def on_cleanup(_app: web.Application) -> None:
            await self.close()

        app.on_cleanup.append(on_cleanup)
        return app

    async def drain_dlq(
        self, once: bool = False, max_messages: int = 10, wait_seconds: int = 20
    ) -> BatchResult:
        """
        Long-poll the dead-letter queue and process what arrives.

        Args:
            once: Stop after the first non-empty batch
            max_messages: Maximum entries per receive call
            wait_seconds: Long-poll wait time

        Returns:
            The last processed batch
        """
        if self.queue is None:
            raise ConfigurationError("Missing required configuration: DLQ_URL", missing=["DLQ_URL"])

        last = BatchResult()
        while True:
            messages = await self.queue.receive(max_messages=max_messages, wait_seconds=wait_seconds)
            if messages:
                entries = [DeadLetterEntry.from_sqs_record(message) for message in messages]
                last = await self.processor.process_batch(entries)
                if once:
                    return last
            elif once:
                logger.info("Dead-letter queue empty")
                return last

    async def close(self) -> None:
        """Release pooled connections."""
        self.store.close()
        await self.clients.close()
        logger.info("Webhook receiver stopped")
