"""
Pytest configuration and fixtures for webhook receiver tests.
"""

from unittest.mock import AsyncMock

import pytest

from webhook_receiver.client.dead_letter import DeadLetterQueue
from webhook_receiver.client.metrics import MetricsEmitter
from webhook_receiver.client.parameters import ParameterStore
from webhook_receiver.client.publisher import TopicPublisher
from webhook_receiver.client.store import MongoEventStore
from webhook_receiver.config.settings import AwsConfig, Config, ServerConfig
from webhook_receiver.ingest.events import InboundRequest

ENV_VARS = (
    "AWS_REGION",
    "AWS_ENDPOINT_URL",
    "SNS_TOPIC_ARN",
    "MONGODB_URI_PARAMETER",
    "DLQ_URL",
    "ORIGINAL_TOPIC_ARN",
    "CRITICAL_FAILURE_TOPIC_ARN",
    "ENVIRONMENT",
    "AWS_LAMBDA_FUNCTION_NAME",
    "LOG_LEVEL",
    "WEBHOOK_RECEIVER_CONFIG_PATH",
)

TOPIC_ARN = "arn:aws:sns:ap-southeast-3:123456789012:webhook-events"
CRITICAL_TOPIC_ARN = "arn:aws:sns:ap-southeast-3:123456789012:webhook-critical"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host environment variables out of configuration."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def test_config(clean_env):
    """Create a test configuration."""
    return Config(
        version="1.0.0-test",
        environment="dev",
        aws=AwsConfig(
            region="ap-southeast-3",
            topic_arn=TOPIC_ARN,
            mongodb_uri_parameter="/webhook/mongodb-uri",
            dlq_url="https://sqs.ap-southeast-3.amazonaws.com/123456789012/webhook-dlq",
            critical_failure_topic_arn=CRITICAL_TOPIC_ARN,
        ),
        server=ServerConfig(log_level="DEBUG"),
    )


@pytest.fixture
def mock_parameters():
    """Create a mock parameter store."""
    parameters = AsyncMock(spec=ParameterStore)
    parameters.get_parameter.return_value = "mongodb://localhost:27017"
    return parameters


@pytest.fixture
def mock_store():
    """Create a mock document store."""
    store = AsyncMock(spec=MongoEventStore)
    store.store.return_value = "665f1c0e8b3e4a1d2c3b4a59"
    return store


@pytest.fixture
def mock_publisher():
    """Create a mock topic publisher."""
    publisher = AsyncMock(spec=TopicPublisher)
    publisher.publish_webhook_event.return_value = "sns-message-1"
    publisher.publish.return_value = "sns-message-2"
    return publisher


@pytest.fixture
def mock_metrics():
    """Create a mock metrics emitter."""
    return AsyncMock(spec=MetricsEmitter)


@pytest.fixture
def mock_queue():
    """Create a mock dead-letter queue."""
    return AsyncMock(spec=DeadLetterQueue)


@pytest.fixture
def telegram_request():
    """A JSON webhook as delivered by a Telegram bot integration."""
    return InboundRequest(
        method="POST",
        path="/messages/telegram",
        headers={
            "content-type": "application/json",
            "User-Agent": "BrainyBuddy-API/3.13.1",
            "X-Correlation-ID": "test-123",
        },
        query_parameters={},
        body='{"a":1}',
        source_ip="43.218.155.39",
        domain="webhook.example.com",
        stage="prod",
    )
