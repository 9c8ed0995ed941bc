"""
Webhook Receiver

Ingests webhook events over HTTP, stores them durably, fans them out to
an SNS topic, and triages failed fan-out deliveries from the dead-letter
queue.
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .config.settings import Config, ConfigurationError, load_config
from .dlq.processor import DeadLetterProcessor
from .ingest.dispatcher import WebhookDispatcher
from .server import WebhookReceiverServer

__all__ = [
    "WebhookReceiverServer",
    "WebhookDispatcher",
    "DeadLetterProcessor",
    "Config",
    "ConfigurationError",
    "load_config",
    "__version__",
    "__license__",
]
