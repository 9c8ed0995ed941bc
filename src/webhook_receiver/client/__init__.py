"""Adapters for the collaborators the receiver talks to."""

from .aws import AwsClientFactory
from .dead_letter import DeadLetterQueue
from .errors import UpstreamDependencyError
from .metrics import MetricsEmitter
from .parameters import ParameterStore
from .publisher import TopicPublisher
from .store import MongoEventStore

__all__ = [
    "AwsClientFactory",
    "DeadLetterQueue",
    "MetricsEmitter",
    "MongoEventStore",
    "ParameterStore",
    "TopicPublisher",
    "UpstreamDependencyError",
]
