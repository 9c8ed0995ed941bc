"""Metric emission to CloudWatch."""

from typing import Any, Dict, List

import structlog

from .aws import AwsClientFactory
from .errors import UpstreamDependencyError

logger = structlog.get_logger(__name__)


def count_metric(name: str, dimensions: Dict[str, str], value: float = 1) -> Dict[str, Any]:
    """Build one Count datum."""
    return {
        "MetricName": name,
        "Value": value,
        "Unit": "Count",
        "Dimensions": [{"Name": key, "Value": val} for key, val in dimensions.items()],
    }


class MetricsEmitter:
    """Sends metric data to a CloudWatch namespace."""

    def __init__(self, clients: AwsClientFactory):
        self.clients = clients

    async def put_metrics(self, namespace: str, metric_data: List[Dict[str, Any]]) -> None:
        try:
            client = await self.clients.get_client("cloudwatch")
            await client.put_metric_data(Namespace=namespace, MetricData=metric_data)
        except Exception as e:
            raise UpstreamDependencyError(
                f"Metric emission failed: {e}", operation="metrics", original_error=e
            ) from e

        logger.debug("Metrics sent", namespace=namespace, count=len(metric_data))
