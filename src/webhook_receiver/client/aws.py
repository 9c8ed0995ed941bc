"""
AWS client management.

Creates aiobotocore clients lazily and shares them for the lifetime
of the process so warm invocations reuse connections.
"""

import asyncio
from typing import Any, Dict, Optional

import structlog
from aiobotocore.session import AioSession

logger = structlog.get_logger(__name__)


class AwsClientFactory:
    """Manages shared aiobotocore clients keyed by service name."""

    def __init__(
        self,
        region_name: str,
        *,
        endpoint_url: Optional[str] = None,
        session: Optional[AioSession] = None,
        **client_kwargs: Any,
    ) -> None:
        self._region = region_name
        self._endpoint_url = endpoint_url
        self._session = session or AioSession()
        self._client_kwargs = client_kwargs
        self._clients: Dict[str, Any] = {}
        self._client_cms: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def get_client(self, service: str) -> Any:
        """Return the shared client for service; create it if needed."""
        async with self._lock:
            client = self._clients.get(service)
            if client is not None:
                return client

            kwargs = dict(self._client_kwargs)
            if self._endpoint_url:
                kwargs["endpoint_url"] = self._endpoint_url

            client_cm = self._session.create_client(service, region_name=self._region, **kwargs)
            client = await client_cm.__aenter__()
            self._client_cms[service] = client_cm
            self._clients[service] = client
            logger.debug("Created AWS client", service=service, region=self._region)
            return client

    async def close(self) -> None:
        """Close all open clients."""
        async with self._lock:
            for service, client_cm in self._client_cms.items():
                await client_cm.__aexit__(None, None, None)
                logger.debug("Closed AWS client", service=service)
            self._client_cms.clear()
            self._clients.clear()
