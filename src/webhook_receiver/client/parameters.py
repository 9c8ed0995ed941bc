"""
Parameter store access with caching.

Resolves secrets such as the document store connection string from
AWS Systems Manager Parameter Store.
"""

from typing import Any, Dict, Optional

import structlog

from ..utils.cache import TTLCache
from .aws import AwsClientFactory
from .errors import UpstreamDependencyError

logger = structlog.get_logger(__name__)


class ParameterStore:
    """SSM Parameter Store reader backed by a TTL cache."""

    def __init__(self, clients: AwsClientFactory, cache: TTLCache):
        """
        Initialize parameter store.

        Args:
            clients: Shared AWS client factory
            cache: Process-wide cache for resolved values
        """
        self.clients = clients
        self.cache = cache

    @staticmethod
    def _cache_key(name: str, with_decryption: bool) -> str:
        return f"{name}:{with_decryption}"

    async def get_parameter(
        self, name: str, with_decryption: bool = True, use_cache: bool = True
    ) -> str:
        """
        Retrieve a parameter value.

        Args:
            name: Parameter name
            with_decryption: Whether to decrypt SecureString parameters
            use_cache: Whether to serve a cached value if available

        Returns:
            The parameter value

        Raises:
            UpstreamDependencyError: If retrieval fails
        """

        async def load() -> str:
            return await self._fetch(name, with_decryption)

        if not use_cache:
            return await load()

        return await self.cache.get_or_load(self._cache_key(name, with_decryption), load)

    async def _fetch(self, name: str, with_decryption: bool) -> str:
        logger.info("Retrieving parameter", parameter=name)
        try:
            client = await self.clients.get_client("ssm")
            response = await client.get_parameter(Name=name, WithDecryption=with_decryption)
            return response["Parameter"]["Value"]
        except Exception as e:
            logger.error("Failed to retrieve parameter", parameter=name, error=str(e))
            raise UpstreamDependencyError(
                f"Parameter retrieval failed: {e}",
                operation="parameters",
                original_error=e,
            ) from e

    async def clear_cache(self, name: Optional[str] = None) -> None:
        """Clear one parameter (both decryption variants) or the whole cache."""
        if name:
            await self.cache.invalidate_prefix(f"{name}:")
            logger.info("Cleared cache for parameter", parameter=name)
        else:
            await self.cache.clear()

    async def cache_stats(self) -> Dict[str, Any]:
        return await self.cache.get_stats()
