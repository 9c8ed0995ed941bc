"""
Durable document store for webhook events.

Wraps a lazily created motor client shared across requests.
"""

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional

import structlog

from .errors import UpstreamDependencyError

if TYPE_CHECKING:
    from motor.motor_asyncio import AsyncIOMotorClient

logger = structlog.get_logger(__name__)


class MongoEventStore:
    """
    Writes webhook documents to MongoDB.

    The connection string is resolved on first use through the given
    coroutine factory, so the secret lookup happens once per process.
    """

    def __init__(
        self,
        uri_provider: Callable[[], Awaitable[str]],
        *,
        max_pool_size: int = 10,
        server_selection_timeout_ms: int = 5000,
        socket_timeout_ms: int = 45000,
        client_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self._uri_provider = uri_provider
        self._max_pool_size = max_pool_size
        self._server_selection_timeout_ms = server_selection_timeout_ms
        self._socket_timeout_ms = socket_timeout_ms
        self._client_factory = client_factory
        self._client: Optional["AsyncIOMotorClient[Any]"] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> "AsyncIOMotorClient[Any]":
        """Create and cache the motor client. Idempotent."""
        async with self._lock:
            if self._client is not None:
                logger.debug("Reusing existing MongoDB connection")
                return self._client

            uri = await self._uri_provider()
            factory = self._client_factory
            if factory is None:
                from motor.motor_asyncio import AsyncIOMotorClient

                factory = AsyncIOMotorClient

            try:
                self._client = factory(
                    uri,
                    maxPoolSize=self._max_pool_size,
                    serverSelectionTimeoutMS=self._server_selection_timeout_ms,
                    socketTimeoutMS=self._socket_timeout_ms,
                )
            except Exception as e:
                logger.error("Failed to connect to MongoDB", error=str(e))
                raise UpstreamDependencyError(
                    f"MongoDB connection failed: {e}", operation="store", original_error=e
                ) from e

            logger.info("Connected to MongoDB (new connection)")
            return self._client

    async def store(self, database: str, collection: str, document: Dict[str, Any]) -> str:
        """
        Insert one webhook document.

        Returns:
            The inserted document id as a string

        Raises:
            UpstreamDependencyError: If the write fails
        """
        client = await self.connect()
        try:
            # insert_one mutates its argument with _id
            result = await client[database][collection].insert_one(dict(document))
        except Exception as e:
            logger.error(
                "Failed to store webhook event",
                database=database,
                collection=collection,
                error=str(e),
            )
            raise UpstreamDependencyError(
                f"MongoDB insert failed: {e}", operation="store", original_error=e
            ) from e

        logger.info(
            "Webhook event stored",
            database=database,
            collection=collection,
            inserted_id=str(result.inserted_id),
        )
        return str(result.inserted_id)

    def close(self) -> None:
        """Close the client (motor's close() is synchronous)."""
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("MongoDB connection closed")
