"""
Archival of dead-letter failure records.

Every processed entry leaves a full failure record in the logs and,
when a document store is attached, in a dedicated collection.
"""

from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)

ARCHIVE_COLLECTION = "dlq-failures"


class FailureArchive:
    """Writes failure records to the log stream and an optional store."""

    def __init__(
        self,
        store: Optional[Any] = None,
        database: Optional[str] = None,
        collection: str = ARCHIVE_COLLECTION,
    ):
        self.store = store
        self.database = database
        self.collection = collection

    async def archive(self, record: Dict[str, Any]) -> None:
        """
        Archive one failure record.

        Raises whatever the store raises; callers treat archival as
        best effort.
        """
        logger.info("Failure details", record=record)

        if self.store is not None and self.database:
            await self.store.store(self.database, self.collection, record)
