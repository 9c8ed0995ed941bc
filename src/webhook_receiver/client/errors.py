"""Errors raised by collaborator adapters."""

from typing import Optional


class UpstreamDependencyError(Exception):
    """A call to an upstream dependency (parameters, store, topic, queue) failed."""

    def __init__(
        self,
        message: str,
        operation: str = "upstream",
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.original_error = original_error
