"""
Dead-letter handling for failed fan-out deliveries.

Analyzes failures, redelivers or escalates, and archives a record of
every processed entry.
"""

from .analysis import (
    DeadLetterEntry,
    FailureAnalysis,
    FailureInfo,
    analyze_failure,
    parse_original_event,
)
from .archive import FailureArchive
from .processor import BatchResult, DeadLetterProcessor

__all__ = [
    "BatchResult",
    "DeadLetterEntry",
    "DeadLetterProcessor",
    "FailureAnalysis",
    "FailureArchive",
    "FailureInfo",
    "analyze_failure",
    "parse_original_event",
]
