"""
kvcheck: consistency validation for replicated key-value store test traces.

Given what every client observed during a fault-injection run, and
optionally the requests the store actually committed, decides whether the
history is linearizable and whether watches and serializable reads agree
with the committed history.
"""

from kvcheck.config import ValidationConfig
from kvcheck.errors import (
    AssumptionError,
    LinearizationError,
    SerializableReadError,
    ValidationError,
    WatchValidationError,
)
from kvcheck.history import (
    ClientReport,
    EventType,
    Operation,
    WatchEvent,
    WatchOperation,
    WatchRequest,
    WatchResponse,
)
from kvcheck.validate import Result, validate

__all__ = [
    "AssumptionError",
    "ClientReport",
    "EventType",
    "LinearizationError",
    "Operation",
    "Result",
    "SerializableReadError",
    "ValidationConfig",
    "ValidationError",
    "WatchEvent",
    "WatchOperation",
    "WatchRequest",
    "WatchResponse",
    "WatchValidationError",
    "validate",
]
