"""
Client-observed history: operations, watch streams and per-client reports.

These are the already-materialized inputs handed to the validator by the
trace collection layer. They are frozen; every stage that needs a variant
(for example an operation with a patched return time) derives a copy with
dataclasses.replace.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from kvcheck.requests import Request, Response, prefix_end


@dataclass(frozen=True)
class Operation:
    """
    One call as seen by one client.

    ``return_time`` is None when the call is unresolved: it may take effect at
    any point after ``call_time``, up to the end of the history.
    """

    client_id: int
    call_time: int
    return_time: Optional[int]
    request: Request
    response: Response

    @property
    def unresolved(self) -> bool:
        return self.return_time is None


class EventType(Enum):
    PUT = "put"
    DELETE = "delete"


@dataclass(frozen=True)
class WatchEvent:
    type: EventType
    key: str
    value: Optional[str]
    revision: int
    is_create: bool = False
    prev_value: Optional[str] = None


@dataclass(frozen=True)
class WatchRequest:
    key: str
    revision: int = 0
    with_prefix: bool = False
    with_prev_kv: bool = False
    with_progress_notify: bool = False

    @property
    def end(self) -> str:
        return prefix_end(self.key) if self.with_prefix else ""

    def matches(self, key: str) -> bool:
        if self.with_prefix:
            return key.startswith(self.key)
        return key == self.key


@dataclass(frozen=True)
class WatchResponse:
    """One batch received on a watch stream.

    A non-zero ``compact_revision`` means the client was told the watched
    history was compacted up to that revision.
    """

    events: Tuple[WatchEvent, ...] = ()
    revision: int = 0
    time: int = 0
    is_progress_notify: bool = False
    compact_revision: int = 0

    def __post_init__(self):
        object.__setattr__(self, "events", tuple(self.events))


@dataclass(frozen=True)
class WatchOperation:
    request: WatchRequest
    responses: Tuple[WatchResponse, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "responses", tuple(self.responses))

    def events(self) -> Tuple[WatchEvent, ...]:
        return tuple(event for response in self.responses for event in response.events)


@dataclass(frozen=True)
class ClientReport:
    """Everything one simulated client did, ordered by call time."""

    client_id: int
    key_value: Tuple[Operation, ...] = ()
    watch: Tuple[WatchOperation, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "key_value", tuple(self.key_value))
        object.__setattr__(self, "watch", tuple(self.watch))
