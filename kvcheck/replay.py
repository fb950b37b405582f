"""
Replay engine: the store's state at every revision, rebuilt from ground truth.

The persisted requests are folded through the same StoreState.step the
linearizability oracle uses, so the replay and the oracle cannot disagree on
semantics. The result is built once and never modified.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from kvcheck.errors import RevisionNotInReplayError
from kvcheck.history import EventType
from kvcheck.model import StoreState, initial_state
from kvcheck.requests import (
    DeleteRequest,
    LeaseRevokeRequest,
    PutRequest,
    RangeRequest,
    RangeResult,
    Request,
    Response,
    TxnRequest,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Commit:
    """A ground-truth request with the revision the store was at right after it."""

    index: int
    request: Request
    revision: int
    bumped_revision: bool


@dataclass(frozen=True)
class PersistedEvent:
    type: EventType
    key: str
    value: Optional[str]
    revision: int
    is_create: bool = False

    def matches(self, key: str, end: str = "") -> bool:
        return RangeRequest(key, end).matches(self.key)


def _to_events(state: StoreState, request: Request, response: Response) -> List[PersistedEvent]:
    if response.failed:
        return []
    if isinstance(request, (PutRequest, DeleteRequest)):
        operations = (request,)
    elif isinstance(request, TxnRequest):
        operations = request.on_failure if response.result.failure else request.on_success
    elif isinstance(request, LeaseRevokeRequest):
        lease = state.leases[request.lease_id]
        operations = tuple(DeleteRequest(key) for key in sorted(lease.keys))
    else:
        return []

    existing = set(state.key_values)
    events = []
    for op in operations:
        if isinstance(op, PutRequest):
            events.append(PersistedEvent(EventType.PUT, op.key, op.value, response.revision,
                                         is_create=op.key not in existing))
            existing.add(op.key)
        elif isinstance(op, DeleteRequest) and op.key in existing:
            events.append(PersistedEvent(EventType.DELETE, op.key, None, response.revision))
            existing.discard(op.key)
    return events


class Replay:
    """
    Revision-indexed reconstruction of the store.

    ``state_for_revision(R)`` is the state once every ground-truth entry that
    left the store at revision R has been applied. Entries that do not bump
    the revision (lease grants, compactions) are folded into the state of the
    revision they happened at.
    """

    def __init__(self, persisted_requests: Sequence[Request]):
        state = initial_state()
        # Index 0 is padding so that list index equals revision.
        states = [state, state]
        events: List[PersistedEvent] = []
        commits: List[Commit] = []
        for index, request in enumerate(persisted_requests):
            next_state, response = state.step(request)
            events.extend(_to_events(state, request, response))
            bumped = next_state.revision != state.revision
            if bumped:
                states.append(next_state)
            else:
                states[-1] = next_state
            commits.append(Commit(index, request, next_state.revision, bumped))
            state = next_state
        self._states: Tuple[StoreState, ...] = tuple(states)
        self._events: Tuple[PersistedEvent, ...] = tuple(events)
        self._commits: Tuple[Commit, ...] = tuple(commits)
        self._event_index = {(event.revision, event.key): event for event in events}
        logger.debug("Replayed %d persisted requests up to revision %d",
                     len(commits), self.last_revision)

    @property
    def last_revision(self) -> int:
        return len(self._states) - 1

    @property
    def final_state(self) -> StoreState:
        return self._states[-1]

    @property
    def events(self) -> Tuple[PersistedEvent, ...]:
        return self._events

    @property
    def commits(self) -> Tuple[Commit, ...]:
        return self._commits

    @property
    def compact_revision(self) -> int:
        """Highest revision any ground-truth compaction reached."""
        return self.final_state.compact_revision

    def state_for_revision(self, revision: int) -> StoreState:
        if revision < 1 or revision > self.last_revision:
            raise RevisionNotInReplayError(revision, self.last_revision)
        return self._states[revision]

    def range_at(self, revision: int, key: str, end: str = "", limit: int = 0) -> RangeResult:
        """Key/values visible at revision for the key (or [key, end) range)."""
        return self.state_for_revision(revision).get_range(RangeRequest(key, end, limit))

    def events_between(self, key: str, end: str,
                       start_revision: int, end_revision: int) -> List[PersistedEvent]:
        """Mutations of the key range with start_revision <= revision <= end_revision."""
        return [
            event for event in self._events
            if start_revision <= event.revision <= end_revision and event.matches(key, end)
        ]

    def find_event(self, revision: int, key: str) -> Optional[PersistedEvent]:
        return self._event_index.get((revision, key))
