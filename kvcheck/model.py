"""
Sequential specification of the key-value store.

StoreState.step is a pure, deterministic state transition: given a state and
a request it returns the next state and the response a correct store would
give. States are never modified after construction, so the linearizability
search can keep references to old states and backtrack for free, and the
replay engine can index them by revision.

The store starts empty at revision 1. Every committed write bumps the
revision by exactly one, whatever the number of keys it touched.

NonDeterministicModel wraps the deterministic state for the oracle. Its
state is the set of states the store may be in, which is how a failed write
(committed or not, nobody knows) is explored without guessing.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from kvcheck.requests import (
    ERR_COMPACTED,
    ERR_FUTURE_REVISION,
    ERR_LEASE_EXISTS,
    ERR_LEASE_NOT_FOUND,
    CompactRequest,
    CompactResult,
    Condition,
    DefragmentRequest,
    DefragmentResult,
    DeleteRequest,
    DeleteResult,
    KeyValue,
    LeaseGrantRequest,
    LeaseGrantResult,
    LeaseRevokeRequest,
    LeaseRevokeResult,
    LeaseTimeToLiveRequest,
    LeaseTimeToLiveResult,
    PutRequest,
    PutResult,
    RangeRequest,
    RangeResult,
    Request,
    Response,
    TxnRequest,
    TxnResult,
    describe_request,
    describe_response,
    is_persisted,
)


@dataclass(frozen=True)
class ValueRevision:
    value: str
    mod_revision: int
    version: int


@dataclass(frozen=True)
class Lease:
    lease_id: int
    ttl: int = 0
    keys: FrozenSet[str] = frozenset()


class StoreState:
    """Immutable snapshot of the store: key space, lease table and revisions."""

    __slots__ = ("revision", "compact_revision", "key_values", "key_leases", "leases", "_hash")

    def __init__(self, revision: int = 1,
                 compact_revision: int = 0,
                 key_values: Optional[Dict[str, ValueRevision]] = None,
                 key_leases: Optional[Dict[str, int]] = None,
                 leases: Optional[Dict[int, Lease]] = None):
        self.revision = revision
        self.compact_revision = compact_revision
        self.key_values: Dict[str, ValueRevision] = dict(key_values or {})
        self.key_leases: Dict[str, int] = dict(key_leases or {})
        self.leases: Dict[int, Lease] = dict(leases or {})
        self._hash: Optional[int] = None

    def _identity(self) -> tuple:
        return (
            self.revision,
            self.compact_revision,
            tuple(sorted(self.key_values.items())),
            tuple(sorted(self.key_leases.items())),
            tuple(sorted(self.leases.items())),
        )

    def __eq__(self, other) -> bool:
        if not isinstance(other, StoreState):
            return NotImplemented
        return self._identity() == other._identity()

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(self._identity())
        return self._hash

    def __repr__(self) -> str:
        values = {key: value.value for key, value in sorted(self.key_values.items())}
        return f"StoreState(revision={self.revision}, values={values}, leases={sorted(self.leases)})"

    def _copy(self) -> "StoreState":
        return StoreState(self.revision, self.compact_revision,
                          self.key_values, self.key_leases, self.leases)

    def step(self, request: Request) -> Tuple["StoreState", Response]:
        """Apply request, returning the next state and the expected response."""
        if isinstance(request, RangeRequest):
            return self._step_range(request)
        if isinstance(request, PutRequest):
            return self._step_txn(TxnRequest(on_success=(request,)), single=request)
        if isinstance(request, DeleteRequest):
            return self._step_txn(TxnRequest(on_success=(request,)), single=request)
        if isinstance(request, TxnRequest):
            return self._step_txn(request)
        if isinstance(request, LeaseGrantRequest):
            return self._step_lease_grant(request)
        if isinstance(request, LeaseRevokeRequest):
            return self._step_lease_revoke(request)
        if isinstance(request, LeaseTimeToLiveRequest):
            return self._step_lease_ttl(request)
        if isinstance(request, DefragmentRequest):
            return self, Response(result=DefragmentResult(), revision=self.revision)
        if isinstance(request, CompactRequest):
            return self._step_compact(request)
        raise TypeError(f"unknown request type {type(request).__name__}")

    def get_range(self, options: RangeRequest) -> RangeResult:
        keys = sorted(key for key in self.key_values if options.matches(key))
        kvs = [
            KeyValue(key, self.key_values[key].value,
                     self.key_values[key].mod_revision, self.key_values[key].version)
            for key in keys
        ]
        count = len(kvs)
        if options.limit:
            kvs = kvs[:options.limit]
        return RangeResult(tuple(kvs), count)

    def _step_range(self, request: RangeRequest) -> Tuple["StoreState", Response]:
        if request.revision == 0 or request.revision == self.revision:
            return self, Response(result=self.get_range(request), revision=self.revision)
        if request.revision > self.revision:
            return self, Response(error=ERR_FUTURE_REVISION)
        if request.revision < self.compact_revision:
            return self, Response(error=ERR_COMPACTED)
        # Past revisions are not kept in the state; the replay engine answers them.
        return self, Response(revision=self.revision, indeterminate=True)

    def _compare(self, condition: Condition) -> bool:
        current = self.key_values.get(condition.key)
        if condition.expected_version > 0:
            return current is not None and current.version == condition.expected_version
        mod_revision = current.mod_revision if current is not None else 0
        return mod_revision == condition.expected_revision

    def _step_txn(self, request: TxnRequest,
                  single: Optional[Request] = None) -> Tuple["StoreState", Response]:
        failure = not all(self._compare(condition) for condition in request.conditions)
        operations = request.on_failure if failure else request.on_success
        for op in operations:
            if isinstance(op, PutRequest) and op.lease_id and op.lease_id not in self.leases:
                return self, Response(error=ERR_LEASE_NOT_FOUND)

        state = self._copy()
        next_revision = self.revision + 1
        results = []
        wrote = False
        for op in operations:
            if isinstance(op, RangeRequest):
                results.append(state.get_range(op))
            elif isinstance(op, PutRequest):
                state._put(op, next_revision)
                results.append(PutResult())
                wrote = True
            elif isinstance(op, DeleteRequest):
                deleted = state._delete(op.key)
                results.append(DeleteResult(deleted))
                wrote = wrote or deleted > 0
            else:
                raise TypeError(f"unknown txn operation type {type(op).__name__}")
        if wrote:
            state.revision = next_revision
        else:
            state = self

        if single is not None:
            return state, Response(result=results[0], revision=state.revision)
        return state, Response(result=TxnResult(failure, tuple(results)), revision=state.revision)

    def _put(self, request: PutRequest, revision: int) -> None:
        previous = self.key_values.get(request.key)
        version = previous.version + 1 if previous is not None else 1
        self.key_values[request.key] = ValueRevision(request.value, revision, version)
        self._detach(request.key)
        if request.lease_id:
            lease = self.leases[request.lease_id]
            self.leases[request.lease_id] = Lease(lease.lease_id, lease.ttl, lease.keys | {request.key})
            self.key_leases[request.key] = request.lease_id

    def _delete(self, key: str) -> int:
        if key not in self.key_values:
            return 0
        del self.key_values[key]
        self._detach(key)
        return 1

    def _detach(self, key: str) -> None:
        lease_id = self.key_leases.pop(key, None)
        if lease_id is not None and lease_id in self.leases:
            lease = self.leases[lease_id]
            self.leases[lease_id] = Lease(lease.lease_id, lease.ttl, lease.keys - {key})

    def _step_lease_grant(self, request: LeaseGrantRequest) -> Tuple["StoreState", Response]:
        if request.lease_id in self.leases:
            return self, Response(error=ERR_LEASE_EXISTS)
        state = self._copy()
        state.leases[request.lease_id] = Lease(request.lease_id, request.ttl)
        return state, Response(result=LeaseGrantResult(), revision=state.revision)

    def _step_lease_revoke(self, request: LeaseRevokeRequest) -> Tuple["StoreState", Response]:
        lease = self.leases.get(request.lease_id)
        if lease is None:
            return self, Response(error=ERR_LEASE_NOT_FOUND)
        state = self._copy()
        deleted = 0
        for key in sorted(lease.keys):
            deleted += state._delete(key)
        del state.leases[request.lease_id]
        if deleted:
            state.revision += 1
        return state, Response(result=LeaseRevokeResult(), revision=state.revision)

    def _step_lease_ttl(self, request: LeaseTimeToLiveRequest) -> Tuple["StoreState", Response]:
        lease = self.leases.get(request.lease_id)
        if lease is None:
            return self, Response(result=LeaseTimeToLiveResult(), revision=self.revision)
        result = LeaseTimeToLiveResult(lease.ttl, tuple(sorted(lease.keys)))
        return self, Response(result=result, revision=self.revision)

    def _step_compact(self, request: CompactRequest) -> Tuple["StoreState", Response]:
        if request.revision <= self.compact_revision:
            return self, Response(error=ERR_COMPACTED)
        if request.revision > self.revision:
            return self, Response(error=ERR_FUTURE_REVISION)
        state = self._copy()
        state.compact_revision = request.revision
        return state, Response(result=CompactResult(), revision=state.revision)


def initial_state() -> StoreState:
    """The empty store at revision 1."""
    return StoreState()


def fold(requests: Iterable[Request], state: Optional[StoreState] = None) -> StoreState:
    """Apply requests in order starting from state (the empty store by default)."""
    if state is None:
        state = initial_state()
    for request in requests:
        state, _ = state.step(request)
    return state


ModelState = Tuple[StoreState, ...]


class NonDeterministicModel:
    """
    Model handed to the linearizability oracle.

    A model state is a tuple of possible store states. Steps:
    - a failed call may or may not have taken effect, so each state forks
    - a failed call proven persisted must have taken effect, at
      persisted_revision when known
    - a successful call keeps only the states whose expected response equals
      the observed one

    expect_revision_unique controls response comparison for persisted
    request kinds: when False the reported revision is not compared, because
    the store may report one revision for several concurrent mutations.
    """

    def __init__(self, expect_revision_unique: bool = True):
        self.expect_revision_unique = expect_revision_unique

    def init(self) -> ModelState:
        return (initial_state(),)

    def step(self, states: ModelState, request: Request,
             response: Response) -> Tuple[bool, ModelState]:
        next_states: List[StoreState] = []
        if response.persisted:
            for state in states:
                applied, _ = state.step(request)
                if response.persisted_revision and applied.revision != response.persisted_revision:
                    continue
                next_states.append(applied)
        elif response.failed:
            for state in states:
                applied, _ = state.step(request)
                next_states.append(state)
                next_states.append(applied)
        else:
            for state in states:
                applied, expected = state.step(request)
                if self.responses_match(request, expected, response):
                    next_states.append(applied)
        unique = tuple(dict.fromkeys(next_states))
        return bool(unique), unique

    def responses_match(self, request: Request, expected: Response, observed: Response) -> bool:
        if expected.indeterminate:
            return True
        if expected.error or observed.error:
            return expected.error == observed.error
        if expected.result != observed.result:
            return False
        if not self.expect_revision_unique and is_persisted(request):
            return True
        return expected.revision == observed.revision

    def describe_operation(self, request: Request, response: Response) -> str:
        return f"{describe_request(request)} -> {describe_response(response)}"

    def describe_state(self, states: ModelState) -> str:
        return " | ".join(repr(state) for state in states)
