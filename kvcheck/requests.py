"""
Request and response types for the key-value store API.

Every request kind is a frozen dataclass, so requests compare by content and
can be used as dictionary keys. This is what lets a request read back from
the durable log be matched against the request a client issued.

Request kinds:
- RangeRequest: single key or [key, end) range, optionally at a revision
- PutRequest / DeleteRequest: single-key writes
- TxnRequest: compare-and-swap with nested range/put/delete operations
- LeaseGrantRequest / LeaseRevokeRequest / LeaseTimeToLiveRequest
- DefragmentRequest / CompactRequest: administrative calls
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union

ERR_FUTURE_REVISION = "mvcc: required revision is a future revision"
ERR_COMPACTED = "mvcc: required revision has been compacted"
ERR_LEASE_NOT_FOUND = "lease not found"
ERR_LEASE_EXISTS = "lease already exists"


def prefix_end(prefix: str) -> str:
    """Return the exclusive range end covering every key starting with prefix."""
    chars = list(prefix)
    while chars:
        last = ord(chars[-1])
        if last < 0x10FFFF:
            chars[-1] = chr(last + 1)
            return "".join(chars)
        chars.pop()
    # Empty prefix (or all max code points) covers the whole key space.
    return "\0"


@dataclass(frozen=True)
class RangeRequest:
    key: str
    end: str = ""
    limit: int = 0
    revision: int = 0

    def matches(self, key: str) -> bool:
        if self.end == "\0":
            return key >= self.key
        if self.end:
            return self.key <= key < self.end
        return key == self.key


@dataclass(frozen=True)
class PutRequest:
    key: str
    value: str
    lease_id: int = 0


@dataclass(frozen=True)
class DeleteRequest:
    key: str


@dataclass(frozen=True)
class Condition:
    """Txn comparison: a positive expected_version wins over expected_revision."""

    key: str
    expected_revision: int = 0
    expected_version: int = 0


TxnOperation = Union[RangeRequest, PutRequest, DeleteRequest]


@dataclass(frozen=True)
class TxnRequest:
    conditions: Tuple[Condition, ...] = ()
    on_success: Tuple[TxnOperation, ...] = ()
    on_failure: Tuple[TxnOperation, ...] = ()


@dataclass(frozen=True)
class LeaseGrantRequest:
    lease_id: int
    ttl: int = 0


@dataclass(frozen=True)
class LeaseRevokeRequest:
    lease_id: int


@dataclass(frozen=True)
class LeaseTimeToLiveRequest:
    lease_id: int


@dataclass(frozen=True)
class DefragmentRequest:
    pass


@dataclass(frozen=True)
class CompactRequest:
    revision: int


Request = Union[
    RangeRequest,
    PutRequest,
    DeleteRequest,
    TxnRequest,
    LeaseGrantRequest,
    LeaseRevokeRequest,
    LeaseTimeToLiveRequest,
    DefragmentRequest,
    CompactRequest,
]

REQUEST_TYPES = (
    RangeRequest,
    PutRequest,
    DeleteRequest,
    TxnRequest,
    LeaseGrantRequest,
    LeaseRevokeRequest,
    LeaseTimeToLiveRequest,
    DefragmentRequest,
    CompactRequest,
)
TXN_OPERATION_TYPES = (RangeRequest, PutRequest, DeleteRequest)


def is_read(request: Request) -> bool:
    """True for requests that never change store state."""
    if isinstance(request, (RangeRequest, LeaseTimeToLiveRequest)):
        return True
    if isinstance(request, TxnRequest):
        operations = request.on_success + request.on_failure
        return all(isinstance(op, RangeRequest) for op in operations)
    return False


def is_persisted(request: Request) -> bool:
    """True for requests the store writes to its durable log.

    Defragment is neither a read nor persisted: it is served locally by each
    member and never appears in ground truth.
    """
    if isinstance(request, (PutRequest, DeleteRequest, LeaseGrantRequest,
                            LeaseRevokeRequest, CompactRequest)):
        return True
    if isinstance(request, TxnRequest):
        return not is_read(request)
    return False


@dataclass(frozen=True)
class KeyValue:
    key: str
    value: str
    mod_revision: int
    version: int = 1


@dataclass(frozen=True)
class RangeResult:
    kvs: Tuple[KeyValue, ...] = ()
    count: int = 0


@dataclass(frozen=True)
class PutResult:
    pass


@dataclass(frozen=True)
class DeleteResult:
    deleted: int = 0


@dataclass(frozen=True)
class TxnResult:
    failure: bool = False
    results: Tuple[Union[RangeResult, PutResult, DeleteResult], ...] = ()


@dataclass(frozen=True)
class LeaseGrantResult:
    pass


@dataclass(frozen=True)
class LeaseRevokeResult:
    pass


@dataclass(frozen=True)
class LeaseTimeToLiveResult:
    ttl: int = -1
    keys: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DefragmentResult:
    pass


@dataclass(frozen=True)
class CompactResult:
    pass


Result = Union[
    RangeResult,
    PutResult,
    DeleteResult,
    TxnResult,
    LeaseGrantResult,
    LeaseRevokeResult,
    LeaseTimeToLiveResult,
    DefragmentResult,
    CompactResult,
]


@dataclass(frozen=True)
class Response:
    """
    What a client observed for one call.

    A response with ``error`` set is a failure: for a mutating request the
    client cannot tell whether it took effect. ``persisted`` is only ever set
    on a derived copy, once ground truth proved the failed call committed at
    ``persisted_revision``. ``indeterminate`` marks a model response that any
    observation satisfies (a historical read the state cannot answer).
    """

    result: Optional[Result] = None
    revision: int = 0
    error: str = ""
    persisted: bool = False
    persisted_revision: int = 0
    indeterminate: bool = False

    @property
    def failed(self) -> bool:
        return bool(self.error)


def describe_request(request: Request) -> str:
    if isinstance(request, RangeRequest):
        target = repr(request.key)
        if request.end:
            target = f"{request.key!r}..{request.end!r}"
        extras = []
        if request.limit:
            extras.append(f"limit={request.limit}")
        if request.revision:
            extras.append(f"rev={request.revision}")
        return f"range({', '.join([target] + extras)})"
    if isinstance(request, PutRequest):
        if request.lease_id:
            return f"put({request.key!r}, {request.value!r}, lease={request.lease_id})"
        return f"put({request.key!r}, {request.value!r})"
    if isinstance(request, DeleteRequest):
        return f"delete({request.key!r})"
    if isinstance(request, TxnRequest):
        conditions = " && ".join(
            f"ver({c.key!r})=={c.expected_version}" if c.expected_version > 0
            else f"mod_rev({c.key!r})=={c.expected_revision}"
            for c in request.conditions
        )
        success = ", ".join(describe_request(op) for op in request.on_success)
        failure = ", ".join(describe_request(op) for op in request.on_failure)
        return f"if({conditions}).then({success}).else({failure})"
    if isinstance(request, LeaseGrantRequest):
        return f"lease_grant({request.lease_id}, ttl={request.ttl})"
    if isinstance(request, LeaseRevokeRequest):
        return f"lease_revoke({request.lease_id})"
    if isinstance(request, LeaseTimeToLiveRequest):
        return f"lease_ttl({request.lease_id})"
    if isinstance(request, DefragmentRequest):
        return "defragment()"
    if isinstance(request, CompactRequest):
        return f"compact({request.revision})"
    raise TypeError(f"unknown request type {type(request).__name__}")


def describe_response(response: Response) -> str:
    if response.persisted:
        if response.persisted_revision:
            return f"persisted, rev: {response.persisted_revision}"
        return "persisted"
    if response.error:
        return f"error: {response.error}"
    if response.indeterminate:
        return "unknown"
    result = response.result
    if isinstance(result, RangeResult):
        kvs = ", ".join(f"{kv.key}={kv.value!r}@{kv.mod_revision}" for kv in result.kvs)
        return f"[{kvs}] count={result.count}, rev: {response.revision}"
    if isinstance(result, TxnResult):
        branch = "failure" if result.failure else "success"
        return f"{branch}, rev: {response.revision}"
    if isinstance(result, DeleteResult):
        return f"deleted: {result.deleted}, rev: {response.revision}"
    if isinstance(result, LeaseTimeToLiveResult):
        return f"ttl: {result.ttl}, keys: {list(result.keys)}, rev: {response.revision}"
    return f"ok, rev: {response.revision}"
