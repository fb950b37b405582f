"""
Utility functions for kvcheck tests.

This module provides common helpers for building client histories:
- Request and response shorthands (put, get, delete, ok, failed)
- Watch event shorthands
- HistoryBuilder, which collects operations and watch streams per client
"""

from collections import defaultdict
from typing import Dict, List, Optional

from kvcheck.history import (
    ClientReport,
    EventType,
    Operation,
    WatchEvent,
    WatchOperation,
    WatchRequest,
    WatchResponse,
)
from kvcheck.requests import (
    DeleteRequest,
    DeleteResult,
    KeyValue,
    PutRequest,
    PutResult,
    RangeRequest,
    RangeResult,
    Request,
    Response,
)

# Error a client reports when a call times out with an unknown outcome
TIMEOUT = "context deadline exceeded"


def put(key: str, value: str, lease_id: int = 0) -> PutRequest:
    return PutRequest(key, value, lease_id)


def get(key: str, revision: int = 0, end: str = "", limit: int = 0) -> RangeRequest:
    return RangeRequest(key, end, limit, revision)


def delete(key: str) -> DeleteRequest:
    return DeleteRequest(key)


def kv(key: str, value: str, mod_revision: int, version: int = 1) -> KeyValue:
    return KeyValue(key, value, mod_revision, version)


def put_ok(revision: int) -> Response:
    return Response(result=PutResult(), revision=revision)


def delete_ok(revision: int, deleted: int = 1) -> Response:
    return Response(result=DeleteResult(deleted), revision=revision)


def range_ok(revision: int, *kvs: KeyValue) -> Response:
    return Response(result=RangeResult(tuple(kvs), len(kvs)), revision=revision)


def failed(error: str = TIMEOUT) -> Response:
    return Response(error=error)


def put_event(key: str, value: str, revision: int, is_create: bool = False,
              prev_value: Optional[str] = None) -> WatchEvent:
    return WatchEvent(EventType.PUT, key, value, revision, is_create, prev_value)


def delete_event(key: str, revision: int, prev_value: Optional[str] = None) -> WatchEvent:
    return WatchEvent(EventType.DELETE, key, None, revision, False, prev_value)


class HistoryBuilder:
    """
    Collects operations and watch streams per client.

    Operations must be added in call order per client, the way the trace
    collector records them.
    """

    def __init__(self):
        self.operations: Dict[int, List[Operation]] = defaultdict(list)
        self.watches: Dict[int, List[WatchOperation]] = defaultdict(list)

    def add(self, client_id: int, call: int, ret: int,
            request: Request, response: Response) -> Operation:
        op = Operation(client_id, call, ret, request, response)
        self.operations[client_id].append(op)
        return op

    def watch(self, client_id: int, request: WatchRequest,
              *responses: WatchResponse) -> WatchOperation:
        watch = WatchOperation(request, responses)
        self.watches[client_id].append(watch)
        return watch

    def reports(self) -> List[ClientReport]:
        client_ids = sorted(set(self.operations) | set(self.watches))
        return [
            ClientReport(client_id, self.operations.get(client_id, ()), self.watches.get(client_id, ()))
            for client_id in client_ids
        ]
