"""
Preconditions the rest of the pipeline relies on.

A failure here is a test setup problem, not a store bug: the checker cannot
say anything meaningful about a trace that breaks these assumptions, so it
reports the problem before any expensive search runs. Every check is a pure
function over the reports and ground truth.
"""

import logging
from typing import Iterator, Optional, Sequence

from kvcheck.errors import AssumptionError
from kvcheck.history import ClientReport, Operation, WatchOperation
from kvcheck.requests import (
    REQUEST_TYPES,
    TXN_OPERATION_TYPES,
    CompactRequest,
    LeaseGrantRequest,
    RangeRequest,
    Request,
    Response,
    TxnRequest,
    describe_request,
    is_persisted,
    is_read,
)

logger = logging.getLogger(__name__)


def check_validation_assumptions(reports: Sequence[ClientReport],
                                 persisted_requests: Optional[Sequence[Request]] = None) -> None:
    validate_well_formed_input(reports, persisted_requests)
    logger.debug("Checking validation assumptions for %d client reports", len(reports))
    validate_empty_database_at_start(reports)
    if persisted_requests is not None:
        validate_persisted_requests_match_client_requests(reports, persisted_requests)
    validate_non_concurrent_client_requests(reports)


def _operations(reports: Sequence[ClientReport]) -> Iterator[Operation]:
    for report in reports:
        yield from report.key_value


def _check_request(request, where: str) -> None:
    if not isinstance(request, REQUEST_TYPES):
        raise AssumptionError(f"malformed request in {where}: {request!r}", request=request)
    if isinstance(request, TxnRequest):
        for op in request.on_success + request.on_failure:
            if not isinstance(op, TXN_OPERATION_TYPES):
                raise AssumptionError(f"malformed txn operation in {where}: {op!r}", request=request)
            _check_range(op, request, where)
    _check_range(request, request, where)
    if isinstance(request, CompactRequest) and request.revision < 0:
        raise AssumptionError(f"negative revision in {where}: {describe_request(request)}",
                              request=request, revision=request.revision)


def _check_range(op, request, where: str) -> None:
    if not isinstance(op, RangeRequest):
        return
    if op.revision < 0:
        raise AssumptionError(f"negative revision in {where}: {describe_request(op)}",
                              request=request, key=op.key, revision=op.revision)
    if op.limit < 0:
        raise AssumptionError(f"negative limit in {where}: {describe_request(op)}",
                              request=request, key=op.key)


def _check_times(op: Operation) -> None:
    valid_call = isinstance(op.call_time, int) and not isinstance(op.call_time, bool)
    valid_return = op.return_time is None or (
        isinstance(op.return_time, int) and not isinstance(op.return_time, bool))
    if not (valid_call and valid_return):
        raise AssumptionError(
            f"malformed timestamps in client {op.client_id} report: "
            f"call {op.call_time!r}, return {op.return_time!r}",
            client_id=op.client_id, operation=op,
        )


def validate_well_formed_input(reports: Sequence[ClientReport],
                               persisted_requests: Optional[Sequence[Request]]) -> None:
    if not reports:
        raise AssumptionError("no client reports to validate")
    for report in reports:
        if not isinstance(report, ClientReport):
            raise AssumptionError(f"malformed client report: {report!r}")
        for op in report.key_value:
            if not isinstance(op, Operation):
                raise AssumptionError(f"malformed operation in client {report.client_id} report: {op!r}",
                                      client_id=report.client_id)
            _check_request(op.request, f"client {op.client_id} report")
            _check_times(op)
            if not isinstance(op.response, Response):
                raise AssumptionError(f"malformed response in client {op.client_id} report: {op.response!r}",
                                      client_id=op.client_id, operation=op)
        for watch in report.watch:
            if not isinstance(watch, WatchOperation):
                raise AssumptionError(f"malformed watch operation in client {report.client_id} report: {watch!r}",
                                      client_id=report.client_id)
    if persisted_requests is not None:
        for request in persisted_requests:
            _check_request(request, "persisted requests")


def validate_empty_database_at_start(reports: Sequence[ClientReport]) -> None:
    """The first write must leave the store at revision 2.

    A trace in which nothing was ever written passes, as long as no
    successful response reported a revision past the initial one.
    """
    observed_revisions = []
    for op in _operations(reports):
        if op.response.failed:
            continue
        if not is_read(op.request) and op.response.revision == 2:
            return
        observed_revisions.append(op.response.revision)
    if all(revision <= 1 for revision in observed_revisions):
        return
    raise AssumptionError(
        "non empty database at start or first write didn't succeed, required by model implementation",
        revision=min(revision for revision in observed_revisions if revision > 1),
    )


def validate_persisted_requests_match_client_requests(reports: Sequence[ClientReport],
                                                      persisted_requests: Sequence[Request]) -> None:
    client_requests = {op.request for op in _operations(reports)}
    for request in persisted_requests:
        # A failed lease grant never returns the server assigned lease id to the client.
        if isinstance(request, LeaseGrantRequest):
            continue
        if request not in client_requests:
            raise AssumptionError(
                f"request {describe_request(request)} was not sent by client, required to validate",
                request=request,
            )

    successful_writes = [
        op for op in _operations(reports)
        if not op.response.failed and is_persisted(op.request)
    ]
    if not successful_writes:
        return
    persisted = set(persisted_requests)
    first = min(successful_writes, key=lambda op: op.call_time)
    last = max(successful_writes, key=lambda op: op.call_time)
    if first.request not in persisted:
        raise AssumptionError(
            f"first successful client write {describe_request(first.request)} was not persisted, "
            "required to validate",
            client_id=first.client_id, request=first.request, operation=first,
        )
    if last.request not in persisted:
        raise AssumptionError(
            f"last successful client write {describe_request(last.request)} was not persisted, "
            "required to validate",
            client_id=last.client_id, request=last.request, operation=last,
        )


def validate_non_concurrent_client_requests(reports: Sequence[ClientReport]) -> None:
    last_client_return = {}
    for op in _operations(reports):
        previous_return = last_client_return.get(op.client_id)
        if previous_return is not None and op.call_time <= previous_return:
            raise AssumptionError(
                f"client {op.client_id} has concurrent request, required for operation linearization",
                client_id=op.client_id, operation=op,
            )
        if op.return_time is None or op.return_time <= op.call_time:
            raise AssumptionError(
                f"operation {describe_request(op.request)} of client {op.client_id} ends before it starts, "
                "required for operation linearization",
                client_id=op.client_id, operation=op,
            )
        last_client_return[op.client_id] = op.return_time
