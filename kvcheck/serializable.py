"""
Serializable read validation.

A range read at an explicit revision may be served from any member, however
stale, but it must return exactly what the store held at that revision.
The replay engine provides that state.
"""

import logging
from typing import Optional, Sequence

from kvcheck.errors import SerializableReadError
from kvcheck.history import Operation
from kvcheck.replay import Replay
from kvcheck.requests import ERR_COMPACTED, ERR_FUTURE_REVISION, describe_request

logger = logging.getLogger(__name__)


def validate_serializable_operations(operations: Sequence[Operation], replay: Replay) -> None:
    """Check every read, log each divergence and raise the first one."""
    logger.info("Validating serializable operations")
    first_error: Optional[SerializableReadError] = None
    for op in operations:
        try:
            validate_serializable_read(op, replay)
        except SerializableReadError as e:
            logger.error("Failed validating serializable operation: %s", e)
            if first_error is None:
                first_error = e
    if first_error is not None:
        raise first_error


def validate_serializable_read(op: Operation, replay: Replay) -> None:
    request, response = op.request, op.response
    if response.error == ERR_FUTURE_REVISION:
        if request.revision > replay.last_revision:
            return
        raise SerializableReadError(
            f"{describe_request(request)} of client {op.client_id} was rejected as a future revision, "
            f"but the replay reached revision {replay.last_revision}",
            client_id=op.client_id, key=request.key, revision=request.revision,
            expected=replay.last_revision, observed=response.error, operation=op,
        )
    if response.error == ERR_COMPACTED:
        if request.revision < replay.compact_revision:
            return
        raise SerializableReadError(
            f"{describe_request(request)} of client {op.client_id} was rejected as compacted, "
            f"but the replay only compacted up to revision {replay.compact_revision}",
            client_id=op.client_id, key=request.key, revision=request.revision,
            expected=replay.compact_revision, observed=response.error, operation=op,
        )
    if response.failed:
        return
    if request.revision > replay.last_revision:
        raise SerializableReadError(
            f"{describe_request(request)} of client {op.client_id} returned data for revision "
            f"{request.revision}, higher than observed in replay {replay.last_revision}",
            client_id=op.client_id, key=request.key, revision=request.revision,
            observed=response.result, operation=op,
        )
    expected = replay.range_at(request.revision, request.key, request.end, request.limit)
    if response.result != expected:
        raise SerializableReadError(
            f"{describe_request(request)} of client {op.client_id} returned {response.result}, "
            f"expected {expected}",
            client_id=op.client_id, key=request.key, revision=request.revision,
            expected=expected, observed=response.result, operation=op,
        )
