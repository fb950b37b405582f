"""
Split client operations into the linearizable and serializable sets.

- A range read at a non-zero revision is serializable: it may legally
  return stale data, so it is only checked against the replayed history.
- A failed read is dropped: it returned nothing to linearize against.
- A failed write is kept but unresolved (return_time None), because it may
  have committed at any point after it was called.

The caller's reports are left untouched; unresolved operations are copies.
"""

import dataclasses
from typing import List, Sequence, Tuple

from kvcheck.history import ClientReport, Operation
from kvcheck.requests import RangeRequest, is_read


def is_serializable(op: Operation) -> bool:
    return isinstance(op.request, RangeRequest) and op.request.revision != 0


def prepare_and_categorize_operations(
        reports: Sequence[ClientReport]) -> Tuple[List[Operation], List[Operation]]:
    linearizable: List[Operation] = []
    serializable: List[Operation] = []
    for report in reports:
        for op in report.key_value:
            if is_serializable(op):
                serializable.append(op)
                continue
            if op.response.failed:
                if is_read(op.request):
                    continue
                op = dataclasses.replace(op, return_time=None)
            linearizable.append(op)
    return linearizable, serializable
