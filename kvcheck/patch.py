"""
Resolve ambiguous writes against ground truth.

An unresolved operation (a write whose client saw an error) is looked up in
the persisted requests:

- found: it committed despite the error. The copy is marked persisted at
  the commit revision of the matching entry and its return time is bounded
  by the first moment any client observed that revision.
- not found: it never took effect and is dropped from the linearizable set.

When several persisted entries have the same content (a retried put), the
earliest entry in commit order not already claimed is used. Successful
writes claim their entries first, by content and response revision, so a
failed retry cannot take the entry of the call that succeeded.

Operations that are already resolved pass through unchanged, which makes
patching idempotent.
"""

import dataclasses
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Set, Tuple

from kvcheck.history import ClientReport, Operation
from kvcheck.replay import Commit, Replay
from kvcheck.requests import Request, describe_request, is_persisted

logger = logging.getLogger(__name__)


def patch_linearizable_operations(operations: Sequence[Operation],
                                  reports: Sequence[ClientReport],
                                  persisted_requests: Sequence[Request],
                                  replay: Optional[Replay] = None) -> List[Operation]:
    if replay is None:
        replay = Replay(persisted_requests)
    commits_by_request: Dict[Request, List[Commit]] = defaultdict(list)
    for commit in replay.commits:
        commits_by_request[commit.request].append(commit)

    claimed = _claim_successful_writes(reports, commits_by_request)
    observations = _observations(reports)
    horizon = _history_horizon(reports)

    patched = []
    for op in operations:
        if not op.unresolved:
            patched.append(op)
            continue
        commit = _earliest_unclaimed(commits_by_request.get(op.request, ()), claimed)
        if commit is None:
            logger.debug("Dropping %s of client %d, not persisted",
                         describe_request(op.request), op.client_id)
            continue
        claimed.add(commit.index)
        return_time = _return_time_bound(op, commit, observations, horizon)
        response = dataclasses.replace(op.response, persisted=True,
                                       persisted_revision=commit.revision)
        logger.debug("Patched %s of client %d: persisted at revision %d, returns by %d",
                     describe_request(op.request), op.client_id, commit.revision, return_time)
        patched.append(dataclasses.replace(op, return_time=return_time, response=response))
    return patched


def _earliest_unclaimed(commits: Sequence[Commit], claimed: Set[int],
                        revision: Optional[int] = None) -> Optional[Commit]:
    for commit in commits:
        if commit.index in claimed:
            continue
        if revision is not None and commit.revision != revision:
            continue
        return commit
    return None


def _claim_successful_writes(reports: Sequence[ClientReport],
                             commits_by_request: Dict[Request, List[Commit]]) -> Set[int]:
    claimed: Set[int] = set()
    successful = sorted(
        (op for report in reports for op in report.key_value
         if not op.response.failed and is_persisted(op.request)),
        key=lambda op: (op.call_time, op.client_id),
    )
    for op in successful:
        commit = _earliest_unclaimed(commits_by_request.get(op.request, ()), claimed,
                                     revision=op.response.revision)
        if commit is not None:
            claimed.add(commit.index)
    return claimed


def _observations(reports: Sequence[ClientReport]) -> List[Tuple[int, int]]:
    """(revision, time) pairs: a client knew the store reached revision by time."""
    observed = []
    for report in reports:
        for op in report.key_value:
            if not op.response.failed and op.return_time is not None:
                observed.append((op.response.revision, op.return_time))
        for watch in report.watch:
            for response in watch.responses:
                revisions = [event.revision for event in response.events]
                if response.is_progress_notify:
                    revisions.append(response.revision)
                if revisions:
                    observed.append((max(revisions), response.time))
    return observed


def _history_horizon(reports: Sequence[ClientReport]) -> int:
    """One tick after the last timestamp anywhere in the history."""
    latest = 0
    for report in reports:
        for op in report.key_value:
            latest = max(latest, op.call_time)
            if op.return_time is not None:
                latest = max(latest, op.return_time)
        for watch in report.watch:
            for response in watch.responses:
                latest = max(latest, response.time)
    return latest + 1


def _return_time_bound(op: Operation, commit: Commit,
                       observations: Sequence[Tuple[int, int]], horizon: int) -> int:
    if commit.bumped_revision:
        candidates = [
            time for revision, time in observations
            if revision >= commit.revision and time > op.call_time
        ]
        if candidates:
            return min(candidates)
    return horizon
