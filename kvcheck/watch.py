"""
Watch validation against the replayed commit history.

Checks, per client and per watch stream, the guarantees the store promises
for watches:

- Filter: every event is for the watched key or prefix
- Ordered: event revisions never decrease
- Unique: an event never appears twice on a stream
- Atomic: the events of one revision are never split across responses
- Bookmarkable: a progress notification never goes back below an event
  already delivered
- Committed: every event is a mutation ground truth actually committed
- Reliable: no committed mutation is skipped between the watch start and
  the last event or progress notification received, except below a compaction
  the client was told about
- PrevKV: the previous value, when requested, is the value before the event
- IsCreate: a put is flagged as a create exactly when the key did not exist

The first divergence found raises WatchValidationError.
"""

import logging
from typing import Sequence

from kvcheck.config import ValidationConfig
from kvcheck.errors import RevisionNotInReplayError, WatchValidationError
from kvcheck.history import ClientReport, EventType, WatchEvent, WatchOperation
from kvcheck.replay import PersistedEvent, Replay

logger = logging.getLogger(__name__)


def validate_watch(config: ValidationConfig, reports: Sequence[ClientReport], replay: Replay) -> None:
    logger.info("Validating watch")
    for report in reports:
        for watch in report.watch:
            validate_filter(report.client_id, watch)
            validate_ordered(report.client_id, watch)
            validate_unique(report.client_id, watch, config.expect_revision_unique)
            validate_atomic(report.client_id, watch)
            validate_bookmarkable(report.client_id, watch)
            validate_committed(report.client_id, watch, replay)
            validate_reliable(report.client_id, watch, replay)
            validate_prev_kv(report.client_id, watch, replay)
            validate_is_create(report.client_id, watch, replay)


def _fail(message: str, client_id: int, event: WatchEvent, **details) -> WatchValidationError:
    logger.error("%s (client %d, key %r, revision %d)", message, client_id, event.key, event.revision)
    return WatchValidationError(f"{message}, client {client_id}, key {event.key!r}, revision {event.revision}",
                                client_id=client_id, key=event.key, revision=event.revision, **details)


def validate_filter(client_id: int, watch: WatchOperation) -> None:
    for event in watch.events():
        if not watch.request.matches(event.key):
            raise _fail("Broke watch guarantee: Filter - event does not match the watched key",
                        client_id, event, expected=watch.request.key, observed=event.key)


def validate_ordered(client_id: int, watch: WatchOperation) -> None:
    last_revision = 0
    for event in watch.events():
        if event.revision < last_revision:
            raise _fail("Broke watch guarantee: Ordered - misordered event",
                        client_id, event, expected=f">= {last_revision}", observed=event.revision)
        last_revision = event.revision


def validate_unique(client_id: int, watch: WatchOperation, expect_revision_unique: bool) -> None:
    seen = set()
    for event in watch.events():
        identity = event.revision if expect_revision_unique else (event.revision, event.key)
        if identity in seen:
            raise _fail("Broke watch guarantee: Unique - duplicate event", client_id, event)
        seen.add(identity)


def validate_atomic(client_id: int, watch: WatchOperation) -> None:
    last_revision = None
    for response in watch.responses:
        if not response.events:
            continue
        first = response.events[0]
        if last_revision is not None and first.revision == last_revision:
            raise _fail("Broke watch guarantee: Atomic - revision split across responses",
                        client_id, first)
        last_revision = response.events[-1].revision


def validate_bookmarkable(client_id: int, watch: WatchOperation) -> None:
    last_revision = 0
    last_event = None
    for response in watch.responses:
        if response.events:
            last_event = response.events[-1]
            last_revision = last_event.revision
        if response.is_progress_notify and response.revision < last_revision:
            raise _fail("Broke watch guarantee: Bookmarkable - progress notification below last event",
                        client_id, last_event, expected=f">= {last_revision}", observed=response.revision)


def _same_mutation(event: WatchEvent, persisted: PersistedEvent) -> bool:
    return (event.type == persisted.type and event.key == persisted.key
            and event.value == persisted.value and event.revision == persisted.revision)


def validate_committed(client_id: int, watch: WatchOperation, replay: Replay) -> None:
    for event in watch.events():
        persisted = replay.find_event(event.revision, event.key)
        if persisted is None:
            raise _fail("Broke watch guarantee: event was never committed", client_id, event,
                        observed=event)
        if not _same_mutation(event, persisted):
            raise _fail("Broke watch guarantee: event does not match committed mutation",
                        client_id, event, expected=persisted, observed=event)


def _last_revision(watch: WatchOperation) -> int:
    """Highest revision the stream vouched for, by an event or a progress notification."""
    revisions = [event.revision for event in watch.events()]
    revisions.extend(response.revision for response in watch.responses if response.is_progress_notify)
    return max(revisions, default=0)


def validate_reliable(client_id: int, watch: WatchOperation, replay: Replay) -> None:
    observed = list(watch.events())
    last_revision = _last_revision(watch)
    if not last_revision:
        return
    start_revision = watch.request.revision or (observed[0].revision if observed else 0)
    if not start_revision:
        # Started at the then-current revision with nothing received: no known window.
        return
    for event in observed:
        if event.revision < start_revision:
            raise _fail("Broke watch guarantee: Reliable - event before watch start revision",
                        client_id, event, expected=f">= {start_revision}", observed=event.revision)
    compact_revision = max((response.compact_revision for response in watch.responses), default=0)
    expected = replay.events_between(watch.request.key, watch.request.end,
                                     start_revision, last_revision)

    position = 0
    for persisted in expected:
        if position < len(observed) and _same_mutation(observed[position], persisted):
            position += 1
            continue
        if persisted.revision < compact_revision:
            continue
        missing = WatchEvent(persisted.type, persisted.key, persisted.value, persisted.revision)
        raise _fail("Broke watch guarantee: Reliable - missing event", client_id, missing,
                    expected=persisted,
                    observed=observed[position] if position < len(observed) else None)
    if position < len(observed):
        raise _fail("Broke watch guarantee: Reliable - unexpected event", client_id,
                    observed[position], observed=observed[position])


def validate_prev_kv(client_id: int, watch: WatchOperation, replay: Replay) -> None:
    if not watch.request.with_prev_kv:
        return
    for event in watch.events():
        try:
            state = replay.state_for_revision(event.revision - 1)
        except RevisionNotInReplayError:
            raise _fail("Broke watch guarantee: PrevKV - revision not in replay", client_id, event) from None
        previous = state.key_values.get(event.key)
        expected = previous.value if previous is not None else None
        if event.prev_value != expected:
            raise _fail("Broke watch guarantee: PrevKV - wrong previous value", client_id, event,
                        expected=expected, observed=event.prev_value)


def validate_is_create(client_id: int, watch: WatchOperation, replay: Replay) -> None:
    for event in watch.events():
        if event.type is not EventType.PUT:
            continue
        persisted = replay.find_event(event.revision, event.key)
        if persisted is not None and event.is_create != persisted.is_create:
            raise _fail("Broke watch guarantee: IsCreate - wrong create flag", client_id, event,
                        expected=persisted.is_create, observed=event.is_create)
