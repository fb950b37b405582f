"""
Linearizability oracle.

Decides whether a concurrent history of operations can be explained by some
sequential execution of a model that respects each operation's real-time
[call, return] interval. The search is the just-in-time linearization
algorithm of Wing & Gong with the state cache introduced by Lowe (the one
Porcupine implements):

- calls and returns are kept in a time-ordered doubly linked list
- the first call whose step succeeds is tentatively linearized and lifted
  out of the list together with its return
- reaching a return whose call is still in the list means the current
  prefix is a dead end, so the last linearized call is undone
- a (linearized set, model state) pair is explored at most once

Unresolved operations (return_time None) return after everything else.

Any model following the ``Model`` protocol can be checked; states must be
hashable.
"""

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Hashable, List, Optional, Protocol, Sequence, Set, Tuple, runtime_checkable

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from kvcheck.history import Operation
from kvcheck.requests import Request, Response

logger = logging.getLogger(__name__)


@runtime_checkable
class Model(Protocol):
    """What the search needs from a model. States must be hashable."""

    def init(self) -> Hashable:
        ...

    def step(self, state: Any, request: Request, response: Response) -> Tuple[bool, Any]:
        ...

    def describe_operation(self, request: Request, response: Response) -> str:
        ...

    def describe_state(self, state: Any) -> str:
        ...


class CheckResult(Enum):
    OK = "Ok"
    UNKNOWN = "Unknown"
    ILLEGAL = "Illegal"


@dataclass
class LinearizationInfo:
    """
    Witness of a check, for visualization.

    ``linearization`` lists indexes into ``operations`` in linearization
    order: the full order when the history is linearizable, otherwise the
    longest prefix the search managed to linearize.
    """

    operations: List[Operation]
    linearization: List[int] = field(default_factory=list)
    states: List[str] = field(default_factory=list)
    descriptions: List[str] = field(default_factory=list)

    def render(self, console: Console, title: str = "Linearization") -> None:
        table = Table(title=title)
        table.add_column("#", justify="right")
        table.add_column("client", justify="right")
        table.add_column("call", justify="right")
        table.add_column("return", justify="right")
        table.add_column("operation")
        table.add_column("state after")
        for position, index in enumerate(self.linearization):
            op = self.operations[index]
            ret = "-" if op.return_time is None else str(op.return_time)
            table.add_row(str(position), str(op.client_id), str(op.call_time), ret,
                          escape(self.descriptions[index]), escape(self.states[position]))
        console.print(table)
        remaining = len(self.operations) - len(self.linearization)
        if remaining:
            console.print(f"[red]{remaining} operations could not be linearized[/red]")


@dataclass
class LinearizationResult:
    verdict: CheckResult
    info: LinearizationInfo


class _Entry:
    __slots__ = ("id", "time", "op", "match", "prev", "next")

    def __init__(self, id: int, time: float, op: Optional[Operation] = None):
        self.id = id
        self.time = time
        self.op = op
        self.match: Optional["_Entry"] = None
        self.prev: Optional["_Entry"] = None
        self.next: Optional["_Entry"] = None


def _make_entries(operations: Sequence[Operation]) -> _Entry:
    """Build the time-ordered list of call/return entries; returns its head sentinel."""
    timeline = []
    for index, op in enumerate(operations):
        call = _Entry(index, op.call_time, op)
        ret = _Entry(index, math.inf if op.return_time is None else op.return_time)
        call.match = ret
        # Calls sort before returns at equal time so touching operations overlap.
        timeline.append((call.time, 0, index, call))
        timeline.append((ret.time, 1, index, ret))
    timeline.sort(key=lambda item: item[:3])

    head = _Entry(-1, -math.inf)
    previous = head
    for _, _, _, entry in timeline:
        previous.next = entry
        entry.prev = previous
        previous = entry
    return head


def _lift(entry: _Entry) -> None:
    entry.prev.next = entry.next
    entry.next.prev = entry.prev
    match = entry.match
    match.prev.next = match.next
    if match.next is not None:
        match.next.prev = match.prev


def _unlift(entry: _Entry) -> None:
    match = entry.match
    match.prev.next = match
    if match.next is not None:
        match.next.prev = match
    entry.prev.next = entry
    entry.next.prev = entry


def _search(model: Model, operations: Sequence[Operation],
            deadline: Optional[float]) -> Tuple[CheckResult, List[Tuple[int, Any]]]:
    head = _make_entries(operations)
    state = model.init()
    linearized = 0
    cache: Set[Tuple[int, Any]] = set()
    calls: List[Tuple[_Entry, Any]] = []
    longest: List[Tuple[int, Any]] = []

    entry = head.next
    while head.next is not None:
        if deadline is not None and time.monotonic() > deadline:
            return CheckResult.UNKNOWN, longest
        if entry.match is not None:
            ok, new_state = model.step(state, entry.op.request, entry.op.response)
            if ok:
                new_linearized = linearized | (1 << entry.id)
                if (new_linearized, new_state) not in cache:
                    cache.add((new_linearized, new_state))
                    calls.append((entry, state))
                    state = new_state
                    linearized = new_linearized
                    _lift(entry)
                    if len(calls) > len(longest):
                        longest = _trace(calls, state)
                    entry = head.next
                    continue
            entry = entry.next
        else:
            if not calls:
                return CheckResult.ILLEGAL, longest
            entry, state = calls.pop()
            linearized &= ~(1 << entry.id)
            _unlift(entry)
            entry = entry.next
    return CheckResult.OK, _trace(calls, state)


def _trace(calls: List[Tuple[_Entry, Any]], final_state) -> List[Tuple[int, Any]]:
    """Pair each linearized operation with the model state right after it."""
    after = [state for _, state in calls[1:]] + [final_state]
    return [(entry.id, state) for (entry, _), state in zip(calls, after)]


def check_operations(model: Model, operations: Sequence[Operation],
                     timeout: Optional[float] = None) -> LinearizationResult:
    """Check operations against model, giving up after timeout seconds."""
    operations = list(operations)
    deadline = None if timeout is None else time.monotonic() + timeout
    verdict, trace = _search(model, operations, deadline)
    info = LinearizationInfo(
        operations=operations,
        linearization=[index for index, _ in trace],
        states=[model.describe_state(state) for _, state in trace],
        descriptions=[model.describe_operation(op.request, op.response) for op in operations],
    )
    logger.debug("Linearization of %d operations: %s", len(operations), verdict.value)
    return LinearizationResult(verdict, info)
