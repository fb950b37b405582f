"""
Validation entry point.

Stages, in order:
1. check_validation_assumptions - setup preconditions, no search on failure
2. prepare_and_categorize_operations - linearizable and serializable sets
3. patch_linearizable_operations - only with ground truth
4. check_operations - linearizability oracle
5. validate_watch - only with ground truth
6. validate_serializable_operations - only with ground truth

The first failing stage ends validation. Its error, prefixed with the stage,
is returned in the Result together with the linearization witness whenever
the oracle ran.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from kvcheck.assumptions import check_validation_assumptions
from kvcheck.categorize import prepare_and_categorize_operations
from kvcheck.config import ValidationConfig
from kvcheck.errors import (
    AssumptionError,
    LinearizationError,
    SerializableReadError,
    ValidationError,
    WatchValidationError,
)
from kvcheck.history import ClientReport, Operation
from kvcheck.linearizability import CheckResult, LinearizationInfo, LinearizationResult, check_operations
from kvcheck.model import NonDeterministicModel
from kvcheck.patch import patch_linearizable_operations
from kvcheck.replay import Replay
from kvcheck.requests import Request
from kvcheck.serializable import validate_serializable_operations
from kvcheck.watch import validate_watch

logger = logging.getLogger(__name__)


@dataclass
class Result:
    error: Optional[ValidationError] = None
    linearization: Optional[LinearizationInfo] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def render(self, console: Console) -> None:
        if self.linearization is not None:
            self.linearization.render(console)
        if self.error is None:
            console.print(Panel("[green]History is consistent[/green]", title="Validation"))
        else:
            console.print(Panel(f"[red]{escape(str(self.error))}[/red]", title="Validation"))


def validate_linearizable_operations(config: ValidationConfig, operations: Sequence[Operation],
                                     timeout: float) -> LinearizationResult:
    logger.info("Validating linearizable operations")
    model = NonDeterministicModel(expect_revision_unique=config.expect_revision_unique)
    result = check_operations(model, operations, timeout)
    if result.verdict is CheckResult.OK:
        logger.info("Linearization success")
    elif result.verdict is CheckResult.UNKNOWN:
        logger.error("Linearization has timed out after %.1fs", timeout)
    else:
        logger.error("Linearization failed")
    return result


def validate(reports: Sequence[ClientReport],
             persisted_requests: Optional[Sequence[Request]] = None,
             timeout: Optional[float] = None,
             config: Optional[ValidationConfig] = None) -> Result:
    """Validate client reports, against ground truth when persisted_requests is given."""
    if config is None:
        config = ValidationConfig()
    if timeout is None:
        timeout = config.timeout_seconds

    try:
        check_validation_assumptions(reports, persisted_requests)
    except AssumptionError as e:
        logger.error("Validation assumptions not met: %s", e)
        return Result(error=e.with_context("Failed validation assumptions"))

    linearizable, serializable = prepare_and_categorize_operations(reports)
    replay = None
    if persisted_requests is not None:
        replay = Replay(persisted_requests)
        # The caller's reports are kept for watch validation, so consumers never
        # need to know which operations were patched.
        linearizable = patch_linearizable_operations(linearizable, reports, persisted_requests, replay)

    linearization = validate_linearizable_operations(config, linearizable, timeout)
    if linearization.verdict is CheckResult.UNKNOWN:
        error = LinearizationError(f"Failed linearization: no verdict within {timeout}s")
        return Result(error=error, linearization=linearization.info)
    if linearization.verdict is not CheckResult.OK:
        return Result(error=LinearizationError("Failed linearization"), linearization=linearization.info)

    if replay is not None:
        try:
            validate_watch(config, reports, replay)
        except WatchValidationError as e:
            return Result(error=e.with_context("Failed validating watch history"),
                          linearization=linearization.info)
        try:
            validate_serializable_operations(serializable, replay)
        except SerializableReadError as e:
            return Result(error=e.with_context("Failed validating serializable operations"),
                          linearization=linearization.info)

    return Result(linearization=linearization.info)
