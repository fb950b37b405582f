"""
Error types raised by the validation stages.

Each stage raises a subclass of ValidationError describing a conclusion
about the trace, never a transient fault. The orchestrator catches them and
returns them in the validation Result, wrapped with the stage that failed.
"""

from typing import Any, Optional


class ValidationError(Exception):
    """Base class for every validation failure.

    Optional details identify the divergence well enough to reproduce it:
    the client, key and revision involved and the expected and observed
    values.
    """

    def __init__(self, message: str,
                 client_id: Optional[int] = None,
                 key: Optional[str] = None,
                 revision: Optional[int] = None,
                 expected: Any = None,
                 observed: Any = None,
                 request: Any = None,
                 operation: Any = None):
        super().__init__(message)
        self.message = message
        self.client_id = client_id
        self.key = key
        self.revision = revision
        self.expected = expected
        self.observed = observed
        self.request = request
        self.operation = operation

    def details(self) -> dict:
        fields = {
            "client_id": self.client_id,
            "key": self.key,
            "revision": self.revision,
            "expected": self.expected,
            "observed": self.observed,
            "request": self.request,
            "operation": self.operation,
        }
        return {name: value for name, value in fields.items() if value is not None}

    def with_context(self, context: str) -> "ValidationError":
        """Return a copy of this error whose message is prefixed with context."""
        wrapped = type(self)(f"{context}: {self.message}", **self.details())
        wrapped.__cause__ = self
        return wrapped

    def __str__(self) -> str:
        return self.message


class AssumptionError(ValidationError):
    """The trace breaks a precondition of the checker (test setup bug)."""


class LinearizationError(ValidationError):
    """No single-copy execution explains the observed history."""


class WatchValidationError(ValidationError):
    """Watch events disagree with the committed history."""


class SerializableReadError(ValidationError):
    """A read at a historical revision returned the wrong data."""

    """Requested a revision outside the range the replay covers."""
class RevisionNotInReplayError(LookupError):
    """Requested a revision the replay never reached."""

    def __init__(self, revision: int, last_revision: int):
        super().__init__(
            f"requested revision {revision}, outside of replay range [1, {last_revision}]"
        )
        self.revision = revision
        self.last_revision = last_revision
