from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from .exclusivity import GuardDecision


class AllocationError(Exception):
    """Base class for every error raised by the allocation planner."""


class RecordValidationError(AllocationError):
    """Raised when a stored allocation record is malformed (bad types, missing fields)."""


class SettingsError(AllocationError):
    """Raised when the engine settings file is invalid."""


class PatternValidationError(AllocationError):
    """Raised when a recurring pattern is rejected before any write."""

    def __init__(self, errors: Sequence[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid recurring pattern")


class ExclusivityError(AllocationError):
    """Raised when an operation would mix split phases with a recurring template."""

    def __init__(self, decision: "GuardDecision"):
        self.decision = decision
        super().__init__(decision.reason)


class ConfirmationRequired(AllocationError):
    """Raised when an operation is destructive and the caller did not confirm it."""

    def __init__(self, decision: "GuardDecision"):
        self.decision = decision
        super().__init__(decision.reason)


class PersistenceError(AllocationError):
    """Raised when a single create/update/delete call against the store fails."""


class BatchWriteError(PersistenceError):
    """
    Raised when one or more writes of a logically single batch fail.

    Writes that succeeded are not rolled back; callers re-read the store and
    re-run the idempotent repair/reset path.
    """

    def __init__(self, operation: str, failures: Sequence[BaseException], succeeded: int, remedy: str):
        self.operation = operation
        self.failures = list(failures)
        self.succeeded = succeeded
        self.remedy = remedy
        super().__init__(
            f"{operation}: {len(self.failures)} write(s) failed, {succeeded} succeeded; {remedy}"
        )
