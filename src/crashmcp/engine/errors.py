"""Fatal step-processing errors.

Every error raised while processing a step derives from ``StepError``;
``StepEngine.process_step`` converts them into ``StepFailure`` responses.
"""

from __future__ import annotations

from collections.abc import Sequence


class StepError(Exception):
    """Base class for errors that reject a step."""


class MissingFieldsError(StepError):
    """One or more required fields are missing or malformed."""

    def __init__(self, fields: Sequence[str]) -> None:
        self.fields = list(fields)
        super().__init__(
            f"Missing or invalid required fields: {', '.join(self.fields)}"
        )


class InvalidFieldError(StepError):
    """An optional field carries a value of the wrong type."""


class ConfidenceBoundsError(StepError):
    """Confidence is not a number in [0, 1]."""


class StrictModeError(StepError):
    """A strict-mode policy check failed."""

    def __init__(self, message: str) -> None:
        super().__init__(f"{message} (strict mode)")


class RevisionError(StepError):
    """A step tried to revise itself or a later step."""

    def __init__(self, revises_step: int, step_number: int) -> None:
        self.revises_step = revises_step
        self.step_number = step_number
        super().__init__(
            f"Cannot revise step {revises_step} from step {step_number}: "
            "can only revise earlier steps"
        )


class BranchingError(StepError):
    """A branch could not be created or joined."""


class BranchSourceError(BranchingError):
    """``branch_from`` references a step that is not in the history."""

    def __init__(self, branch_from: int, available: Sequence[int]) -> None:
        self.branch_from = branch_from
        self.available = list(available)
        listed = ", ".join(str(n) for n in self.available) or "none"
        super().__init__(
            f"Cannot branch from step {branch_from}: step does not exist. "
            f"Available steps: {listed}"
        )


class BranchDepthError(BranchingError):
    """A new branch would nest deeper than allowed."""

    def __init__(self, depth: int, max_depth: int) -> None:
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(
            f"Branch depth {depth} exceeds maximum {max_depth}. "
            f"Max allowed: {max_depth}"
        )


class CircularDependencyError(StepError):
    """A step depends on itself or on a step that does not exist yet."""

    def __init__(self, step_number: int, offending: Sequence[int]) -> None:
        self.step_number = step_number
        self.offending = sorted(set(offending))
        super().__init__(
            f"Circular dependency detected for step {step_number}: "
            f"cannot depend on steps {', '.join(str(n) for n in self.offending)}"
        )
