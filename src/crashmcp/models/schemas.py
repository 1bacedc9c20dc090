"""Pydantic models for reasoning steps, branches and histories.

``next_action`` is a tagged variant: on the wire it is either a plain
string or an object carrying ``action``; once parsed it is always a
``SimpleAction`` or a ``StructuredAction`` discriminated by ``kind``.
Responses echo the wire shape back unchanged.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from datetime import UTC
from enum import Enum
from typing import Annotated
from typing import Any
from typing import Literal

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_serializer
from pydantic import field_validator


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(tz=UTC).isoformat()


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class BranchStatus(str, Enum):
    """Lifecycle states of a branch.  Only ``active`` is engine-assigned."""

    active = "active"
    merged = "merged"
    abandoned = "abandoned"


# ---------------------------------------------------------------------------
# Next action variant
# ---------------------------------------------------------------------------


class SimpleAction(BaseModel):
    """Free-text next action."""

    kind: Literal["simple"] = "simple"
    text: str = Field(
        description="Plain description of the next action.",
    )

    def to_wire(self) -> str:
        return self.text


class StructuredAction(BaseModel):
    """Next action with optional tool integration."""

    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["structured"] = "structured"
    tool: str | None = Field(
        default=None,
        description="Tool name if applicable.",
    )
    action: str = Field(
        description="Action to perform.",
    )
    parameters: dict[str, Any] | None = Field(
        default=None,
        description="Parameters for the action.",
    )
    expected_output: str | None = Field(
        default=None,
        alias="expectedOutput",
        description="What the caller expects from this action.",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"kind"})


NextAction = Annotated[SimpleAction | StructuredAction, Field(discriminator="kind")]


def parse_next_action(value: Any) -> Any:
    """Tag a wire-format next action so the discriminated union can parse it.

    The tag is decided by the wire shape alone: a caller-supplied ``kind``
    key in an object is dropped like any other unknown key.
    """
    if isinstance(value, (SimpleAction, StructuredAction)):
        return value
    if isinstance(value, str):
        return {"kind": "simple", "text": value}
    if isinstance(value, Mapping):
        fields = {key: item for key, item in value.items() if key != "kind"}
        return {**fields, "kind": "structured"}
    return value


# ---------------------------------------------------------------------------
# Step
# ---------------------------------------------------------------------------


class CrashStep(BaseModel):
    """One recorded reasoning step."""

    model_config = ConfigDict(extra="ignore")

    step_number: int = Field(
        description="Sequential step number, >= 1.",
    )
    estimated_total: int = Field(
        description="Current estimate of total steps needed.",
    )
    purpose: str = Field(
        description="What this step accomplishes (analysis, action, ...).",
    )
    context: str = Field(
        description="What is already known or has been completed.",
    )
    thought: str = Field(
        description="Current reasoning.",
    )
    outcome: str = Field(
        description="Expected or actual result from this step.",
    )
    next_action: NextAction = Field(
        description="Next action, simple text or structured.",
    )
    rationale: str = Field(
        description="Why the next action was chosen.",
    )

    confidence: float | None = Field(
        default=None,
        description="Confidence in this step on a 0-1 scale.",
    )
    uncertainty_notes: str | None = Field(
        default=None,
        description="Notes about uncertainties or doubts.",
    )

    revises_step: int | None = Field(
        default=None,
        description="Earlier step number being revised.",
    )
    revision_reason: str | None = Field(
        default=None,
        description="Why the revision is needed.",
    )
    revised_by: int | None = Field(
        default=None,
        description="Step number of the later step that revised this one.",
    )

    branch_from: int | None = Field(
        default=None,
        description="Step number this step branches from.",
    )
    branch_id: str | None = Field(
        default=None,
        description="Identifier of the branch this step belongs to.",
    )
    branch_name: str | None = Field(
        default=None,
        description="Descriptive name of the branch.",
    )

    tools_used: list[str] | None = Field(
        default=None,
        description="Tools used in this step.",
    )
    external_context: dict[str, Any] | None = Field(
        default=None,
        description="External data or tool outputs relevant to this step.",
    )
    dependencies: list[int] | None = Field(
        default=None,
        description="Step numbers this step depends on.",
    )

    session_id: str | None = Field(
        default=None,
        description="Session grouping identifier.",
    )
    is_final_step: bool | None = Field(
        default=None,
        description="Explicit completion marker.",
    )

    timestamp: str | None = Field(
        default=None,
        description="ISO-8601 time the engine accepted the step.",
    )
    duration_ms: int | None = Field(
        default=None,
        description="Wall-clock processing time of this step.",
    )

    @field_validator("next_action", mode="before")
    @classmethod
    def _tag_next_action(cls, value: Any) -> Any:
        return parse_next_action(value)

    @field_serializer("next_action")
    def _serialize_next_action(
        self, value: SimpleAction | StructuredAction
    ) -> str | dict[str, Any]:
        return value.to_wire()


# ---------------------------------------------------------------------------
# Branch / history
# ---------------------------------------------------------------------------


class Branch(BaseModel):
    """A named alternative path forking from an earlier step."""

    id: str = Field(
        description="Unique branch identifier.",
    )
    name: str = Field(
        description="Human-readable branch name.",
    )
    from_step: int = Field(
        description="Step number the branch forks from.",
    )
    steps: list[CrashStep] = Field(
        default_factory=list,
        description="Steps tagged with this branch, in arrival order.",
    )
    status: BranchStatus = Field(
        default=BranchStatus.active,
        description="Branch lifecycle state.",
    )
    created_at: str = Field(
        default_factory=utc_now_iso,
        description="ISO-8601 creation time.",
    )
    depth: int = Field(
        default=1,
        description="Nesting level: 1 forks from the main line.",
    )


class HistoryMetadata(BaseModel):
    """Running counters for one history."""

    total_duration_ms: int = 0
    revisions_count: int = 0
    branches_created: int = 0
    tools_used: list[str] = Field(default_factory=list)


class CrashHistory(BaseModel):
    """Ordered reasoning steps for one chain (default or per-session)."""

    steps: list[CrashStep] = Field(default_factory=list)
    branches: list[Branch] = Field(default_factory=list)
    completed: bool = False
    session_id: str | None = None
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)
    metadata: HistoryMetadata = Field(default_factory=HistoryMetadata)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class BranchRef(BaseModel):
    """Branch descriptor echoed in a step response."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str | None = None
    from_step: int | None = Field(default=None, alias="from")


class StepResult(BaseModel):
    """Success response for a processed step."""

    step_number: int
    estimated_total: int
    completed: bool
    total_steps: int
    next_action: str | dict[str, Any]
    confidence: float | None = None
    revised_step: int | None = None
    branch: BranchRef | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class StepFailure(BaseModel):
    """Failure response for a rejected step."""

    error: str
    status: Literal["failed"] = "failed"
    hint: str

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump()
