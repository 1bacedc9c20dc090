"""The step engine: owns every history, branch and session.

``process_step`` validates a raw step, works out every structural effect
(dependencies, revision target, branch identity and depth) without
touching state, and only then commits.  A rejected step therefore leaves
no trace apart from the emitted ``step_rejected`` event.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from crashmcp.config import CrashConfig
from crashmcp.engine.branching import BranchPlan
from crashmcp.engine.errors import InvalidFieldError
from crashmcp.engine.errors import RevisionError
from crashmcp.engine.errors import StepError
from crashmcp.engine.events import EngineEvent
from crashmcp.engine.events import EngineEventType
from crashmcp.engine.events import EventSink
from crashmcp.engine.events import LoggingEventSink
from crashmcp.engine.sessions import SessionEntry
from crashmcp.engine.sessions import SessionStore
from crashmcp.engine.validation import check_policy
from crashmcp.engine.validation import detect_completion
from crashmcp.engine.validation import extract_tools_used
from crashmcp.engine.validation import LOW_CONFIDENCE_THRESHOLD
from crashmcp.engine.validation import validate_confidence
from crashmcp.engine.validation import validate_dependencies
from crashmcp.engine.validation import validate_required_fields
from crashmcp.engine.workspace import Workspace
from crashmcp.formatting import StepFormatter
from crashmcp.models.schemas import Branch
from crashmcp.models.schemas import BranchRef
from crashmcp.models.schemas import CrashHistory
from crashmcp.models.schemas import CrashStep
from crashmcp.models.schemas import StepFailure
from crashmcp.models.schemas import StepResult
from crashmcp.models.schemas import utc_now_iso

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "markdown", "text")

_STRICT_HINT = (
    "Strict mode is enabled. Set CRASH_STRICT_MODE=false for flexible validation."
)
_DEFAULT_HINT = "Check that all required fields are provided."

# never accepted from callers
_ENGINE_ASSIGNED = frozenset({"revised_by", "duration_ms"})


@dataclass
class _StepPlan:
    """Everything a step will change, resolved before the commit."""

    step: CrashStep
    workspace: Workspace
    session_id: str | None
    new_session: bool
    expiring_sessions: list[str]
    missing_dependencies: list[int]
    revision_target: CrashStep | None
    branch: BranchPlan | None


def _validation_message(exc: ValidationError) -> str:
    err = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in err.get("loc", ()))
    message = str(err.get("msg", "Invalid input"))
    return f"Invalid field {location}: {message}" if location else message


class StepEngine:
    """In-memory state machine behind the ``crash`` tool.

    Not safe for concurrent mutation: callers must serialize
    ``process_step`` calls (the MCP server does so with a lock).
    """

    def __init__(
        self,
        config: CrashConfig | None = None,
        *,
        formatter: StepFormatter | None = None,
        events: EventSink | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._config = config or CrashConfig()
        self._formatter = formatter or StepFormatter(
            color=self._config.display.color_output
        )
        self._events = events or LoggingEventSink()
        self._sessions = SessionStore(
            timeout_minutes=self._config.system.session_timeout,
            clock=clock,
        )
        self._default = Workspace()
        self._active = self._default

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> CrashConfig:
        return self._config

    @property
    def history(self) -> CrashHistory:
        """History of the workspace used by the last successful step."""
        return self._active.history

    @property
    def branches(self) -> dict[str, Branch]:
        """Branch registry of the active workspace, keyed by branch id."""
        return self._active.branches.as_dict()

    @property
    def sessions(self) -> dict[str, SessionEntry]:
        return self._sessions.as_dict()

    @property
    def active_session_id(self) -> str | None:
        return self._active.session_id

    @property
    def workspace(self) -> Workspace:
        return self._active

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _emit(
        self, event_type: EngineEventType, message: str, **payload: Any
    ) -> None:
        self._events.emit(
            EngineEvent(event_type=event_type, message=message, payload=payload)
        )

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def process_step(self, raw: Mapping[str, Any]) -> StepResult | StepFailure:
        """Validate and record one step.  Never raises for bad input."""
        started = time.perf_counter()
        try:
            return self._process(raw, started)
        except StepError as exc:
            self._emit(
                EngineEventType.STEP_REJECTED, str(exc), error=type(exc).__name__
            )
            return StepFailure(error=str(exc), hint=self._hint())

    def _hint(self) -> str:
        return _STRICT_HINT if self._config.validation.strict_mode else _DEFAULT_HINT

    def _process(self, raw: Mapping[str, Any], started: float) -> StepResult:
        validate_required_fields(raw)
        validate_confidence(raw)
        report = check_policy(
            thought=raw["thought"],
            rationale=raw["rationale"],
            purpose=raw["purpose"],
            config=self._config.validation,
        )

        try:
            step = CrashStep.model_validate(
                {k: v for k, v in raw.items() if k not in _ENGINE_ASSIGNED}
            )
        except ValidationError as exc:
            raise InvalidFieldError(_validation_message(exc)) from exc
        step.timestamp = utc_now_iso()

        if report.custom_purpose:
            self._emit(
                EngineEventType.CUSTOM_PURPOSE,
                f"Using custom purpose: {step.purpose}",
                purpose=step.purpose,
            )
        if report.thought_prefix_missing:
            self._emit(
                EngineEventType.PREFIX_MISSING,
                f"Step {step.step_number} thought has no recognised prefix",
                field="thought",
            )
        if report.rationale_prefix_missing:
            self._emit(
                EngineEventType.PREFIX_MISSING,
                f'Step {step.step_number} rationale does not start with "To "',
                field="rationale",
            )

        plan = self._plan(step)
        self._commit(plan)
        return self._finish(plan, started)

    def _plan(self, step: CrashStep) -> _StepPlan:
        features = self._config.features
        expiring: list[str] = []
        if step.session_id and features.enable_sessions:
            expiring = self._sessions.pending_expiry()
        workspace, session_id, new_session = self._resolve_workspace(step, expiring)

        missing = validate_dependencies(
            step.step_number, step.dependencies, workspace.step_numbers
        )

        revision_target = None
        if step.revises_step and features.enable_revisions:
            if step.revises_step >= step.step_number:
                raise RevisionError(step.revises_step, step.step_number)
            revision_target = workspace.step_index.get(step.revises_step)

        branch = None
        if step.branch_from and features.enable_branching:
            branch = workspace.branches.plan(
                step,
                known_steps=workspace.step_numbers,
                max_depth=self._config.system.max_branch_depth,
            )

        return _StepPlan(
            step=step,
            workspace=workspace,
            session_id=session_id,
            new_session=new_session,
            expiring_sessions=expiring,
            missing_dependencies=missing,
            revision_target=revision_target,
            branch=branch,
        )

    def _resolve_workspace(
        self, step: CrashStep, expiring: list[str]
    ) -> tuple[Workspace, str | None, bool]:
        """Pick the workspace for *step*; a new session is not registered yet.

        A session listed in *expiring* is treated as gone: the commit
        removes it before registering its replacement.
        """
        if not (step.session_id and self._config.features.enable_sessions):
            return self._default, None, False

        entry = self._sessions.get(step.session_id)
        if entry is None or step.session_id in expiring:
            return Workspace(session_id=step.session_id), step.session_id, True
        return entry.workspace, step.session_id, False

    def _commit(self, plan: _StepPlan) -> None:
        step = plan.step
        workspace = plan.workspace
        history = workspace.history

        if plan.session_id is not None:
            self._expire(self._sessions.tick(plan.expiring_sessions))
            if plan.new_session:
                self._sessions.add(plan.session_id, workspace)
                self._emit(
                    EngineEventType.SESSION_CREATED,
                    f"Session {plan.session_id} created",
                    session_id=plan.session_id,
                )
            self._sessions.touch(plan.session_id)
        self._activate(workspace)

        if plan.missing_dependencies:
            missing = ", ".join(str(n) for n in plan.missing_dependencies)
            available = ", ".join(str(n) for n in workspace.available_steps()) or "none"
            self._emit(
                EngineEventType.DEPENDENCIES_MISSING,
                f"Proceeding with missing dependencies: steps {missing} not found. "
                f"Available: {available}",
                step_number=step.step_number,
                missing=plan.missing_dependencies,
            )

        if detect_completion(step.thought, step.is_final_step):
            history.completed = True

        if step.revises_step and self._config.features.enable_revisions:
            self._apply_revision(plan)

        if plan.branch is not None:
            workspace.branches.commit(plan.branch, step)
            if plan.branch.is_new:
                history.metadata.branches_created += 1
                self._emit(
                    EngineEventType.BRANCH_CREATED,
                    f'Created branch "{plan.branch.name}" from step '
                    f"{plan.branch.from_step} (depth: {plan.branch.depth})",
                    branch_id=plan.branch.branch_id,
                    depth=plan.branch.depth,
                )
            workspace.sync_branches()

        workspace.add_tools(extract_tools_used(step))
        workspace.append(step)

    def _apply_revision(self, plan: _StepPlan) -> None:
        step = plan.step
        target = plan.revision_target
        reason = step.revision_reason or "No reason provided"
        if target is None:
            available = ", ".join(
                str(n) for n in plan.workspace.available_steps()
            ) or "none"
            self._emit(
                EngineEventType.REVISION_TARGET_MISSING,
                f"Cannot find step {step.revises_step} to revise. "
                f"Available steps: {available}",
                revises_step=step.revises_step,
            )
            return
        target.revised_by = step.step_number
        plan.workspace.history.metadata.revisions_count += 1
        self._emit(
            EngineEventType.STEP_REVISED,
            f"Revising step {step.revises_step}: {reason}",
            revises_step=step.revises_step,
            revised_by=step.step_number,
        )

    def _finish(self, plan: _StepPlan, started: float) -> StepResult:
        step = plan.step
        workspace = plan.workspace
        history = workspace.history

        step.duration_ms = int((time.perf_counter() - started) * 1000)
        history.metadata.total_duration_ms = workspace.elapsed_ms()

        trimmed = workspace.trim(self._config.system.max_history_size)
        if trimmed:
            for branch in trimmed.removed_branches:
                self._emit(
                    EngineEventType.BRANCH_REMOVED,
                    f'Branch "{branch.name}" removed (from_step {branch.from_step} '
                    "was trimmed)",
                    branch_id=branch.id,
                )
            self._emit(
                EngineEventType.HISTORY_TRIMMED,
                f"History trimmed to {self._config.system.max_history_size} steps "
                f"(removed {len(trimmed.removed_steps)} old steps)",
                removed_steps=trimmed.removed_steps,
            )

        self._emit(
            EngineEventType.STEP_RENDERED,
            self._formatter.format_step(step, self._config.display.output_format),
            step_number=step.step_number,
        )

        if step.confidence is not None and step.confidence < LOW_CONFIDENCE_THRESHOLD:
            self._emit(
                EngineEventType.LOW_CONFIDENCE,
                f"Low confidence ({round(step.confidence * 100)}%): "
                f"{step.uncertainty_notes or 'Consider verification'}",
                step_number=step.step_number,
                confidence=step.confidence,
            )

        branch_ref = None
        if step.branch_id:
            branch_ref = BranchRef(
                id=step.branch_id, name=step.branch_name, from_step=step.branch_from
            )
        return StepResult(
            step_number=step.step_number,
            estimated_total=step.estimated_total,
            completed=history.completed,
            total_steps=len(history.steps),
            next_action=step.next_action.to_wire(),
            confidence=step.confidence,
            revised_step=step.revises_step or None,
            branch=branch_ref,
        )

    # ------------------------------------------------------------------
    # Workspaces & sessions
    # ------------------------------------------------------------------

    def _activate(self, workspace: Workspace) -> None:
        if workspace is self._active:
            return
        self._active = workspace
        # depths memoized for another history are meaningless here
        workspace.branches.depth_cache.invalidate()

    def _expire(self, session_ids: list[str]) -> None:
        for session_id in session_ids:
            if self._active.session_id == session_id:
                self._active = self._default
            self._emit(
                EngineEventType.SESSION_EXPIRED,
                f"Session {session_id} expired and removed",
                session_id=session_id,
            )

    def cleanup_expired_sessions(self, force: bool = False) -> list[str]:
        """Remove idle sessions; without *force* only every N-th call sweeps."""
        if not self._config.features.enable_sessions:
            return []
        expired = self._sessions.sweep() if force else self._sessions.tick()
        self._expire(expired)
        return expired

    # ------------------------------------------------------------------
    # Reset & export
    # ------------------------------------------------------------------

    def clear_history(self) -> None:
        """Empty the active history, its branches and indices."""
        self._active.reset()
        self._sessions.reset_counter()
        self._emit(
            EngineEventType.HISTORY_CLEARED,
            "CRASH history cleared",
            session_id=self._active.session_id,
        )

    def export_history(self, export_format: str = "json") -> str:
        """Export the active history as ``json``, ``markdown`` or ``text``."""
        if export_format not in EXPORT_FORMATS:
            raise ValueError(f"format must be one of {', '.join(EXPORT_FORMATS)}")
        history = self._active.history
        if export_format == "markdown":
            return "\n\n".join(
                self._formatter.format_step_markdown(step) for step in history.steps
            )
        if export_format == "text":
            plain = StepFormatter(color=False)
            return "\n\n".join(
                plain.format_step_console(step) for step in history.steps
            )
        exportable = history.model_copy(
            update={"branches": list(self._active.branches)}
        )
        return exportable.model_dump_json(indent=2)

    def history_summary(self) -> str:
        return self._formatter.format_history_summary(self._active.history)

    def branch_tree(self) -> str:
        return self._formatter.format_branch_tree(self._active.history)
