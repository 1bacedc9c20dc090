"""CRASH: FastMCP v2 server exposing the ``crash`` reasoning tool.

The tool delegates to a ``StepEngine`` held at module level.  Call
``configure()`` before using the server.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from fastmcp import FastMCP

from crashmcp.config import CrashConfig
from crashmcp.engine import EventSink
from crashmcp.engine import StepEngine
from crashmcp.models.schemas import StepFailure
from crashmcp.observability import measure_latency

mcp = FastMCP("CRASH")

# ---------------------------------------------------------------------------
# Engine instance (set via configure())
# ---------------------------------------------------------------------------

_engine: StepEngine | None = None
_lock: asyncio.Lock | None = None


def configure(
    config: CrashConfig | None = None,
    *,
    events: EventSink | None = None,
    clock: Callable[[], float] | None = None,
) -> StepEngine:
    """Create a fresh engine for the server and return it.

    Must be called before the MCP tool can function.  Calling it again
    discards all recorded reasoning state.
    """
    global _engine, _lock
    _engine = StepEngine(config, events=events, clock=clock)
    _lock = asyncio.Lock()
    return _engine


def shutdown() -> None:
    """Drop the engine and all in-memory reasoning state."""
    global _engine, _lock
    _engine = None
    _lock = None


def _reset_engine() -> None:
    """Clear the active history: exposed for test cleanup."""
    if _engine is not None:
        _engine.clear_history()


def _get_engine() -> StepEngine:
    """Return the engine instance or raise."""
    if _engine is None or _lock is None:
        raise RuntimeError("Step engine not configured. Call configure() first.")
    return _engine


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool
async def crash(
    step_number: Any = None,
    estimated_total: Any = None,
    purpose: Any = None,
    context: Any = None,
    thought: Any = None,
    outcome: Any = None,
    next_action: Any = None,
    rationale: Any = None,
    confidence: Any = None,
    uncertainty_notes: str | None = None,
    revises_step: int | None = None,
    revision_reason: str | None = None,
    branch_from: int | None = None,
    branch_id: str | None = None,
    branch_name: str | None = None,
    tools_used: list[str] | None = None,
    external_context: dict[str, Any] | None = None,
    dependencies: list[int] | None = None,
    session_id: str | None = None,
    is_final_step: bool | None = None,
) -> dict[str, Any]:
    """Record one step of structured, iterative reasoning.

    Use it to break a complex task into steps, track what is known,
    revise earlier steps, and branch into alternative approaches.
    Continue until the task is completed or a solution is found.

    The first eight arguments are required.  They are checked by the tool
    itself, so a missing or malformed one comes back as a result with
    ``status: "failed"`` naming every offending field.

    Args:
        step_number: Sequential step number (>= 1).
        estimated_total: Current estimate of total steps needed.
        purpose: What this step accomplishes (analysis, action, reflection,
            decision, summary, validation, exploration, hypothesis,
            correction, planning, or custom).
        context: What is already known or has been completed.
        thought: Current reasoning.
        outcome: Expected or actual result from this step.
        next_action: Next action, as text or as an object with ``action``
            and optional ``tool``, ``parameters`` and ``expectedOutput``.
        rationale: Why this next action was chosen.
        confidence: Confidence in this step on a 0-1 scale.
        uncertainty_notes: Notes about uncertainties or doubts.
        revises_step: Earlier step number being revised.
        revision_reason: Why the revision is needed.
        branch_from: Step number to branch from for alternative exploration.
        branch_id: Identifier of the branch to create or continue.
        branch_name: Descriptive name for the branch.
        tools_used: Tools used in this step.
        external_context: External data or tool outputs relevant to this step.
        dependencies: Earlier step numbers this step depends on.
        session_id: Session identifier grouping related reasoning chains.
        is_final_step: Mark this step as the end of the reasoning chain.
    """
    with measure_latency("mcp.crash") as sample:
        engine = _get_engine()
        assert _lock is not None

        raw = {
            name: value
            for name, value in {
                "step_number": step_number,
                "estimated_total": estimated_total,
                "purpose": purpose,
                "context": context,
                "thought": thought,
                "outcome": outcome,
                "next_action": next_action,
                "rationale": rationale,
                "confidence": confidence,
                "uncertainty_notes": uncertainty_notes,
                "revises_step": revises_step,
                "revision_reason": revision_reason,
                "branch_from": branch_from,
                "branch_id": branch_id,
                "branch_name": branch_name,
                "tools_used": tools_used,
                "external_context": external_context,
                "dependencies": dependencies,
                "session_id": session_id,
                "is_final_step": is_final_step,
            }.items()
            if value is not None
        }

        async with _lock:
            result = engine.process_step(raw)

        sample.ok = not isinstance(result, StepFailure)
        return result.to_payload()
