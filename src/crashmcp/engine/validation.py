"""Step validation policy.

Pure functions over a raw step mapping and the validation config.  They
raise ``StepError`` subclasses for fatal problems and return plain values
for advisory ones; none of them touch engine state.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from crashmcp.config import ValidationConfig
from crashmcp.engine.errors import CircularDependencyError
from crashmcp.engine.errors import ConfidenceBoundsError
from crashmcp.engine.errors import MissingFieldsError
from crashmcp.engine.errors import StrictModeError
from crashmcp.models.schemas import CrashStep

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

VALID_PREFIXES: tuple[str, ...] = (
    "OK, I ",
    "But ",
    "Wait ",
    "Therefore ",
    "I see the issue now. ",
    "I have completed ",
)

RATIONALE_PREFIX = "To "

VALID_PURPOSES: tuple[str, ...] = (
    "analysis",
    "action",
    "reflection",
    "decision",
    "summary",
    "validation",
    "exploration",
    "hypothesis",
    "correction",
    "planning",
)
_VALID_PURPOSES_SET = frozenset(VALID_PURPOSES)

COMPLETION_PHRASES: tuple[str, ...] = (
    "I have completed",
    "Task completed",
    "Solution found",
)
_COMPLETION_PHRASES_LOWER = tuple(p.lower() for p in COMPLETION_PHRASES)

CONFIDENCE_MIN = 0.0
CONFIDENCE_MAX = 1.0
LOW_CONFIDENCE_THRESHOLD = 0.5

_TEXT_FIELDS = ("purpose", "context", "thought", "outcome", "rationale")


# ---------------------------------------------------------------------------
# Required fields
# ---------------------------------------------------------------------------


def _is_positive_int(value: Any) -> bool:
    # bool is an int subclass but never a step number
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


def _is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and len(value.strip()) > 0


def missing_required_fields(raw: Mapping[str, Any]) -> list[str]:
    """Return every missing or malformed required field of *raw*, in order."""
    missing: list[str] = []

    if not _is_positive_int(raw.get("step_number")):
        missing.append("step_number (must be positive integer >= 1)")
    if not _is_positive_int(raw.get("estimated_total")):
        missing.append("estimated_total (must be positive integer >= 1)")

    for name in _TEXT_FIELDS:
        if not _is_non_empty_string(raw.get(name)):
            missing.append(name)

    next_action = raw.get("next_action")
    if isinstance(next_action, str):
        if not _is_non_empty_string(next_action):
            missing.append("next_action")
    elif isinstance(next_action, Mapping):
        if not _is_non_empty_string(next_action.get("action")):
            missing.append("next_action.action")
    else:
        missing.append("next_action")

    return missing


def validate_required_fields(raw: Mapping[str, Any]) -> None:
    """Raise ``MissingFieldsError`` naming all invalid required fields."""
    missing = missing_required_fields(raw)
    if missing:
        raise MissingFieldsError(missing)


def validate_confidence(raw: Mapping[str, Any]) -> None:
    """Raise ``ConfidenceBoundsError`` unless confidence is absent or in [0, 1]."""
    confidence = raw.get("confidence")
    if confidence is None:
        return
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise ConfidenceBoundsError(
            f"Confidence must be a number, got {type(confidence).__name__}"
        )
    if math.isnan(confidence):
        raise ConfidenceBoundsError("Confidence must be a number, got NaN")
    if confidence < CONFIDENCE_MIN or confidence > CONFIDENCE_MAX:
        raise ConfidenceBoundsError(
            f"Confidence {confidence} out of bounds "
            f"[{CONFIDENCE_MIN:g}, {CONFIDENCE_MAX:g}]"
        )


# ---------------------------------------------------------------------------
# Purpose & prefix policy
# ---------------------------------------------------------------------------


def has_thought_prefix(thought: str) -> bool:
    return thought.startswith(VALID_PREFIXES)


def has_rationale_prefix(rationale: str) -> bool:
    return rationale.startswith(RATIONALE_PREFIX)


def is_known_purpose(purpose: str) -> bool:
    return purpose.lower() in _VALID_PURPOSES_SET


def thought_passes(thought: str, config: ValidationConfig) -> bool:
    """Thought-prefix rule; any thought passes when the rule is off."""
    return not config.require_thought_prefix or has_thought_prefix(thought)


def rationale_passes(rationale: str, config: ValidationConfig) -> bool:
    """Rationale-prefix rule; any rationale passes when the rule is off."""
    return not config.require_rationale_prefix or has_rationale_prefix(rationale)


def purpose_passes(purpose: str, config: ValidationConfig) -> bool:
    """Purpose whitelist; any purpose passes when custom purposes are allowed."""
    return config.allow_custom_purpose or is_known_purpose(purpose)


@dataclass(frozen=True)
class PolicyReport:
    """Advisory findings of a non-strict policy check."""

    custom_purpose: bool = False
    thought_prefix_missing: bool = False
    rationale_prefix_missing: bool = False


def check_policy(
    *, thought: str, rationale: str, purpose: str, config: ValidationConfig
) -> PolicyReport:
    """Apply the prefix and purpose rules.

    In strict mode the first failing rule raises ``StrictModeError``.
    Otherwise nothing is fatal and the returned report lists what an
    operator may want to know about.
    """
    if config.strict_mode:
        if not thought_passes(thought, config):
            raise StrictModeError(
                f"Thought must start with one of: {', '.join(VALID_PREFIXES)}"
            )
        if not rationale_passes(rationale, config):
            raise StrictModeError(f'Rationale must start with "{RATIONALE_PREFIX}"')
        if not purpose_passes(purpose, config):
            raise StrictModeError(
                f'Invalid purpose "{purpose}". Valid: {", ".join(VALID_PURPOSES)}'
            )
        return PolicyReport()

    return PolicyReport(
        custom_purpose=not is_known_purpose(purpose),
        thought_prefix_missing=not thought_passes(thought, config),
        rationale_prefix_missing=not rationale_passes(rationale, config),
    )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def validate_dependencies(
    step_number: int,
    dependencies: Iterable[int] | None,
    known_steps: set[int],
) -> list[int]:
    """Return dependencies missing from *known_steps*.

    Self references and references to the current or a later step number
    raise ``CircularDependencyError``.  Longer cycles are not detected.
    """
    deps = list(dependencies or [])
    if not deps:
        return []

    forward = [dep for dep in deps if dep >= step_number]
    if forward:
        raise CircularDependencyError(step_number, forward)

    return [dep for dep in deps if dep not in known_steps]


# ---------------------------------------------------------------------------
# Completion & tools
# ---------------------------------------------------------------------------


def detect_completion(thought: str, is_final_step: bool | None) -> bool:
    """An explicit final flag wins; otherwise look for a completion phrase."""
    if is_final_step is True:
        return True
    lowered = thought.lower()
    return any(phrase in lowered for phrase in _COMPLETION_PHRASES_LOWER)


def extract_tools_used(step: CrashStep) -> list[str]:
    """Union of ``tools_used`` and a structured action's tool, deduplicated."""
    tools: list[str] = list(step.tools_used or [])
    if step.next_action.kind == "structured" and step.next_action.tool:
        tools.append(step.next_action.tool)
    return list(dict.fromkeys(tools))
