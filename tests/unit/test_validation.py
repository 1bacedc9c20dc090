"""Unit tests for the step validation policy."""

from __future__ import annotations

import math

import pytest

from crashmcp.config import ValidationConfig
from crashmcp.engine.errors import CircularDependencyError
from crashmcp.engine.errors import ConfidenceBoundsError
from crashmcp.engine.errors import MissingFieldsError
from crashmcp.engine.errors import StrictModeError
from crashmcp.engine.validation import check_policy
from crashmcp.engine.validation import detect_completion
from crashmcp.engine.validation import extract_tools_used
from crashmcp.engine.validation import missing_required_fields
from crashmcp.engine.validation import validate_confidence
from crashmcp.engine.validation import validate_dependencies
from crashmcp.engine.validation import validate_required_fields
from crashmcp.models.schemas import CrashStep

STRICT = ValidationConfig(strict_mode=True)
FLEXIBLE = ValidationConfig()


# ---------------------------------------------------------------------------
# Required fields
# ---------------------------------------------------------------------------


class TestRequiredFields:
    def test_valid_step_has_nothing_missing(self, make_step):
        assert missing_required_fields(make_step()) == []

    def test_empty_input_lists_every_field_in_order(self):
        assert missing_required_fields({}) == [
            "step_number (must be positive integer >= 1)",
            "estimated_total (must be positive integer >= 1)",
            "purpose",
            "context",
            "thought",
            "outcome",
            "rationale",
            "next_action",
        ]

    @pytest.mark.parametrize("value", [0, -1, 2.0, 1.5, True, "1", None])
    def test_step_number_must_be_positive_int(self, make_step, value):
        missing = missing_required_fields(make_step(step_number=value))
        assert missing == ["step_number (must be positive integer >= 1)"]

    def test_whitespace_only_strings_are_missing(self, make_step):
        raw = make_step(context="   ", thought="\n\t")
        assert missing_required_fields(raw) == ["context", "thought"]

    def test_structured_action_needs_action(self, make_step):
        raw = make_step(next_action={"tool": "grep", "action": "  "})
        assert missing_required_fields(raw) == ["next_action.action"]

    def test_structured_action_accepted(self, make_step):
        raw = make_step(next_action={"tool": "grep", "action": "search"})
        assert missing_required_fields(raw) == []

    @pytest.mark.parametrize("value", ["", 42, ["read"]])
    def test_invalid_next_action(self, make_step, value):
        assert missing_required_fields(make_step(next_action=value)) == [
            "next_action"
        ]

    def test_error_message_enumerates_fields(self):
        with pytest.raises(MissingFieldsError) as excinfo:
            validate_required_fields({"step_number": 1, "estimated_total": 1})
        assert str(excinfo.value) == (
            "Missing or invalid required fields: purpose, context, thought, "
            "outcome, rationale, next_action"
        )

    def test_validation_is_idempotent(self):
        raw = {"step_number": 0, "purpose": " "}
        first = missing_required_fields(raw)
        assert missing_required_fields(raw) == first
        assert raw == {"step_number": 0, "purpose": " "}


# ---------------------------------------------------------------------------
# Confidence
# ---------------------------------------------------------------------------


class TestConfidence:
    @pytest.mark.parametrize("value", [0, 0.0, 0.5, 1, 1.0])
    def test_boundaries_accepted(self, value):
        validate_confidence({"confidence": value})

    def test_absent_is_accepted(self):
        validate_confidence({})

    @pytest.mark.parametrize("value", [-0.01, 1.01, 5])
    def test_out_of_range(self, value):
        with pytest.raises(ConfidenceBoundsError, match="out of bounds \\[0, 1\\]"):
            validate_confidence({"confidence": value})

    def test_non_numeric(self):
        with pytest.raises(ConfidenceBoundsError, match="got str"):
            validate_confidence({"confidence": "high"})

    def test_nan(self):
        with pytest.raises(ConfidenceBoundsError, match="NaN"):
            validate_confidence({"confidence": math.nan})


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class TestPolicy:
    def test_strict_rejects_missing_thought_prefix(self):
        with pytest.raises(StrictModeError) as excinfo:
            check_policy(
                thought="Let me think",
                rationale="To check",
                purpose="analysis",
                config=STRICT,
            )
        assert str(excinfo.value).endswith("(strict mode)")
        assert "Thought must start with one of" in str(excinfo.value)

    def test_strict_rejects_rationale_prefix(self):
        with pytest.raises(StrictModeError, match='Rationale must start with "To "'):
            check_policy(
                thought="But maybe",
                rationale="Because",
                purpose="analysis",
                config=STRICT,
            )

    def test_strict_rejects_custom_purpose(self):
        with pytest.raises(StrictModeError, match='Invalid purpose "brainstorm"'):
            check_policy(
                thought="Wait here",
                rationale="To see",
                purpose="brainstorm",
                config=STRICT,
            )

    def test_strict_purpose_is_case_insensitive(self):
        report = check_policy(
            thought="Therefore done",
            rationale="To finish",
            purpose="SUMMARY",
            config=STRICT,
        )
        assert report.custom_purpose is False

    def test_flexible_reports_custom_purpose(self):
        report = check_policy(
            thought="anything",
            rationale="anything",
            purpose="brainstorm",
            config=FLEXIBLE,
        )
        assert report.custom_purpose is True
        assert report.thought_prefix_missing is False
        assert report.rationale_prefix_missing is False

    def test_flexible_reports_prefix_rules_that_are_on(self):
        cfg = ValidationConfig(require_thought_prefix=True)
        report = check_policy(
            thought="no prefix",
            rationale="no prefix",
            purpose="analysis",
            config=cfg,
        )
        assert report.thought_prefix_missing is True
        assert report.rationale_prefix_missing is False


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


class TestDependencies:
    def test_self_reference_is_circular(self):
        with pytest.raises(CircularDependencyError) as excinfo:
            validate_dependencies(3, [1, 3], {1, 2})
        assert str(excinfo.value).startswith(
            "Circular dependency detected for step 3"
        )
        assert excinfo.value.offending == [3]

    def test_future_references_are_listed(self):
        with pytest.raises(CircularDependencyError) as excinfo:
            validate_dependencies(2, [5, 4, 5], {1})
        assert excinfo.value.offending == [4, 5]

    def test_missing_dependencies_are_returned(self):
        assert validate_dependencies(5, [1, 2, 4], {1, 3}) == [2, 4]

    def test_no_dependencies(self):
        assert validate_dependencies(1, None, set()) == []


# ---------------------------------------------------------------------------
# Completion & tools
# ---------------------------------------------------------------------------


class TestCompletion:
    @pytest.mark.parametrize(
        "thought",
        ["I have completed the fix", "task COMPLETED now", "solution found!"],
    )
    def test_phrases(self, thought):
        assert detect_completion(thought, None) is True

    def test_explicit_flag(self):
        assert detect_completion("still going", True) is True

    def test_no_signal(self):
        assert detect_completion("still going", False) is False


class TestToolsUsed:
    def test_union_with_structured_tool(self, make_step):
        step = CrashStep.model_validate(
            make_step(
                tools_used=["grep", "pytest"],
                next_action={"tool": "grep", "action": "search again"},
            )
        )
        assert extract_tools_used(step) == ["grep", "pytest"]

    def test_structured_tool_only(self, make_step):
        step = CrashStep.model_validate(
            make_step(next_action={"tool": "sed", "action": "edit"})
        )
        assert extract_tools_used(step) == ["sed"]

    def test_simple_action_has_no_tool(self, make_step):
        step = CrashStep.model_validate(make_step())
        assert extract_tools_used(step) == []
