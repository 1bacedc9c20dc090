"""MCP interface contract tests.

All tests use ``fastmcp.Client`` to exercise the full MCP protocol
(serialization, validation) against a freshly configured engine.
"""

from __future__ import annotations

import json

import pytest

from crashmcp.config import CrashConfig
from crashmcp.observability import latency_metrics_snapshot
from crashmcp.observability import reset_latency_metrics

BASE_STEP = {
    "step_number": 1,
    "estimated_total": 3,
    "purpose": "analysis",
    "context": "c",
    "thought": "t",
    "outcome": "o",
    "next_action": "a",
    "rationale": "r",
}


def _parse(result) -> dict:
    """Extract the JSON payload from a CallToolResult."""
    return json.loads(result.content[0].text)


def _step(**overrides) -> dict:
    return {**BASE_STEP, **overrides}


# -----------------------------------------------------------------------
# Tool listing
# -----------------------------------------------------------------------


class TestToolListing:
    async def test_exposes_single_crash_tool(self, mcp_client):
        tools = await mcp_client.list_tools()
        assert [tool.name for tool in tools] == ["crash"]

    async def test_schema_lists_step_fields(self, mcp_client):
        tool = (await mcp_client.list_tools())[0]
        # required fields are enforced by the engine, not the transport
        assert tool.inputSchema.get("required", []) == []
        assert set(tool.inputSchema["properties"]) >= {
            "step_number",
            "estimated_total",
            "purpose",
            "context",
            "thought",
            "outcome",
            "next_action",
            "rationale",
        }
        assert "session_id" in tool.inputSchema["properties"]

    async def test_description_explains_the_tool(self, mcp_client):
        tool = (await mcp_client.list_tools())[0]
        assert "reasoning" in tool.description


# -----------------------------------------------------------------------
# crash
# -----------------------------------------------------------------------


class TestCrashTool:
    async def test_happy_path(self, mcp_client):
        data = _parse(await mcp_client.call_tool("crash", _step()))
        assert data == {
            "step_number": 1,
            "estimated_total": 3,
            "completed": False,
            "total_steps": 1,
            "next_action": "a",
        }

    async def test_structured_action_round_trip(self, mcp_client):
        action = {"tool": "grep", "action": "search", "expectedOutput": "matches"}
        data = _parse(await mcp_client.call_tool("crash", _step(next_action=action)))
        assert data["next_action"] == action

    async def test_whitespace_field_is_a_failed_result(self, mcp_client):
        data = _parse(await mcp_client.call_tool("crash", _step(context="   ")))
        assert data["status"] == "failed"
        assert "context" in data["error"]
        assert data["hint"] == "Check that all required fields are provided."

    async def test_out_of_bounds_confidence(self, mcp_client):
        data = _parse(await mcp_client.call_tool("crash", _step(confidence=1.5)))
        assert data["status"] == "failed"
        assert "out of bounds" in data["error"]

    async def test_missing_required_arguments_are_a_failed_result(self, mcp_client):
        result = await mcp_client.call_tool(
            "crash", {"step_number": 1, "estimated_total": 3, "purpose": "analysis"}
        )
        assert not result.is_error
        data = _parse(result)
        assert data["status"] == "failed"
        assert data["error"] == (
            "Missing or invalid required fields: "
            "context, thought, outcome, rationale, next_action"
        )
        assert data["hint"] == "Check that all required fields are provided."

    async def test_non_integer_step_numbers_are_not_coerced(self, mcp_client):
        data = _parse(
            await mcp_client.call_tool(
                "crash", _step(step_number=2.0, estimated_total="3")
            )
        )
        assert data["status"] == "failed"
        assert "step_number (must be positive integer >= 1)" in data["error"]
        assert "estimated_total (must be positive integer >= 1)" in data["error"]

    async def test_non_numeric_confidence_is_a_failed_result(self, mcp_client):
        data = _parse(await mcp_client.call_tool("crash", _step(confidence="high")))
        assert data["status"] == "failed"
        assert data["error"] == "Confidence must be a number, got str"

    async def test_object_action_with_kind_key_is_echoed_as_object(self, mcp_client):
        action = {"action": "run", "kind": "simple", "text": "other"}
        data = _parse(await mcp_client.call_tool("crash", _step(next_action=action)))
        assert data["next_action"] == {"action": "run"}

    async def test_strict_mode_rejection(self, mcp_client):
        from crashmcp.server import configure

        configure(CrashConfig().with_strict_mode(True))
        data = _parse(
            await mcp_client.call_tool("crash", _step(thought="Invalid thought"))
        )
        assert data["status"] == "failed"
        assert "strict mode" in data["error"]
        assert data["hint"].startswith("Strict mode is enabled.")

    async def test_branch_payload(self, mcp_client):
        await mcp_client.call_tool("crash", _step())
        data = _parse(
            await mcp_client.call_tool(
                "crash", _step(step_number=2, branch_from=1, branch_name="Alt")
            )
        )
        assert data["branch"]["name"] == "Alt"
        assert data["branch"]["from"] == 1
        assert data["branch"]["id"].startswith("branch-")

    async def test_reset_clears_history(self, mcp_client):
        from crashmcp.server import _get_engine
        from crashmcp.server import _reset_engine

        await mcp_client.call_tool("crash", _step())
        _reset_engine()
        assert _get_engine().history.steps == []
        data = _parse(await mcp_client.call_tool("crash", _step()))
        assert data["total_steps"] == 1

    async def test_records_latency(self, mcp_client):
        reset_latency_metrics()
        await mcp_client.call_tool("crash", _step())
        await mcp_client.call_tool("crash", _step(context=" "))
        metrics = latency_metrics_snapshot()["mcp.crash"]
        assert metrics["count"] == 2
        assert metrics["error_count"] == 1
        reset_latency_metrics()


class TestUnconfiguredServer:
    async def test_tool_errors_before_configure(self, mcp_client):
        from crashmcp.server import shutdown

        shutdown()
        with pytest.raises(Exception, match="not configured"):
            await mcp_client.call_tool("crash", _step())
