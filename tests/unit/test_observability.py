"""Unit tests for in-process latency observability helpers."""

from __future__ import annotations

import pytest

from crashmcp.observability import LatencyRecorder
from crashmcp.observability import latency_metrics_snapshot
from crashmcp.observability import measure_latency
from crashmcp.observability import record_latency
from crashmcp.observability import reset_latency_metrics


class TestObservabilityLatency:
    def setup_method(self):
        reset_latency_metrics()

    def teardown_method(self):
        reset_latency_metrics()

    def test_records_latency_aggregates(self):
        record_latency(operation="mcp.crash", duration_ms=10.0, ok=True)
        record_latency(operation="mcp.crash", duration_ms=30.0, ok=False)

        metrics = latency_metrics_snapshot()["mcp.crash"]
        assert metrics["count"] == 2
        assert metrics["error_count"] == 1
        assert metrics["total_ms"] == 40.0
        assert metrics["avg_ms"] == 20.0
        assert metrics["min_ms"] == 10.0
        assert metrics["max_ms"] == 30.0
        assert metrics["last_ms"] == 30.0

    def test_negative_durations_are_clamped(self):
        record_latency(operation="mcp.crash", duration_ms=-5.0)
        assert latency_metrics_snapshot()["mcp.crash"]["min_ms"] == 0.0

    def test_percentiles(self):
        for ms in range(1, 101):
            record_latency(operation="mcp.crash", duration_ms=float(ms))
        metrics = latency_metrics_snapshot()["mcp.crash"]
        assert metrics["p50_ms"] == 50.0
        assert metrics["p95_ms"] == 95.0

    def test_measure_marks_failures(self):
        with measure_latency("mcp.crash") as sample:
            sample.ok = False
        with pytest.raises(RuntimeError):
            with measure_latency("mcp.crash"):
                raise RuntimeError("boom")
        with measure_latency("mcp.crash"):
            pass

        metrics = latency_metrics_snapshot()["mcp.crash"]
        assert metrics["count"] == 3
        assert metrics["error_count"] == 2

    def test_reset_clears_all_metrics(self):
        record_latency(operation="mcp.crash", duration_ms=12.0, ok=True)
        assert "mcp.crash" in latency_metrics_snapshot()
        reset_latency_metrics()
        assert latency_metrics_snapshot() == {}

    def test_recorders_are_independent(self):
        recorder = LatencyRecorder()
        recorder.record(operation="local", duration_ms=1.0, ok=True)
        assert "local" in recorder.snapshot()
        assert "local" not in latency_metrics_snapshot()
