"""Root conftest: suite markers and engine fixtures shared by all tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from dotenv import load_dotenv

from crashmcp.config import CrashConfig
from crashmcp.engine import RecordingEventSink
from crashmcp.engine import StepEngine
from crashmcp.formatting import StepFormatter

# Load repository-root .env for test opt-ins (existing env vars stay authoritative).
load_dotenv(dotenv_path=Path(__file__).resolve().parents[1] / ".env", override=False)


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Attach suite markers from test path.

    - `tests/unit/*` -> `unit`
    - `tests/integration/*` -> `integration`
    """
    root = Path(__file__).resolve().parents[1]
    for item in items:
        item_path = Path(str(item.fspath)).resolve()
        try:
            rel = item_path.relative_to(root)
        except ValueError:
            continue

        parts = rel.parts
        if len(parts) < 2 or parts[0] != "tests":
            continue
        if parts[1] == "unit":
            item.add_marker(pytest.mark.unit)
        elif parts[1] == "integration":
            item.add_marker(pytest.mark.integration)


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _make_step(step_number: int = 1, **overrides) -> dict:
    raw = {
        "step_number": step_number,
        "estimated_total": 3,
        "purpose": "analysis",
        "context": "Starting from the bug report",
        "thought": "OK, I will read the failing test first",
        "outcome": "Know which assertion fails",
        "next_action": "read the test file",
        "rationale": "To see the failing assertion",
    }
    raw.update(overrides)
    return raw


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def events() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture()
def engine(events, clock) -> StepEngine:
    """Default-config engine with plain output and recorded events."""
    return StepEngine(
        CrashConfig(),
        formatter=StepFormatter(color=False),
        events=events,
        clock=clock,
    )


@pytest.fixture()
def make_step():
    """Factory for valid raw steps: ``make_step(n, **overrides)``."""
    return _make_step
