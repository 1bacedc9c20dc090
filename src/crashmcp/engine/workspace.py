"""A history together with its derived indices and branch registry.

The engine works on exactly one ``Workspace`` at a time: the default one,
or the workspace of the session named by the current step.  Indices are
scoped to their workspace, so switching sessions never leaks step numbers
or tools from one history into another.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from dataclasses import field

from crashmcp.engine.branching import BranchRegistry
from crashmcp.models.schemas import Branch
from crashmcp.models.schemas import CrashHistory
from crashmcp.models.schemas import CrashStep
from crashmcp.models.schemas import utc_now_iso


@dataclass(frozen=True)
class TrimResult:
    """What a trim pass removed."""

    removed_steps: list[int] = field(default_factory=list)
    removed_branches: list[Branch] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.removed_steps)


class Workspace:
    """One reasoning history with its lookup structures."""

    def __init__(self, session_id: str | None = None) -> None:
        self.session_id = session_id
        self.history = CrashHistory(session_id=session_id)
        self.branches = BranchRegistry()
        self.step_index: dict[int, CrashStep] = {}
        self.step_numbers: set[int] = set()
        # dict keys as an insertion-ordered set
        self.tools_used: dict[str, None] = {}
        self.started_at = time.perf_counter()

    # -- read --

    def available_steps(self) -> list[int]:
        return sorted(self.step_numbers)

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started_at) * 1000)

    # -- write --

    def add_tools(self, tools: list[str]) -> None:
        for tool in tools:
            self.tools_used.setdefault(tool, None)
        self.history.metadata.tools_used = list(self.tools_used)

    def append(self, step: CrashStep) -> None:
        """Append *step* and index it.  A repeated number re-points the index."""
        self.history.steps.append(step)
        self.step_index[step.step_number] = step
        self.step_numbers.add(step.step_number)
        self.history.updated_at = utc_now_iso()

    def sync_branches(self) -> None:
        """Mirror the branch registry onto ``history.branches``."""
        self.history.branches = list(self.branches)

    def trim(self, max_size: int) -> TrimResult:
        """Keep the newest *max_size* steps and drop what hung off the rest."""
        steps = self.history.steps
        if len(steps) <= max_size:
            return TrimResult()

        excess = len(steps) - max_size
        dropped = steps[:excess]
        self.history.steps = steps[excess:]

        removed: list[int] = []
        for old in dropped:
            # a later step reusing the number keeps its index entry
            if self.step_index.get(old.step_number) is old:
                del self.step_index[old.step_number]
                self.step_numbers.discard(old.step_number)
            removed.append(old.step_number)

        removed_branches = self.branches.drop_from_steps(set(removed))
        self.sync_branches()
        return TrimResult(removed_steps=removed, removed_branches=removed_branches)

    def reset(self) -> None:
        """Start over with an empty history; the session id is kept."""
        self.history = CrashHistory(session_id=self.session_id)
        self.branches.clear()
        self.step_index.clear()
        self.step_numbers.clear()
        self.tools_used.clear()
        self.started_at = time.perf_counter()
