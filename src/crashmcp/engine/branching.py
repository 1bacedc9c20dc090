"""Branch registry and branch-depth accounting.

Depth 1 is a fork from the main line; a fork from a step that belongs to
a branch of depth *k* has depth *k + 1*.  Depths are memoized per step
number in ``BranchDepthCache``.  The cache must be invalidated at every
structural mutation point:

* a new branch is registered (``BranchRegistry.commit``),
* the history is trimmed (``BranchRegistry.drop_from_steps``),
* the history is cleared (``BranchRegistry.clear``),
* the engine switches to another session's workspace
  (``StepEngine._activate``).

A missed invalidation silently returns stale depths.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from dataclasses import dataclass

from crashmcp.engine.errors import BranchDepthError
from crashmcp.engine.errors import BranchSourceError
from crashmcp.models.schemas import Branch
from crashmcp.models.schemas import CrashStep


class BranchDepthCache:
    """Memoized ``step number -> depth of a branch forked from it``."""

    def __init__(self) -> None:
        self._depths: dict[int, int] = {}

    def get(self, step_number: int) -> int | None:
        return self._depths.get(step_number)

    def put(self, step_number: int, depth: int) -> None:
        self._depths[step_number] = depth

    def invalidate(self) -> None:
        self._depths.clear()

    def __len__(self) -> int:
        return len(self._depths)

    def __contains__(self, step_number: object) -> bool:
        return step_number in self._depths


@dataclass(frozen=True)
class BranchPlan:
    """Resolved branch identity for one step, computed before any mutation."""

    branch_id: str
    name: str
    from_step: int
    depth: int
    is_new: bool


def _generate_branch_id() -> str:
    return f"branch-{uuid.uuid4().hex[:12]}"


class BranchRegistry:
    """Branches of one history, keyed by id, in creation order."""

    def __init__(self) -> None:
        self._branches: dict[str, Branch] = {}
        self.depth_cache = BranchDepthCache()

    # -- read --

    def __contains__(self, branch_id: object) -> bool:
        return branch_id in self._branches

    def __len__(self) -> int:
        return len(self._branches)

    def __iter__(self) -> Iterator[Branch]:
        return iter(self._branches.values())

    def get(self, branch_id: str) -> Branch | None:
        return self._branches.get(branch_id)

    def as_dict(self) -> dict[str, Branch]:
        return dict(self._branches)

    def branch_containing(self, step_number: int) -> Branch | None:
        """Return the first registered branch holding *step_number*."""
        for branch in self._branches.values():
            if any(s.step_number == step_number for s in branch.steps):
                return branch
        return None

    def depth_from(self, step_number: int) -> int:
        """Depth a new branch forked from *step_number* would have."""
        cached = self.depth_cache.get(step_number)
        if cached is not None:
            return cached

        parent = self.branch_containing(step_number)
        depth = 1 if parent is None else parent.depth + 1
        self.depth_cache.put(step_number, depth)
        return depth

    # -- plan / commit --

    def plan(
        self,
        step: CrashStep,
        *,
        known_steps: set[int],
        max_depth: int,
    ) -> BranchPlan:
        """Resolve the branch *step* joins or creates, without mutating.

        Raises ``BranchSourceError`` when ``branch_from`` is unknown and
        ``BranchDepthError`` when a new branch would nest too deeply.
        """
        assert step.branch_from is not None
        from_step = step.branch_from
        if from_step not in known_steps:
            raise BranchSourceError(from_step, sorted(known_steps))

        branch_id = step.branch_id or _generate_branch_id()
        existing = self._branches.get(branch_id)
        if existing is not None:
            return BranchPlan(
                branch_id=branch_id,
                name=step.branch_name or existing.name,
                from_step=existing.from_step,
                depth=existing.depth,
                is_new=False,
            )

        depth = self.depth_from(from_step)
        if depth > max_depth:
            raise BranchDepthError(depth, max_depth)

        return BranchPlan(
            branch_id=branch_id,
            name=step.branch_name or f"Alternative {len(self._branches) + 1}",
            from_step=from_step,
            depth=depth,
            is_new=True,
        )

    def commit(self, plan: BranchPlan, step: CrashStep) -> Branch:
        """Register the planned branch if new and append *step* to it."""
        branch = self._branches.get(plan.branch_id)
        if branch is None:
            branch = Branch(
                id=plan.branch_id,
                name=plan.name,
                from_step=plan.from_step,
                depth=plan.depth,
            )
            self._branches[plan.branch_id] = branch
            self.depth_cache.invalidate()

        step.branch_id = plan.branch_id
        if step.branch_name is None:
            step.branch_name = branch.name
        branch.steps.append(step)
        return branch

    # -- structural maintenance --

    def drop_from_steps(self, removed: set[int]) -> list[Branch]:
        """Delete branches forking from any step number in *removed*."""
        dropped = [b for b in self._branches.values() if b.from_step in removed]
        for branch in dropped:
            del self._branches[branch.id]
        self.depth_cache.invalidate()
        return dropped

    def clear(self) -> None:
        self._branches.clear()
        self.depth_cache.invalidate()
