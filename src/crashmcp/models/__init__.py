"""Models domain: steps, branches, histories and tool responses."""

from crashmcp.models.schemas import Branch
from crashmcp.models.schemas import BranchRef
from crashmcp.models.schemas import BranchStatus
from crashmcp.models.schemas import CrashHistory
from crashmcp.models.schemas import CrashStep
from crashmcp.models.schemas import HistoryMetadata
from crashmcp.models.schemas import NextAction
from crashmcp.models.schemas import parse_next_action
from crashmcp.models.schemas import SimpleAction
from crashmcp.models.schemas import StepFailure
from crashmcp.models.schemas import StepResult
from crashmcp.models.schemas import StructuredAction
from crashmcp.models.schemas import utc_now_iso

__all__ = [
    # Steps
    "CrashStep",
    "NextAction",
    "SimpleAction",
    "StructuredAction",
    "parse_next_action",
    # Branches & histories
    "Branch",
    "BranchStatus",
    "CrashHistory",
    "HistoryMetadata",
    # Responses
    "BranchRef",
    "StepFailure",
    "StepResult",
    "utc_now_iso",
]
