"""Engine domain: step validation, branching, sessions and processing."""

from crashmcp.engine.branching import BranchDepthCache
from crashmcp.engine.branching import BranchPlan
from crashmcp.engine.branching import BranchRegistry
from crashmcp.engine.engine import EXPORT_FORMATS
from crashmcp.engine.engine import StepEngine
from crashmcp.engine.errors import BranchDepthError
from crashmcp.engine.errors import BranchingError
from crashmcp.engine.errors import BranchSourceError
from crashmcp.engine.errors import CircularDependencyError
from crashmcp.engine.errors import ConfidenceBoundsError
from crashmcp.engine.errors import InvalidFieldError
from crashmcp.engine.errors import MissingFieldsError
from crashmcp.engine.errors import RevisionError
from crashmcp.engine.errors import StepError
from crashmcp.engine.errors import StrictModeError
from crashmcp.engine.events import EngineEvent
from crashmcp.engine.events import EngineEventType
from crashmcp.engine.events import EventSink
from crashmcp.engine.events import LoggingEventSink
from crashmcp.engine.events import RecordingEventSink
from crashmcp.engine.sessions import SESSION_CLEANUP_INTERVAL
from crashmcp.engine.sessions import SessionEntry
from crashmcp.engine.sessions import SessionStore
from crashmcp.engine.workspace import TrimResult
from crashmcp.engine.workspace import Workspace

__all__ = [
    "BranchDepthCache",
    "BranchDepthError",
    "BranchPlan",
    "BranchRegistry",
    "BranchSourceError",
    "BranchingError",
    "CircularDependencyError",
    "ConfidenceBoundsError",
    "EXPORT_FORMATS",
    "EngineEvent",
    "EngineEventType",
    "EventSink",
    "InvalidFieldError",
    "LoggingEventSink",
    "MissingFieldsError",
    "RecordingEventSink",
    "RevisionError",
    "SESSION_CLEANUP_INTERVAL",
    "SessionEntry",
    "SessionStore",
    "StepEngine",
    "StepError",
    "StrictModeError",
    "TrimResult",
    "Workspace",
]
