"""In-memory session registry with idle expiry.

Expiry is checked opportunistically: ``tick()`` runs a sweep only every
``cleanup_interval`` calls, ``sweep()`` runs one immediately.
``pending_expiry()`` previews what the next tick would remove.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from collections.abc import Iterator
from dataclasses import dataclass

from crashmcp.engine.workspace import Workspace
from crashmcp.models.schemas import CrashHistory

SESSION_CLEANUP_INTERVAL = 10


@dataclass
class SessionEntry:
    """A session's workspace and when it was last used (clock seconds)."""

    workspace: Workspace
    last_accessed: float

    @property
    def history(self) -> CrashHistory:
        return self.workspace.history


class SessionStore:
    """Sessions keyed by caller-supplied id."""

    def __init__(
        self,
        *,
        timeout_minutes: int,
        clock: Callable[[], float] | None = None,
        cleanup_interval: int = SESSION_CLEANUP_INTERVAL,
    ) -> None:
        if cleanup_interval < 1:
            raise ValueError("cleanup_interval must be >= 1")
        self._timeout_seconds = timeout_minutes * 60
        self._clock = clock or time.monotonic
        self._cleanup_interval = cleanup_interval
        self._calls_since_sweep = 0
        self._entries: dict[str, SessionEntry] = {}

    # -- read --

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def get(self, session_id: str) -> SessionEntry | None:
        return self._entries.get(session_id)

    def as_dict(self) -> dict[str, SessionEntry]:
        return dict(self._entries)

    def is_expired(self, entry: SessionEntry, now: float | None = None) -> bool:
        current = self._clock() if now is None else now
        return current - entry.last_accessed > self._timeout_seconds

    # -- write --

    def add(self, session_id: str, workspace: Workspace) -> SessionEntry:
        entry = SessionEntry(workspace=workspace, last_accessed=self._clock())
        self._entries[session_id] = entry
        return entry

    def touch(self, session_id: str) -> None:
        entry = self._entries.get(session_id)
        if entry is not None:
            entry.last_accessed = self._clock()

    def pending_expiry(self) -> list[str]:
        """Ids the next ``tick()`` would remove.  Changes nothing."""
        if self._calls_since_sweep + 1 < self._cleanup_interval:
            return []
        now = self._clock()
        return [
            session_id
            for session_id, entry in self._entries.items()
            if self.is_expired(entry, now)
        ]

    def tick(self, expired: list[str] | None = None) -> list[str]:
        """Count one call; sweep when the batch interval is reached.

        *expired* is a list previously returned by ``pending_expiry()``;
        when given, exactly those sessions are removed on a sweep.
        """
        self._calls_since_sweep += 1
        if self._calls_since_sweep < self._cleanup_interval:
            return []
        if expired is None:
            return self.sweep()
        self._calls_since_sweep = 0
        for session_id in expired:
            self._entries.pop(session_id, None)
        return list(expired)

    def sweep(self) -> list[str]:
        """Remove every idle session now and return their ids."""
        self._calls_since_sweep = 0
        now = self._clock()
        expired = [
            session_id
            for session_id, entry in self._entries.items()
            if self.is_expired(entry, now)
        ]
        for session_id in expired:
            del self._entries[session_id]
        return expired

    def reset_counter(self) -> None:
        self._calls_since_sweep = 0
