"""
Process-wide tab bookkeeping.

One entry per tab id, carrying both the session and the shadow-tab flags so
check-and-act on a tab never has to consult two separate collections.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class TabEntry:
    """Bookkeeping for a single tab."""

    tab_id: str
    """DevTools target id of the tab."""

    session_id: str | None = None
    """Flattened session id while a debugging session is attached."""

    shadow: bool = False
    """Whether the engine created and owns this tab."""

    attached_at: float | None = None
    """Unix timestamp of the last successful attach."""

    created_at: float = field(default_factory=time.time)

    @property
    def has_session(self) -> bool:
        return self.session_id is not None

    @property
    def is_empty(self) -> bool:
        return self.session_id is None and not self.shadow


class TabRegistry:
    """
    Map of tab id to TabEntry.

    Entries that carry neither a session nor the shadow flag are dropped
    eagerly, so membership always means "the engine holds something here".
    Only the session and tab managers mutate the registry.
    """

    def __init__(self) -> None:
        self._entries: dict[str, TabEntry] = {}

    def get(self, tab_id: str) -> TabEntry | None:
        return self._entries.get(tab_id)

    def session_id(self, tab_id: str) -> str | None:
        entry = self._entries.get(tab_id)
        return entry.session_id if entry else None

    def has_session(self, tab_id: str) -> bool:
        return self.session_id(tab_id) is not None

    def is_shadow(self, tab_id: str) -> bool:
        entry = self._entries.get(tab_id)
        return bool(entry and entry.shadow)

    def set_session(self, tab_id: str, session_id: str) -> TabEntry:
        entry = self._entries.setdefault(tab_id, TabEntry(tab_id=tab_id))
        entry.session_id = session_id
        entry.attached_at = time.time()
        return entry

    def clear_session(self, tab_id: str) -> None:
        entry = self._entries.get(tab_id)
        if entry is None:
            return
        entry.session_id = None
        entry.attached_at = None
        self._prune(entry)

    def mark_shadow(self, tab_id: str) -> TabEntry:
        entry = self._entries.setdefault(tab_id, TabEntry(tab_id=tab_id))
        entry.shadow = True
        return entry

    def unmark_shadow(self, tab_id: str) -> None:
        entry = self._entries.get(tab_id)
        if entry is None:
            return
        entry.shadow = False
        self._prune(entry)

    def remove(self, tab_id: str) -> TabEntry | None:
        """Forget a tab entirely (the tab no longer exists)."""
        return self._entries.pop(tab_id, None)

    def tab_for_session(self, session_id: str) -> str | None:
        for entry in self._entries.values():
            if entry.session_id == session_id:
                return entry.tab_id
        return None

    def attached_tabs(self) -> list[str]:
        return [e.tab_id for e in self._entries.values() if e.has_session]

    def shadow_tabs(self) -> list[str]:
        return [e.tab_id for e in self._entries.values() if e.shadow]

    def __contains__(self, tab_id: object) -> bool:
        return tab_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _prune(self, entry: TabEntry) -> None:
        if entry.is_empty:
            self._entries.pop(entry.tab_id, None)
