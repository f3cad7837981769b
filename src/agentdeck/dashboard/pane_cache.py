"""Per-pane snapshot cache, refreshed once per frame.

Rendering runs off this cache instead of the manager so a pane is redrawn
only when something it shows actually changed.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..core.managed_session import SessionState
from ..core.session_manager import SessionManager


class PaneSlot(enum.IntEnum):
    PRIMARY = 0
    SECONDARY = 1


RenderKey = Tuple[Optional[str], int, bool, int]


@dataclass
class PaneEntry:
    session_id: Optional[str] = None
    state: Optional[SessionState] = None
    rendered_key: Optional[RenderKey] = None


@dataclass
class PaneStateCache:
    """Fixed mapping from pane slot to an optional session id."""

    panes: Dict[PaneSlot, PaneEntry] = field(
        default_factory=lambda: {slot: PaneEntry() for slot in PaneSlot}
    )

    def assign(self, slot: PaneSlot, session_id: Optional[str]) -> None:
        entry = self.panes[slot]
        if entry.session_id != session_id:
            entry.session_id = session_id
            entry.state = None
            entry.rendered_key = None

    def release(self, slot: PaneSlot) -> Optional[str]:
        """Empty a pane, returning the session it was showing."""
        previous = self.panes[slot].session_id
        self.assign(slot, None)
        return previous

    def session_id(self, slot: PaneSlot) -> Optional[str]:
        return self.panes[slot].session_id

    def state(self, slot: PaneSlot) -> Optional[SessionState]:
        return self.panes[slot].state

    def slot_of(self, session_id: str) -> Optional[PaneSlot]:
        for slot, entry in self.panes.items():
            if entry.session_id == session_id:
                return slot
        return None

    def free_slot(self) -> Optional[PaneSlot]:
        for slot in PaneSlot:
            if self.panes[slot].session_id is None:
                return slot
        return None

    def refresh(self, manager: SessionManager) -> List[PaneSlot]:
        """Pull the latest state for each assigned pane.

        A pane whose session has been evicted is emptied. Returns the
        slots that now need a redraw.
        """
        dirty: List[PaneSlot] = []
        for slot, entry in self.panes.items():
            if entry.session_id is not None:
                entry.state = manager.get_session_state(entry.session_id)
                if entry.state is None:
                    entry.session_id = None
            if self.needs_render(slot):
                dirty.append(slot)
        return dirty

    def render_key(self, slot: PaneSlot) -> RenderKey:
        entry = self.panes[slot]
        state = entry.state
        if state is None:
            return (entry.session_id, -1, False, 0)
        return (state.session_id, state.generation, state.ended, state.scroll_offset)

    def needs_render(self, slot: PaneSlot) -> bool:
        return self.panes[slot].rendered_key != self.render_key(slot)

    def mark_rendered(self, slot: PaneSlot) -> None:
        self.panes[slot].rendered_key = self.render_key(slot)

    def invalidate(self, slot: PaneSlot) -> None:
        """Force a redraw on the next refresh (focus moved, for example)."""
        self.panes[slot].rendered_key = None
