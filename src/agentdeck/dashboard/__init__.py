"""Textual dashboard hosting agentdeck sessions in two panes."""

from .pane_cache import PaneSlot, PaneStateCache

__all__ = ["PaneSlot", "PaneStateCache"]
