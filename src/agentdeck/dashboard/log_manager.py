from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Deque, Dict, List

CATEGORIES = ("events", "errors", "debug", "output", "troubleshooting")


@dataclass
class LogManager:
    """Line-buffered log store by category.

    Categories: events, errors, debug, output, troubleshooting. Each keeps
    the newest ``max_lines`` lines; older lines fall off the front.
    """

    max_lines: int = 2000
    timestamps: bool = True
    buffers: Dict[str, Deque[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in CATEGORIES:
            self.buffers[name] = deque(maxlen=self.max_lines)

    def add(self, category: str, message: str) -> None:
        buf = self.buffers.setdefault(category, deque(maxlen=self.max_lines))
        prefix = f"{datetime.now():%H:%M:%S} " if self.timestamps else ""
        for line in message.splitlines() or [message]:
            buf.append(prefix + line)

    def logger(self, category: str) -> Callable[[str], None]:
        """Callback that appends to ``category``; handed to the core as debug_logger."""
        return lambda message: self.add(category, message)

    def lines(self, category: str, limit: int = 0) -> List[str]:
        buf = self.buffers.get(category)
        if not buf:
            return []
        items = list(buf)
        return items[-limit:] if limit > 0 else items

    def clear(self, category: str) -> None:
        buf = self.buffers.get(category)
        if buf is not None:
            buf.clear()

    def text(self, category: str) -> str:
        return "\n".join(self.lines(category))
