"""Shared fixtures.

``FakeChannel`` stands in for a PtyChannel wherever a test needs to drive
the byte stream and the child's exit by hand instead of racing a real
process.
"""

from collections import deque
from typing import List

import pytest

from agentdeck.config import DeckConfig
from agentdeck.core.session_manager import SessionManager
from agentdeck.errors import ChannelIOError, SpawnError


class FakeChannel:
    """In-memory channel: tests push output and decide when the child exits."""

    def __init__(self, command=(), cwd=".", rows=24, cols=80):
        self.command = list(command)
        self.cwd = cwd
        self.size = (rows, cols)
        self.chunks = deque()
        self.written: List[bytes] = []
        self.resizes: List[tuple] = []
        self.fail_resize = False
        self.finished = False
        self.closed = False
        self.exit_code = None

    # test controls
    def push(self, data) -> None:
        self.chunks.append(data.encode() if isinstance(data, str) else data)

    def finish(self, code: int = 0) -> None:
        self.finished = True
        self.exit_code = code

    # channel surface
    def try_recv(self):
        return self.chunks.popleft() if self.chunks else None

    def is_alive(self) -> bool:
        return not self.finished

    def is_closed(self) -> bool:
        return self.finished and not self.chunks

    def write(self, data) -> None:
        if self.finished or self.closed:
            raise ChannelIOError("channel is closed")
        self.written.append(data.encode() if isinstance(data, str) else bytes(data))

    def resize(self, rows: int, cols: int) -> None:
        if self.fail_resize or self.closed:
            raise ChannelIOError("resize failed")
        self.size = (rows, cols)
        self.resizes.append((rows, cols))

    def get_winsize(self):
        return None if self.closed else self.size

    def close(self) -> None:
        self.closed = True
        self.finished = True


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def channels() -> List[FakeChannel]:
    """Every FakeChannel created by ``channel_factory``, in spawn order."""
    return []


@pytest.fixture
def channel_factory(channels):
    def factory(command, cwd, rows, cols):
        channel = FakeChannel(command, cwd, rows, cols)
        channels.append(channel)
        return channel

    return factory


@pytest.fixture
def failing_factory():
    def factory(command, cwd, rows, cols):
        raise SpawnError(f"failed to start {command[0]!r}: no such file")

    return factory


@pytest.fixture
def make_channel():
    return FakeChannel


@pytest.fixture
def config() -> DeckConfig:
    return DeckConfig(command=["assistant"], dangerous_mode=False, default_rows=5, default_cols=20)


@pytest.fixture
def manager(config, channel_factory) -> SessionManager:
    mgr = SessionManager(config=config, channel_factory=channel_factory)
    yield mgr
    mgr.shutdown()
