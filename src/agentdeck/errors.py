"""Error taxonomy for the session core.

Parser anomalies are never raised (the emulator recovers internally) and
an unknown session id is modelled as an empty result, so only transport
failures show up here.
"""

from __future__ import annotations


class AgentDeckError(Exception):
    """Base class for errors raised by agentdeck."""


class SpawnError(AgentDeckError):
    """The pseudo-terminal could not be allocated or the child not started.

    Fatal to the one ``open()`` call that triggered it; the session
    registry is left untouched.
    """


class ChannelIOError(AgentDeckError):
    """Write or resize on a channel whose child has gone away.

    Surfaced per call. It does not remove the session; the exit is picked
    up by the next ``tick()``.
    """


class ConfigError(AgentDeckError):
    """The config file exists but cannot be read or parsed."""
