"""Centralized custom exception hierarchy for the coprocess framework."""
from __future__ import annotations

class CoprocError(Exception):
    """Base class for all coprocs errors."""

class ConfigError(CoprocError):
    pass

class SpawnError(CoprocError):  # worker process could not be created / handshake failed
    pass

class ChannelError(CoprocError):
    """Read or write on a worker channel failed (peer closed, broken pipe)."""

class ChannelTimeout(ChannelError):
    pass

class ProtocolError(CoprocError):
    """Worker answered with an ``ERROR ...`` line."""

class ResourceExhausted(ProtocolError):
    pass

class ProcessError(CoprocError):  # unexpected exit / could not reap
    pass

class LifecycleError(CoprocError):
    """Operation not valid for the current worker / pool state."""
