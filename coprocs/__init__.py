"""
coprocs

Supervise long-lived worker subprocesses over newline-delimited text
channels (their stdin/stdout): a round-robin worker pool, a relayed
multi-stage pipeline, a key-value request/response service and a bounded
resource lease manager.
"""

from .core.errors import (
    CoprocError,
    ConfigError,
    SpawnError,
    ChannelError,
    ChannelTimeout,
    ProtocolError,
    ResourceExhausted,
    ProcessError,
    LifecycleError,
)
from .core.process_manager import ProcessManager, WorkerHandle, WorkerState
from .core.worker_protocol import SENTINEL, Task
from .pool import WorkerPool, TaskResult
from .pipeline import Pipeline, StageSpec
from .services import KVClient, ResourceManagerClient, LeaseStatus

__all__ = [
    "CoprocError",
    "ConfigError",
    "SpawnError",
    "ChannelError",
    "ChannelTimeout",
    "ProtocolError",
    "ResourceExhausted",
    "ProcessError",
    "LifecycleError",
    "ProcessManager",
    "WorkerHandle",
    "WorkerState",
    "SENTINEL",
    "Task",
    "WorkerPool",
    "TaskResult",
    "Pipeline",
    "StageSpec",
    "KVClient",
    "ResourceManagerClient",
    "LeaseStatus",
]
