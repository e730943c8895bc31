"""Worker-side logic. Each class here runs inside a child process started by
``coprocs.core.worker_entry`` and is driven line by line through ``serve``."""

from .kv_store import KVStore
from .lease_table import LeaseTable
from .loop import serve
from .processors import Echo, Processor
from .stages import Filter, Transform, generate_lines
from .task_worker import TaskWorker

__all__ = ["KVStore", "LeaseTable", "serve", "Echo", "Processor", "Filter", "Transform", "generate_lines", "TaskWorker"]
