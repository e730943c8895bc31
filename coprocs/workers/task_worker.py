"""Pool worker: runs one task per line until the ``quit`` sentinel."""
from __future__ import annotations

import time
from importlib import import_module
from typing import Callable, Optional

from ..core.logging import get_logger
from ..core.worker_protocol import DONE, READY, SENTINEL, error

logger = get_logger("coprocs.worker.task")

TaskHandler = Callable[[str], str]


def default_handler(payload: str) -> str:
    return f"processed {payload}"


def load_handler(entry: Optional[str]) -> TaskHandler:
    """Resolve ``module:function`` into a callable (default handler when empty)."""
    if not entry:
        return default_handler
    if ":" not in entry:
        raise ValueError("handler must be 'module:function'")
    module_name, attr = entry.split(":", 1)
    fn = getattr(import_module(module_name), attr)
    if not callable(fn):
        raise TypeError(f"{entry} is not callable")
    return fn


def greeting(worker_id: str) -> str:
    return f"{READY} {worker_id}"


class TaskWorker:
    def __init__(self, worker_id: str, handler: Optional[TaskHandler] = None, delay_s: float = 0.0):
        self.worker_id = worker_id
        self.handler = handler or default_handler
        self.delay_s = delay_s
        self.finished = False
        self.processed = 0

    def handle(self, line: str) -> Optional[str]:
        if line.strip() == SENTINEL:
            logger.info(f"Worker {self.worker_id} stopping after {self.processed} task(s)")
            self.finished = True
            return None
        logger.info(f"Worker {self.worker_id} processing: {line}")
        if self.delay_s > 0:
            time.sleep(self.delay_s)
        try:
            out = self.handler(line)
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Worker {self.worker_id} task failed: {e}")
            return error(str(e).replace("\n", " ") or type(e).__name__)
        finally:
            self.processed += 1
        out = "" if out is None else str(out).replace("\n", " ")
        return f"{DONE} {out}" if out else DONE


__all__ = ["TaskWorker", "default_handler", "load_handler", "greeting"]
