"""Lease accounting against a fixed capacity (ACQUIRE/RELEASE/STATUS/QUIT).

Lease ids are ``res<k>`` with ``k`` taken from a counter that only moves
forward, so an id is never handed out twice in the lifetime of the table.
"""
from __future__ import annotations

from typing import Callable, Dict, List, Optional

from ..core.logging import get_logger
from ..core.worker_protocol import (
    Command,
    INVALID_RESOURCE,
    LeaseVerb,
    RESOURCE_LIMIT,
    UNKNOWN_COMMAND,
    error,
    parse_command,
)

logger = get_logger("coprocs.worker.lease")

ID_PREFIX = "res"


class LeaseTable:
    def __init__(self, max_leases: int):
        if max_leases < 0:
            raise ValueError("max_leases must be >= 0")
        self.max_leases = max_leases
        self._active: Dict[str, bool] = {}
        self._counter = 0
        self.finished = False
        self._handlers: Dict[LeaseVerb, Callable[[Command], Optional[str]]] = {
            LeaseVerb.ACQUIRE: self._acquire,
            LeaseVerb.RELEASE: self._release,
            LeaseVerb.STATUS: self._status,
            LeaseVerb.QUIT: self._quit,
        }

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def available(self) -> int:
        return self.max_leases - self.active_count

    def active_ids(self) -> List[str]:
        return list(self._active)

    def acquire(self) -> Optional[str]:
        if self.active_count >= self.max_leases:
            return None
        self._counter += 1
        lease_id = f"{ID_PREFIX}{self._counter}"
        self._active[lease_id] = True
        return lease_id

    def release(self, lease_id: str) -> bool:
        return self._active.pop(lease_id, None) is not None

    def handle(self, line: str) -> Optional[str]:
        cmd = parse_command(line, LeaseVerb)
        fn = self._handlers.get(cmd.verb)  # type: ignore[arg-type]
        if fn is None:
            return error(UNKNOWN_COMMAND)
        return fn(cmd)

    def _acquire(self, _cmd: Command) -> str:
        lease_id = self.acquire()
        if lease_id is None:
            return error(RESOURCE_LIMIT)
        logger.debug(f"granted {lease_id} active={self.active_count}/{self.max_leases}")
        return f"GRANTED {lease_id}"

    def _release(self, cmd: Command) -> str:
        if not self.release(cmd.args):
            return error(INVALID_RESOURCE)
        logger.debug(f"released {cmd.args} active={self.active_count}/{self.max_leases}")
        return f"OK Released {cmd.args}"

    def _status(self, _cmd: Command) -> str:
        return f"INFO Active: {self.active_count}, Available: {self.available}"

    def _quit(self, _cmd: Command) -> None:
        if self._active:
            logger.info(f"shutting down with {self.active_count} lease(s) outstanding: {' '.join(self._active)}")
        self.finished = True
        return None


__all__ = ["LeaseTable", "ID_PREFIX"]
