"""Driver-side clients for the request/response workers.

Each client owns exactly one worker process and one channel. Calls are
serialised with a lock, so one command is outstanding at a time; the worker
answers every command with exactly one line (except the lease manager's
``QUIT``).

``request`` returns raw response lines, ``ERROR ...`` included. The typed
helpers (``set``, ``acquire`` ...) turn ``ERROR`` lines into ``ProtocolError``
/ ``ResourceExhausted``.
"""
from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from typing import List, Optional

from .core.errors import LifecycleError, ProtocolError, ResourceExhausted
from .core.logging import get_logger
from .core.process_manager import ProcessManager, WorkerHandle, WorkerState
from .core.worker_protocol import RESOURCE_LIMIT, KVVerb, LeaseVerb, split_response

logger = get_logger("coprocs.services")

_STATUS_RE = re.compile(r"^INFO Active: (\d+), Available: (-?\d+)$")


class LineService:
    kind = ""

    def __init__(self, manager: Optional[ProcessManager] = None, timeout: Optional[float] = None):
        self._manager = manager or ProcessManager()
        self.timeout = timeout
        self._lock = threading.Lock()
        self._worker: Optional[WorkerHandle] = None

    def _args(self) -> List[str]:
        return []

    def start(self):
        if self._worker is not None:
            raise LifecycleError(f"{self.kind} service already started")
        cmd = self._manager.build_command(self.kind) + self._args()
        self._worker = self._manager.spawn_worker(cmd, worker_id=f"{self.kind}-{id(self):x}")
        return self

    def _require(self) -> WorkerHandle:
        if self._worker is None:
            raise LifecycleError(f"{self.kind} service not started")
        return self._worker

    def request(self, line: str, timeout: Optional[float] = None) -> str:
        """Send one command line, return its response line.

        After a ``ChannelTimeout`` the worker is left Busy and later requests
        fail with ``LifecycleError``; ``close()`` it.
        """
        with self._lock:
            wh = self._require()
            return self._manager.request(wh, line, timeout=timeout if timeout is not None else self.timeout)

    def _quit(self, verb: str, expect: Optional[str]) -> Optional[str]:
        with self._lock:
            wh = self._require()
            if not wh.alive:
                return None
            wh.transition(WorkerState.TERMINATING)
            self._manager.send(wh, verb)
            reply = self._manager.receive(wh, timeout=self.timeout) if expect is not None else None
            self._manager.terminate(wh)
            self._manager.release(wh)
        if expect is not None and reply != expect:
            raise ProtocolError(f"unexpected reply to {verb}: {reply!r}")
        return reply

    def close(self):
        """Terminate the worker if still running and release its channels. Idempotent."""
        with self._lock:
            if self._worker is None:
                return
            self._manager.terminate(self._worker)
            self._manager.release(self._worker)

    @property
    def state(self) -> Optional[WorkerState]:
        return self._worker.state if self._worker else None

    @property
    def worker(self) -> Optional[WorkerHandle]:
        return self._worker

    def __enter__(self):
        if self._worker is None:
            self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @staticmethod
    def _raise_for_error(reply: str):
        status, rest = split_response(reply)
        if status == "ERROR":
            if rest == RESOURCE_LIMIT:
                raise ResourceExhausted(rest)
            raise ProtocolError(rest or reply)


class KVClient(LineService):
    kind = "kv"

    @staticmethod
    def _check_key(key: str):
        if not key or any(c.isspace() for c in key):
            raise ValueError(f"invalid key {key!r}: must be non-empty without whitespace")

    def set(self, key: str, value: str):
        self._check_key(key)
        value = str(value)
        if not value.strip() or "\n" in value:
            raise ValueError("value must be a non-empty single line")
        reply = self.request(f"{KVVerb.SET.value} {key} {value}")
        self._raise_for_error(reply)
        if reply != "OK":
            raise ProtocolError(f"unexpected reply to SET: {reply!r}")

    def get(self, key: str) -> Optional[str]:
        self._check_key(key)
        reply = self.request(f"{KVVerb.GET.value} {key}")
        self._raise_for_error(reply)
        if reply == "NOT_FOUND":
            return None
        status, rest = split_response(reply)
        if status != "VALUE":
            raise ProtocolError(f"unexpected reply to GET: {reply!r}")
        return rest

    def list_keys(self) -> List[str]:
        reply = self.request(KVVerb.LIST.value)
        self._raise_for_error(reply)
        status, rest = split_response(reply)
        if status != "KEYS":
            raise ProtocolError(f"unexpected reply to LIST: {reply!r}")
        return rest.split()

    def quit(self) -> Optional[str]:
        return self._quit(KVVerb.QUIT.value, expect="BYE")


@dataclass
class LeaseStatus:
    active: int
    available: int

    @property
    def capacity(self) -> int:
        return self.active + self.available


class ResourceManagerClient(LineService):
    kind = "lease"

    def __init__(self, max_leases: int = 3, manager: Optional[ProcessManager] = None, timeout: Optional[float] = None):
        if max_leases < 0:
            raise ValueError("max_leases must be >= 0")
        super().__init__(manager=manager, timeout=timeout)
        self.max_leases = max_leases

    def _args(self) -> List[str]:
        return ["--max", str(self.max_leases)]

    def acquire(self) -> str:
        reply = self.request(LeaseVerb.ACQUIRE.value)
        self._raise_for_error(reply)
        status, rest = split_response(reply)
        if status != "GRANTED" or not rest:
            raise ProtocolError(f"unexpected reply to ACQUIRE: {reply!r}")
        return rest

    def try_acquire(self) -> Optional[str]:
        try:
            return self.acquire()
        except ResourceExhausted:
            return None

    def release(self, lease_id: str):
        if not lease_id or any(c.isspace() for c in lease_id):
            raise ValueError(f"invalid lease id {lease_id!r}")
        reply = self.request(f"{LeaseVerb.RELEASE.value} {lease_id}")
        self._raise_for_error(reply)
        if reply != f"OK Released {lease_id}":
            raise ProtocolError(f"unexpected reply to RELEASE: {reply!r}")

    def status(self) -> LeaseStatus:
        reply = self.request(LeaseVerb.STATUS.value)
        self._raise_for_error(reply)
        m = _STATUS_RE.match(reply)
        if not m:
            raise ProtocolError(f"unexpected reply to STATUS: {reply!r}")
        return LeaseStatus(active=int(m.group(1)), available=int(m.group(2)))

    def quit(self) -> None:
        # the lease manager stops without answering QUIT
        self._quit(LeaseVerb.QUIT.value, expect=None)


__all__ = ["LineService", "KVClient", "ResourceManagerClient", "LeaseStatus"]
