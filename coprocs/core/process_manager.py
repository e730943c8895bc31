"""Process manager for out-of-process line workers.

Small driver-facing surface: ``spawn_worker``, ``send``, ``receive``,
``request`` and ``terminate``. Everything above it (pool, pipeline, services)
goes through this class and never touches ``subprocess`` directly.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, List, Sequence, Union
import os
import subprocess
import sys
import threading
import time
from pathlib import Path
from .channel import Channel
from .errors import ChannelError, LifecycleError, ProcessError, SpawnError
from .logging import core_logger

WORKER_MODULE = "coprocs.core.worker_entry"
# directory holding the coprocs package; workers import it from here
IMPORT_ROOT = Path(__file__).resolve().parents[2]


class WorkerState(str, Enum):
    STARTING = "starting"
    IDLE = "idle"
    BUSY = "busy"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


_TRANSITIONS = {
    WorkerState.STARTING: {WorkerState.IDLE, WorkerState.TERMINATED},
    WorkerState.IDLE: {WorkerState.BUSY, WorkerState.TERMINATING, WorkerState.TERMINATED},
    WorkerState.BUSY: {WorkerState.IDLE, WorkerState.TERMINATED},
    WorkerState.TERMINATING: {WorkerState.TERMINATED},
    WorkerState.TERMINATED: set(),
}


@dataclass
class WorkerHandle:
    worker_id: str
    process: subprocess.Popen
    channel: Channel
    started: float
    last_used: float
    state: WorkerState = WorkerState.STARTING
    history: List[WorkerState] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def transition(self, new: WorkerState):
        if not self.try_transition(new):
            raise LifecycleError(f"worker {self.worker_id}: illegal transition {self.state.value} -> {new.value}")

    def try_transition(self, new: WorkerState) -> bool:
        """Apply ``new`` if legal from the current state; report whether it was."""
        with self._lock:
            if new not in _TRANSITIONS[self.state]:
                return False
            self.history.append(self.state)
            self.state = new
            return True

    @property
    def alive(self) -> bool:
        return self.state not in (WorkerState.TERMINATING, WorkerState.TERMINATED)

    @property
    def pid(self) -> int:
        return self.process.pid


Entrypoint = Union[str, Sequence[str]]


class ProcessManager:
    def __init__(self, workspace_root: Optional[Path] = None, python: Optional[str] = None):
        self.workspace_root = Path(workspace_root) if workspace_root else Path.cwd()
        self.python = python or sys.executable
        self._workers: Dict[str, WorkerHandle] = {}
        self._lock = threading.RLock()
        self._seq = 0

    def build_command(self, entrypoint: Entrypoint) -> List[str]:
        """A bare string names a worker kind served by ``coprocs.core.worker_entry``."""
        if isinstance(entrypoint, str):
            return [self.python, "-m", WORKER_MODULE, entrypoint]
        cmd = list(entrypoint)
        if not cmd:
            raise SpawnError("empty worker entrypoint")
        return cmd

    def _worker_env(self) -> Dict[str, str]:
        env = dict(os.environ)
        paths = [str(IMPORT_ROOT)] + [p for p in env.get("PYTHONPATH", "").split(os.pathsep) if p]
        env["PYTHONPATH"] = os.pathsep.join(dict.fromkeys(paths))
        return env

    def spawn_worker(
        self,
        entrypoint: Entrypoint,
        worker_id: Optional[str] = None,
        ready_line: Optional[str] = None,
        ready_timeout: float = 10.0,
        stderr=None,
    ) -> WorkerHandle:
        """Start a worker. ``stderr`` is where its side channel goes (inherited by default)."""
        cmd = self.build_command(entrypoint)
        with self._lock:
            if worker_id is None:
                self._seq += 1
                worker_id = f"w{self._seq}"
            if worker_id in self._workers and self._workers[worker_id].alive:
                raise SpawnError(f"worker id {worker_id} already in use")
        core_logger.debug(f"spawn worker id={worker_id} cmd={' '.join(cmd)}")
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=str(self.workspace_root),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=stderr,
                env=self._worker_env(),
                text=True,
                encoding="utf-8",
                bufsize=1,
            )
        except (OSError, ValueError) as e:
            raise SpawnError(f"Failed spawning worker {worker_id}: {e}") from e
        now = time.time()
        wh = WorkerHandle(worker_id=worker_id, process=proc, channel=Channel.for_process(f"worker-{worker_id}", proc), started=now, last_used=now)
        with self._lock:
            self._workers[worker_id] = wh
        if ready_line is not None:
            try:
                line = wh.channel.read_line(timeout=ready_timeout)
            except ChannelError as e:
                self._reap(wh)
                self.release(wh)
                raise SpawnError(f"worker {worker_id} did not start: {e}") from e
            if line != ready_line:
                self._reap(wh)
                self.release(wh)
                raise SpawnError(f"worker {worker_id} bad handshake: {line!r} (expected {ready_line!r})")
        wh.transition(WorkerState.IDLE)
        core_logger.info(f"worker {worker_id} started pid={proc.pid}")
        return wh

    def get(self, worker_id: str) -> Optional[WorkerHandle]:
        return self._workers.get(worker_id)

    def workers(self) -> List[WorkerHandle]:
        with self._lock:
            return list(self._workers.values())

    def _mark_dead(self, wh: WorkerHandle, reason: str):
        if wh.try_transition(WorkerState.TERMINATED):
            core_logger.warning(f"worker {wh.worker_id} lost ({reason}); marking terminated")

    def send(self, wh: WorkerHandle, line: str):
        try:
            wh.channel.write_line(line)
        except ChannelError as e:
            self._mark_dead(wh, str(e))
            raise
        wh.last_used = time.time()

    def receive(self, wh: WorkerHandle, timeout: Optional[float] = None) -> str:
        try:
            return wh.channel.read_line(timeout=timeout)
        except ChannelError as e:
            # timeouts leave the worker state unknown; only EOF is conclusive
            if wh.channel.at_eof:
                self._mark_dead(wh, str(e))
            raise

    def request(self, wh: WorkerHandle, line: str, timeout: Optional[float] = None) -> str:
        """Synchronous round trip: Idle -> Busy, one line out, one line back, Busy -> Idle."""
        if wh.state is not WorkerState.IDLE:
            raise LifecycleError(f"worker {wh.worker_id} is {wh.state.value}, not idle")
        wh.transition(WorkerState.BUSY)
        self.send(wh, line)
        resp = self.receive(wh, timeout=timeout)
        wh.transition(WorkerState.IDLE)
        return resp

    def wait(self, wh: WorkerHandle, timeout: Optional[float] = None) -> int:
        try:
            return wh.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise ProcessError(f"worker {wh.worker_id} did not exit within {timeout}s") from e

    def _reap(self, wh: WorkerHandle, grace: float = 5.0) -> int:
        wh.channel.close_input()
        try:
            code = wh.process.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            core_logger.warning(f"worker {wh.worker_id} ignored end of input; killing pid={wh.pid}")
            wh.process.kill()
            try:
                code = wh.process.wait(timeout=grace)
            except subprocess.TimeoutExpired as e:
                raise ProcessError(f"worker {wh.worker_id} could not be reaped") from e
        wh.channel.close()
        wh.try_transition(WorkerState.TERMINATED)
        return code

    def kill(self, wh: WorkerHandle):
        """Forcibly stop the process without waiting; ``terminate`` still reaps it."""
        if wh.process.poll() is None:
            core_logger.warning(f"killing worker {wh.worker_id} pid={wh.pid} state={wh.state.value}")
            wh.process.kill()

    def terminate(self, wh: WorkerHandle, grace: float = 5.0, force: bool = False) -> int:
        """Close input, wait for exit (kill after ``grace``), release channels.

        With ``force`` the process is killed first. Idempotent; returns the
        process exit code.
        """
        if wh.state is WorkerState.TERMINATED and wh.channel.closed:
            return wh.process.returncode if wh.process.returncode is not None else self.wait(wh, grace)
        if wh.state is WorkerState.IDLE:
            wh.transition(WorkerState.TERMINATING)
        if force:
            self.kill(wh)
        code = self._reap(wh, grace)
        core_logger.info(f"worker {wh.worker_id} terminated code={code}")
        return code

    def release(self, wh: WorkerHandle):
        with self._lock:
            if self._workers.get(wh.worker_id) is wh:
                del self._workers[wh.worker_id]

    def close_all(self, grace: float = 5.0):
        for wh in self.workers():
            try:
                self.terminate(wh, grace)
            except ProcessError as e:
                core_logger.error(f"close_all: {e}")
            self.release(wh)

__all__ = ["ProcessManager", "WorkerHandle", "WorkerState", "WORKER_MODULE"]
