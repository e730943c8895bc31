"""Worker pool dispatcher.

Owns N task workers (ids ``1..N``), hands tasks to idle workers in
round-robin order, collects ``DONE``/``ERROR`` replies on one collector
thread per worker and shuts everyone down with the ``quit`` sentinel.

Delivery is at-most-once per worker: if a worker process dies with a task in
flight the task is recorded in ``lost()`` and never resubmitted.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .core.errors import ChannelError, LifecycleError, ProcessError, SpawnError
from .core.logging import get_logger, preview_line
from .core.process_manager import ProcessManager, WorkerHandle, WorkerState
from .core.worker_protocol import DONE, SENTINEL, Task, split_response
from .workers.task_worker import greeting

logger = get_logger("coprocs.pool")

EntrypointFactory = Callable[[int], Sequence[str]]


@dataclass
class TaskResult:
    task: Task
    worker_id: str
    ok: bool
    output: str
    latency_ms: float


@dataclass
class _Slot:
    index: int
    handle: WorkerHandle
    in_flight: Optional[Task] = None
    sent_at: float = 0.0
    assigned: int = 0
    completed: int = 0
    failed: int = 0
    total_latency_ms: float = 0.0
    expected_exit: bool = False
    collector: Optional[threading.Thread] = None


class RoundRobin:
    """Choose the next idle worker after the one assigned last.

    When the caller had to wait for capacity, several workers may have become
    idle at once; the lowest index wins in that case.
    """

    def __init__(self, size: int):
        self.size = size
        self._last = -1

    def pick(self, idle: Sequence[bool], prefer_lowest: bool = False) -> Optional[int]:
        if prefer_lowest:
            order = range(self.size)
        else:
            order = [(self._last + step) % self.size for step in range(1, self.size + 1)]
        for i in order:
            if idle[i]:
                self._last = i
                return i
        return None


class WorkerPool:
    def __init__(
        self,
        manager: Optional[ProcessManager] = None,
        handler: Optional[str] = None,
        delay_s: float = 0.0,
        ready_timeout: float = 10.0,
        entrypoint_factory: Optional[EntrypointFactory] = None,
    ):
        self._manager = manager or ProcessManager()
        self.handler = handler
        self.delay_s = delay_s
        self.ready_timeout = ready_timeout
        self._entrypoint_factory = entrypoint_factory
        self._cond = threading.Condition()
        self._slots: List[_Slot] = []
        self._scheduler: Optional[RoundRobin] = None
        self._results: List[TaskResult] = []
        self._lost: List[Task] = []
        self._submitted = 0
        self._closing = False
        self._closed = False

    @classmethod
    def start(cls, n: int, **kwargs) -> "WorkerPool":
        """Spawn ``n`` workers; all of them start or none do."""
        pool = cls(**kwargs)
        pool._start(n)
        return pool

    def _entrypoint(self, index: int) -> List[str]:
        if self._entrypoint_factory is not None:
            return list(self._entrypoint_factory(index))
        cmd = self._manager.build_command("pool") + ["--worker-id", str(index)]
        if self.handler:
            cmd += ["--handler", self.handler]
        if self.delay_s:
            cmd += ["--delay", str(self.delay_s)]
        return cmd

    def _start(self, n: int):
        if n < 1:
            raise ValueError("pool size must be >= 1")
        if self._slots:
            raise LifecycleError("pool already started")
        started: List[WorkerHandle] = []
        for index in range(1, n + 1):
            wid = str(index)
            try:
                wh = self._manager.spawn_worker(
                    self._entrypoint(index), worker_id=wid, ready_line=greeting(wid), ready_timeout=self.ready_timeout
                )
            except SpawnError as e:
                logger.error(f"pool start failed at worker {wid}: {e}; tearing down {len(started)} worker(s)")
                for done in started:
                    try:
                        self._manager.terminate(done)
                    except ProcessError as pe:
                        logger.error(f"teardown of worker {done.worker_id} failed: {pe}")
                    self._manager.release(done)
                raise
            started.append(wh)
        self._slots = [_Slot(index=i, handle=wh) for i, wh in enumerate(started, start=1)]
        self._scheduler = RoundRobin(n)
        for slot in self._slots:
            slot.collector = threading.Thread(
                target=self._collect, args=(slot,), name=f"pool-collector-{slot.index}", daemon=True
            )
            slot.collector.start()
        logger.info(f"pool started with {n} worker(s)")

    # ------------------------------------------------------------------
    # collection
    def _collect(self, slot: _Slot):
        wh = slot.handle
        while True:
            try:
                line = wh.channel.read_line()
            except ChannelError:
                break
            with self._cond:
                task = slot.in_flight
                if task is None:
                    logger.warning(f"worker {wh.worker_id} unsolicited output ignored: {preview_line(line)}")
                    continue
                latency = (time.time() - slot.sent_at) * 1000.0
                status, rest = split_response(line)
                ok = status == DONE
                self._results.append(TaskResult(task=task, worker_id=wh.worker_id, ok=ok, output=rest, latency_ms=latency))
                slot.in_flight = None
                slot.completed += 1
                slot.total_latency_ms += latency
                if not ok:
                    slot.failed += 1
                    logger.warning(f"worker {wh.worker_id} task {task.payload!r} failed: {rest}")
                wh.try_transition(WorkerState.IDLE)
                self._cond.notify_all()
        with self._cond:
            if slot.in_flight is not None:
                logger.error(f"task lost on worker {wh.worker_id}: {slot.in_flight.payload!r} (not retried)")
                self._lost.append(slot.in_flight)
                slot.in_flight = None
            if not slot.expected_exit:
                logger.warning(f"worker {wh.worker_id} exited unexpectedly code={wh.process.poll()}")
                wh.try_transition(WorkerState.TERMINATED)
            self._cond.notify_all()

    # ------------------------------------------------------------------
    # dispatch
    def _ensure_open(self):
        if not self._slots:
            raise LifecycleError("pool not started")
        if self._closing or self._closed:
            raise LifecycleError("pool is shut down")

    def submit(self, task: Union[Task, str]) -> str:
        """Hand ``task`` to the next idle worker, blocking while all are busy.

        Returns the id of the worker that received it.
        """
        task = Task.of(task)
        if task.is_sentinel:
            raise ValueError("the sentinel is reserved for shutdown()")
        with self._cond:
            self._ensure_open()
            waited = False
            while True:
                if not any(s.handle.alive for s in self._slots):
                    raise ProcessError("no live workers left in pool")
                idle = [s.handle.state is WorkerState.IDLE for s in self._slots]
                idx = self._scheduler.pick(idle, prefer_lowest=waited)  # type: ignore[union-attr]
                if idx is not None:
                    break
                waited = True
                self._cond.wait()
                self._ensure_open()
            slot = self._slots[idx]
            slot.handle.transition(WorkerState.BUSY)
            slot.in_flight = task
            slot.sent_at = time.time()
            slot.assigned += 1
            self._submitted += 1
        try:
            slot.handle.channel.write_line(task.payload)
        except ChannelError as e:
            with self._cond:
                if slot.in_flight is task:
                    self._lost.append(task)
                    slot.in_flight = None
                slot.handle.try_transition(WorkerState.TERMINATED)
                self._cond.notify_all()
            logger.error(f"worker {slot.handle.worker_id} channel broken; task {task.payload!r} lost: {e}")
            raise
        slot.handle.last_used = slot.sent_at
        return slot.handle.worker_id

    def map(self, tasks) -> List[str]:
        return [self.submit(t) for t in tasks]

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait until no task is in flight. Returns False on timeout."""
        with self._cond:
            return self._cond.wait_for(lambda: all(s.in_flight is None for s in self._slots), timeout)

    # ------------------------------------------------------------------
    # shutdown
    def shutdown(self, timeout: float = 10.0):
        """Drain, send the sentinel to every live worker, reap, release channels.

        Calling it again is a no-op.
        """
        with self._cond:
            if self._closing or self._closed or not self._slots:
                return
            self._closing = True
            self._cond.notify_all()
        if not self.join(timeout):
            logger.warning(f"pool shutdown: in-flight tasks did not finish within {timeout}s; forcing")
        with self._cond:
            for slot in self._slots:
                wh = slot.handle
                if wh.state is WorkerState.TERMINATED:
                    continue
                slot.expected_exit = True
                if wh.state is WorkerState.IDLE:
                    wh.transition(WorkerState.TERMINATING)
                    try:
                        wh.channel.write_line(SENTINEL)
                    except ChannelError as e:
                        logger.warning(f"worker {wh.worker_id} could not receive sentinel: {e}")
        for slot in self._slots:
            try:
                self._manager.terminate(slot.handle, grace=timeout)
            except ProcessError as e:
                logger.error(f"pool shutdown: {e}")
            if slot.collector is not None:
                slot.collector.join(timeout)
            self._manager.release(slot.handle)
        with self._cond:
            self._closed = True
            self._cond.notify_all()
        logger.info(f"pool shut down ({len(self._results)} result(s), {len(self._lost)} lost)")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    # ------------------------------------------------------------------
    # introspection
    @property
    def size(self) -> int:
        return len(self._slots)

    @property
    def closed(self) -> bool:
        return self._closed

    def workers(self) -> List[WorkerHandle]:
        return [s.handle for s in self._slots]

    def worker_states(self) -> Dict[str, str]:
        with self._cond:
            return {s.handle.worker_id: s.handle.state.value for s in self._slots}

    def results(self) -> List[TaskResult]:
        with self._cond:
            return list(self._results)

    def lost(self) -> List[Task]:
        with self._cond:
            return list(self._lost)

    def stats(self) -> Dict[str, Any]:
        with self._cond:
            per: Dict[str, Any] = {}
            for s in self._slots:
                wh = s.handle
                per[wh.worker_id] = {
                    "state": wh.state.value,
                    "pid": wh.pid,
                    "assigned": s.assigned,
                    "completed": s.completed,
                    "failed": s.failed,
                    "in_flight": s.in_flight.payload if s.in_flight else None,
                    "avg_latency_ms": (s.total_latency_ms / s.completed) if s.completed else None,
                }
            per["__aggregate__"] = {
                "size": len(self._slots),
                "live": sum(1 for s in self._slots if s.handle.alive),
                "submitted": self._submitted,
                "completed": len(self._results),
                "failed": sum(1 for r in self._results if not r.ok),
                "lost": len(self._lost),
                "closed": self._closed,
            }
            return per


__all__ = ["WorkerPool", "TaskResult", "RoundRobin"]
