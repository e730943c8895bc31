"""Pipeline stage chain: generate -> transform -> filter, one process per stage.

Stage processes are never wired to each other directly. For each boundary
the orchestrator runs a relay thread that reads a line from stage ``i`` and
writes it to stage ``i + 1``, so lines can be inspected, rewritten or dropped
in between (``relay_hook``) and back-pressure stays visible: a relay blocked
on a slow downstream write stops reading upstream.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from .core.errors import ChannelError, LifecycleError, ProcessError, SpawnError
from .core.logging import get_logger, preview_line
from .core.process_manager import ProcessManager, WorkerHandle

logger = get_logger("coprocs.pipeline")

RelayHook = Callable[[int, str], Optional[str]]


@dataclass
class StageSpec:
    name: str
    kind: str = "transform"
    params: Dict[str, Any] = field(default_factory=dict)
    entrypoint: Optional[Sequence[str]] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "StageSpec":
        return cls(name=d.get("name") or d.get("kind", "stage"), kind=d.get("kind") or "custom", params=dict(d.get("params") or {}), entrypoint=d.get("entrypoint"))

    def command(self, manager: ProcessManager) -> List[str]:
        if self.entrypoint:
            return list(self.entrypoint)
        cmd = manager.build_command(self.kind)
        for key, val in self.params.items():
            flag = "--" + key.replace("_", "-")
            if key == "delay_s":
                flag = "--delay"
            if isinstance(val, bool):
                if val:
                    cmd.append(flag)
            elif isinstance(val, (list, tuple)):
                for item in val:
                    cmd += [flag, str(item)]
            elif val is not None:
                cmd += [flag, str(val)]
        return cmd


class Pipeline:
    def __init__(self, manager: Optional[ProcessManager] = None, relay_hook: Optional[RelayHook] = None):
        self._manager = manager or ProcessManager()
        self.relay_hook = relay_hook
        self.stages: List[StageSpec] = []
        self._workers: List[WorkerHandle] = []
        self._relays: List[threading.Thread] = []
        self._errors: List[BaseException] = []
        self._errors_lock = threading.Lock()
        self._ran = False
        self._closed = False
        self._forced = False
        self.returncodes: Dict[str, Optional[int]] = {}
        self.forwarded: List[int] = []
        self.dropped: List[int] = []

    @classmethod
    def build(cls, stages: Sequence[Any], relay_hook: Optional[RelayHook] = None, manager: Optional[ProcessManager] = None) -> "Pipeline":
        """Spawn one worker per stage. Either every stage starts or none stays running."""
        specs = [s if isinstance(s, StageSpec) else StageSpec.from_dict(s) for s in stages]
        if not specs:
            raise ValueError("pipeline needs at least one stage")
        p = cls(manager=manager, relay_hook=relay_hook)
        p.stages = specs
        for i, spec in enumerate(specs):
            try:
                wh = p._manager.spawn_worker(spec.command(p._manager), worker_id=f"stage{i}-{spec.name}")
            except SpawnError:
                logger.error(f"pipeline build failed at stage {i} ({spec.name}); tearing down")
                p.close()
                raise
            p._workers.append(wh)
        # the head stage produces on its own; it gets no input
        p._workers[0].channel.close_input()
        p.forwarded = [0] * (len(specs) - 1)
        p.dropped = [0] * (len(specs) - 1)
        logger.info(f"pipeline built: {' -> '.join(s.name for s in specs)}")
        return p

    def _record_error(self, e: BaseException):
        with self._errors_lock:
            self._errors.append(e)

    def _relay(self, boundary: int):
        src = self._workers[boundary]
        dst = self._workers[boundary + 1]
        try:
            while True:
                try:
                    line = src.channel.read_line()
                except ChannelError:
                    break  # upstream finished
                if self.relay_hook is not None:
                    out = self.relay_hook(boundary, line)
                    if out is None:
                        self.dropped[boundary] += 1
                        continue
                    line = out
                dst.channel.write_line(line)
                self.forwarded[boundary] += 1
        except ChannelError as e:
            logger.error(f"relay {boundary} ({src.worker_id} -> {dst.worker_id}) failed: {e}")
            self._record_error(e)
        except Exception as e:  # noqa: BLE001 - hook errors surface through run()
            logger.exception(f"relay {boundary} hook failed on {preview_line(line)!r}")
            self._record_error(e)
        finally:
            dst.channel.close_input()

    def run(self) -> Iterator[str]:
        """Yield the last stage's lines in order. Single use: rebuild to rerun.

        Stages are reaped when the iterator is exhausted or closed. A caller
        that never iterates must still ``close()`` the pipeline (or use it as
        a context manager), otherwise the stage processes keep running.

        Raises ProcessError once the output ends if any stage exited with a
        non-zero status, and ChannelError if a relay failed.
        """
        if self._ran or self._closed:
            raise LifecycleError("pipeline already run; build a new one")
        self._ran = True
        return self._iterate()

    def _iterate(self) -> Iterator[str]:
        for b in range(len(self._workers) - 1):
            t = threading.Thread(target=self._relay, args=(b,), name=f"pipeline-relay-{b}", daemon=True)
            self._relays.append(t)
            t.start()
        tail = self._workers[-1]
        exhausted = False
        try:
            while True:
                try:
                    line = tail.channel.read_line()
                except ChannelError:
                    exhausted = True
                    break
                yield line
        finally:
            # an abandoned iterator leaves stages blocked on full pipes; kill them
            self.close(force=not exhausted)
        failed = self.failed_stages()
        if failed:
            detail = ", ".join(f"{name} exited {code}" for name, code in failed)
            cause = self._errors[0] if self._errors else None
            raise ProcessError(f"pipeline stage failed: {detail}") from cause
        if self._errors:
            raise ChannelError(f"pipeline relay failed: {self._errors[0]}") from self._errors[0]

    def close(self, grace: float = 5.0, force: bool = False):
        """Reap every stage and release its channels. Idempotent.

        Exit codes are kept in ``returncodes``; after a forced close they are
        not treated as failures.
        """
        if self._closed:
            return
        self._closed = True
        self._forced = force
        for wh in self._workers:
            try:
                self.returncodes[wh.worker_id] = self._manager.terminate(wh, grace=grace, force=force)
            except ProcessError as e:
                logger.error(f"pipeline close: {e}")
                self.returncodes[wh.worker_id] = wh.process.poll()
            self._manager.release(wh)
        for t in self._relays:
            t.join(grace)
        for name, code in self.failed_stages():
            logger.error(f"pipeline stage {name} exited with status {code}")
        logger.info(f"pipeline closed (forwarded={self.forwarded} dropped={self.dropped} returncodes={self.returncodes})")

    def failed_stages(self) -> List[Tuple[str, Optional[int]]]:
        """Stages that exited non-zero, in chain order. Empty after a forced close."""
        if self._forced:
            return []
        return [(wh.worker_id, self.returncodes.get(wh.worker_id)) for wh in self._workers if self.returncodes.get(wh.worker_id, 0) != 0]

    def collect(self) -> List[str]:
        return list(self.run())

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close(force=True)

    @property
    def workers(self) -> List[WorkerHandle]:
        return list(self._workers)

    @property
    def closed(self) -> bool:
        return self._closed


__all__ = ["Pipeline", "StageSpec", "RelayHook"]
