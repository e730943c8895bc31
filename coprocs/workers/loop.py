"""Read-execute-respond loop shared by every worker kind."""
from __future__ import annotations

import sys
from typing import IO, Optional, Protocol

from ..core.logging import get_logger, preview_line
from ..core.worker_protocol import error

logger = get_logger("coprocs.worker")


class LineHandler(Protocol):
    finished: bool

    def handle(self, line: str) -> Optional[str]:
        ...


def emit(stdout: IO[str], line: str):
    stdout.write(line + "\n")
    stdout.flush()


def serve(handler: LineHandler, stdin: Optional[IO[str]] = None, stdout: Optional[IO[str]] = None, greeting: Optional[str] = None) -> int:
    """Answer each input line with at most one output line until the handler
    reports ``finished`` or input ends.

    Handler exceptions become ``ERROR`` lines so the loop keeps serving.
    """
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    if greeting is not None:
        emit(stdout, greeting)
    for raw in stdin:
        line = raw.rstrip("\r\n")
        try:
            reply = handler.handle(line)
        except Exception as e:  # noqa: BLE001
            logger.exception(f"handler failed on {preview_line(line)!r}")
            reply = error(str(e).replace("\n", " ") or type(e).__name__)
        if reply is not None:
            emit(stdout, reply)
        if handler.finished:
            break
    return 0

__all__ = ["serve", "emit", "LineHandler"]
