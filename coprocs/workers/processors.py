"""Single-purpose line processors used by the basic and error-reporting demos.

``Echo`` answers every line with ``PROC: <line>``. ``Processor`` answers
``Processed: <line>`` but rejects the literal ``error``: the rejection goes to
stderr only, so no reply appears on the protocol stream and the worker keeps
serving.
"""
from __future__ import annotations

from typing import Optional

from ..core.logging import get_logger
from ..core.worker_protocol import SENTINEL

logger = get_logger("coprocs.worker.processor")

ECHO_PREFIX = "PROC: "
INVALID_INPUT = "error"


class Echo:
    def __init__(self, prefix: str = ECHO_PREFIX):
        self.prefix = prefix
        self.finished = False

    def handle(self, line: str) -> Optional[str]:
        return f"{self.prefix}{line}"


class Processor:
    def __init__(self):
        self.finished = False
        self.rejected = 0

    def handle(self, line: str) -> Optional[str]:
        if line == SENTINEL:
            self.finished = True
            return None
        if line == INVALID_INPUT:
            self.rejected += 1
            logger.warning(f"ERROR Invalid input: {line!r}")
            return None
        return f"Processed: {line}"


__all__ = ["Echo", "Processor", "ECHO_PREFIX"]
