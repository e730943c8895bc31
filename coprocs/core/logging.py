"""Lightweight logging setup for core framework.

Users can override log level with COPROCS_LOG_LEVEL env var and mirror
output into ``$COPROCS_LOG_DIR/coprocs.log``.

Worker subprocesses use the same factory; their handlers write to stderr,
which is the side channel and never part of the line protocol on stdout.
"""
from __future__ import annotations
import logging
import os
import sys
from pathlib import Path

FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def preview_line(line: str, limit: int = 120) -> str:
    """Return a single-line, truncated rendering of a protocol line for logs."""
    s = line.rstrip("\n").replace("\n", "\\n")
    if len(s) > limit:
        s = s[: limit - 3] + "..."
    return s


def _log_level() -> str:
    return os.getenv("COPROCS_LOG_LEVEL", "INFO").upper()


def get_logger(name: str = "coprocs") -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(logging.Formatter(FORMAT))
        logger.addHandler(stream_handler)
        # Optional file handler if COPROCS_LOG_DIR is set
        log_dir = os.getenv("COPROCS_LOG_DIR")
        if log_dir:
            try:
                p = Path(log_dir)
                p.mkdir(parents=True, exist_ok=True)
                fh = logging.FileHandler(p / "coprocs.log", encoding="utf-8")
                fh.setFormatter(logging.Formatter(FORMAT))
                logger.addHandler(fh)
            except OSError as e:
                logger.warning("could not open log dir %s: %s", log_dir, e)
        logger.setLevel(_log_level())
        logger.propagate = False
    return logger

core_logger = get_logger("coprocs.core")

__all__ = ["get_logger", "core_logger", "preview_line", "FORMAT"]
