"""Pipeline stage workers: generate, transform, filter.

Stages run until their input ends. A transform answers every line; a filter
answers only the lines it keeps, so downstream readers must not assume one
output per input.
"""
from __future__ import annotations

import re
import sys
import time
from typing import Callable, Dict, IO, Iterable, Iterator, List, Optional

from .loop import emit

TRANSFORMS: Dict[str, Callable[[str, str], str]] = {
    "upper": lambda s, _t: s.upper(),
    "lower": lambda s, _t: s.lower(),
    "reverse": lambda s, _t: s[::-1],
    "strip": lambda s, _t: s.strip(),
    "prefix": lambda s, t: f"{t}{s}",
    "suffix": lambda s, t: f"{s}{t}",
}


def generate_lines(count: int, prefix: str = "data", start: int = 1) -> Iterator[str]:
    for i in range(start, start + count):
        yield f"{prefix}{i}"


def run_generator(lines: Iterable[str], stdout: Optional[IO[str]] = None, delay_s: float = 0.0) -> int:
    stdout = stdout or sys.stdout
    for line in lines:
        emit(stdout, line)
        if delay_s > 0:
            time.sleep(delay_s)
    return 0


class Transform:
    def __init__(self, op: str = "upper", text: str = ""):
        if op not in TRANSFORMS:
            raise ValueError(f"unknown transform op {op!r} (choose from {', '.join(sorted(TRANSFORMS))})")
        self.op = op
        self.text = text
        self._fn = TRANSFORMS[op]
        self.finished = False

    def handle(self, line: str) -> Optional[str]:
        return self._fn(line, self.text)


class Filter:
    """Keep lines containing any of ``contains`` and/or matching ``pattern``."""

    def __init__(self, contains: Optional[List[str]] = None, pattern: Optional[str] = None, invert: bool = False):
        self.contains = list(contains or [])
        self.pattern = re.compile(pattern) if pattern else None
        self.invert = invert
        self.finished = False

    def matches(self, line: str) -> bool:
        if not self.contains and self.pattern is None:
            hit = True
        else:
            hit = any(c in line for c in self.contains) or bool(self.pattern and self.pattern.search(line))
        return hit != self.invert

    def handle(self, line: str) -> Optional[str]:
        return line if self.matches(line) else None


__all__ = ["TRANSFORMS", "generate_lines", "run_generator", "Transform", "Filter"]
