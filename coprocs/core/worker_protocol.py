"""Line protocol shared by drivers and worker processes.

Every message is one UTF-8 line terminated by ``\\n``. Requests start with a
verb token; responses start with a status token (``OK``, ``VALUE``,
``ERROR`` ...). Verbs are parsed into closed enums so each worker can
dispatch through a table keyed by the enum member instead of raw strings.

Pool workers additionally announce themselves with ``READY <id>`` and answer
each task with ``DONE <output>`` or ``ERROR <message>``. The literal ``quit``
is the sentinel task.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple, Type, TypeVar

SENTINEL = "quit"
READY = "READY"
DONE = "DONE"
ERROR = "ERROR"

UNKNOWN_COMMAND = "Unknown command"
MISSING_ARGUMENT = "Missing argument"
RESOURCE_LIMIT = "Resource limit reached"
INVALID_RESOURCE = "Invalid resource id"


class KVVerb(str, Enum):
    SET = "SET"
    GET = "GET"
    LIST = "LIST"
    QUIT = "QUIT"


class LeaseVerb(str, Enum):
    ACQUIRE = "ACQUIRE"
    RELEASE = "RELEASE"
    STATUS = "STATUS"
    QUIT = "QUIT"


V = TypeVar("V", bound=Enum)


@dataclass(frozen=True)
class Command:
    verb: Optional[Enum]  # None -> not part of the grammar
    args: str
    raw: str


@dataclass(frozen=True)
class Task:
    payload: str
    is_sentinel: bool = False

    @classmethod
    def of(cls, payload) -> "Task":
        if isinstance(payload, Task):
            return payload
        text = str(payload)
        if "\n" in text or "\r" in text:
            raise ValueError("task payload must be a single line")
        return cls(payload=text, is_sentinel=(text == SENTINEL))

    @classmethod
    def sentinel(cls) -> "Task":
        return cls(payload=SENTINEL, is_sentinel=True)


_VERB_TABLES: Dict[type, Dict[str, Enum]] = {}


def _verb_table(verbs: Type[V]) -> Dict[str, V]:
    table = _VERB_TABLES.get(verbs)
    if table is None:
        table = {v.value: v for v in verbs}
        _VERB_TABLES[verbs] = table
    return table  # type: ignore[return-value]


def parse_command(line: str, verbs: Type[V]) -> Command:
    """Split ``line`` into verb + argument string.

    Verbs are case-sensitive. The argument string keeps inner whitespace so
    ``SET k hello world`` carries ``hello world`` as the value.
    """
    stripped = line.strip()
    parts = stripped.split(None, 1)
    token = parts[0] if parts else ""
    args = parts[1].strip() if len(parts) > 1 else ""
    return Command(verb=_verb_table(verbs).get(token), args=args, raw=stripped)


def error(message: str) -> str:
    return f"{ERROR} {message}"


def split_response(line: str) -> Tuple[str, str]:
    """Return ``(status, rest)`` for a response line."""
    parts = line.strip().split(None, 1)
    if not parts:
        return "", ""
    return parts[0], (parts[1] if len(parts) > 1 else "")


def is_error(line: str) -> bool:
    return split_response(line)[0] == ERROR


__all__ = [
    "SENTINEL",
    "READY",
    "DONE",
    "ERROR",
    "UNKNOWN_COMMAND",
    "MISSING_ARGUMENT",
    "RESOURCE_LIMIT",
    "INVALID_RESOURCE",
    "KVVerb",
    "LeaseVerb",
    "Command",
    "Task",
    "parse_command",
    "error",
    "split_response",
    "is_error",
]
