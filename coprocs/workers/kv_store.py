"""In-memory key-value store answering SET/GET/LIST/QUIT."""
from __future__ import annotations

from typing import Callable, Dict, Optional

from ..core.worker_protocol import (
    KVVerb,
    Command,
    MISSING_ARGUMENT,
    UNKNOWN_COMMAND,
    error,
    parse_command,
)


class KVStore:
    def __init__(self):
        self._data: Dict[str, str] = {}
        self.finished = False
        self._handlers: Dict[KVVerb, Callable[[Command], str]] = {
            KVVerb.SET: self._set,
            KVVerb.GET: self._get,
            KVVerb.LIST: self._list,
            KVVerb.QUIT: self._quit,
        }

    def __len__(self):
        return len(self._data)

    def handle(self, line: str) -> Optional[str]:
        cmd = parse_command(line, KVVerb)
        fn = self._handlers.get(cmd.verb)  # type: ignore[arg-type]
        if fn is None:
            return error(UNKNOWN_COMMAND)
        return fn(cmd)

    def _set(self, cmd: Command) -> str:
        parts = cmd.args.split(None, 1)
        if len(parts) < 2:
            return error(MISSING_ARGUMENT)
        key, value = parts
        self._data[key] = value
        return "OK"

    def _get(self, cmd: Command) -> str:
        if not cmd.args:
            return error(MISSING_ARGUMENT)
        if cmd.args in self._data:
            return f"VALUE {self._data[cmd.args]}"
        return "NOT_FOUND"

    def _list(self, _cmd: Command) -> str:
        return " ".join(["KEYS", *self._data.keys()])

    def _quit(self, _cmd: Command) -> str:
        self.finished = True
        return "BYE"


__all__ = ["KVStore"]
