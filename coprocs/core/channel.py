"""Line channel over a worker's stdin/stdout pipes.

A single reader thread per channel pulls lines off the worker's stdout into a
small bounded queue, which lets callers put a timeout on ``read_line``
without polling. The queue bound keeps back-pressure intact: once it is full
the reader thread stops reading and the worker blocks on its next write.
"""
from __future__ import annotations

import queue
import threading
from typing import IO, Optional

from .errors import ChannelError, ChannelTimeout
from .logging import core_logger, preview_line

_EOF = object()


class Channel:
    def __init__(self, name: str, writer: Optional[IO[str]], reader: Optional[IO[str]], slack: int = 1):
        if writer is None or reader is None:
            raise ChannelError(f"{name}: worker pipes not available")
        self.name = name
        self._writer = writer
        self._reader = reader
        self._lines: "queue.Queue[object]" = queue.Queue(maxsize=max(1, slack))
        self._write_lock = threading.Lock()
        self._input_closed = False
        self._eof = False
        self._closed = False
        self._pump = threading.Thread(target=self._pump_lines, name=f"{name}-reader", daemon=True)
        self._pump.start()

    @classmethod
    def for_process(cls, name: str, process) -> "Channel":
        return cls(name, process.stdin, process.stdout)

    def _pump_lines(self):
        try:
            for raw in self._reader:
                self._lines.put(raw.rstrip("\r\n"))
                if self._closed:
                    break
        except (OSError, ValueError) as e:
            core_logger.debug(f"[{self.name}] reader stopped: {e}")
        finally:
            if not self._closed:
                self._lines.put(_EOF)

    @property
    def input_closed(self) -> bool:
        return self._input_closed

    @property
    def at_eof(self) -> bool:
        return self._eof

    def write_line(self, line: str):
        if "\n" in line or "\r" in line:
            raise ValueError("protocol messages must be a single line")
        with self._write_lock:
            if self._input_closed:
                raise ChannelError(f"{self.name}: input already closed")
            try:
                self._writer.write(line + "\n")
                self._writer.flush()
            except (OSError, ValueError) as e:
                raise ChannelError(f"{self.name}: write failed: {e}") from e
        core_logger.debug(f"[{self.name}] >> {preview_line(line)}")

    def read_line(self, timeout: Optional[float] = None) -> str:
        """Block until the worker emits a line.

        Raises ChannelTimeout when ``timeout`` elapses and ChannelError once
        the worker's stdout is exhausted.
        """
        if self._eof:
            raise ChannelError(f"{self.name}: channel closed by peer")
        if self._closed:
            raise ChannelError(f"{self.name}: channel closed")
        try:
            item = self._lines.get(timeout=timeout)
        except queue.Empty:
            raise ChannelTimeout(f"{self.name}: no line within {timeout}s") from None
        if item is _EOF:
            self._eof = True
            raise ChannelError(f"{self.name}: channel closed by peer")
        core_logger.debug(f"[{self.name}] << {preview_line(item)}")  # type: ignore[arg-type]
        return item  # type: ignore[return-value]

    def close_input(self):
        """Close the worker's stdin; the worker sees end of input."""
        with self._write_lock:
            if self._input_closed:
                return
            self._input_closed = True
            try:
                self._writer.close()
            except OSError as e:  # peer already gone, buffered data is lost with it
                core_logger.debug(f"[{self.name}] close input: {e}")

    def close(self, timeout: float = 1.0):
        if self._closed:
            return
        self.close_input()
        self._closed = True
        # unblock the reader thread if it is waiting on a full queue
        while True:
            try:
                self._lines.get_nowait()
            except queue.Empty:
                break
        self._pump.join(timeout)
        # wake any other thread still waiting in read_line
        try:
            self._lines.put_nowait(_EOF)
        except queue.Full:
            pass
        if self._pump.is_alive():
            # reader still blocked on a live pipe; closing now would deadlock on the buffer lock
            core_logger.warning(f"[{self.name}] reader thread still running; output pipe left open")
            return
        try:
            self._reader.close()
        except OSError as e:
            core_logger.debug(f"[{self.name}] close output: {e}")

    @property
    def closed(self) -> bool:
        return self._closed


__all__ = ["Channel"]
