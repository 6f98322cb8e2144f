"""Line-streaming subprocess engine.

One child process, two reader threads (stdout and stderr) feeding a single
queue, one terminal ``Exit`` event. Callers poll the handle with
``try_recv``/``drain`` from their own loop and only ``join`` after the exit
event has been observed.

Lines coming from stdout and stderr are interleaved in whatever order the
two readers manage to enqueue them; there is no ordering guarantee between
the two streams, only that every line precedes the exit event.
"""

from __future__ import annotations

import queue
import subprocess
import threading
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import IO, Iterable, Mapping

from loguru import logger

from usbide.errors import EmptyCommandError


class ProcessEventKind(StrEnum):
    LINE = "line"
    EXIT = "exit"


@dataclass(frozen=True)
class ProcessEvent:
    """One line of merged output, or the terminal exit notice."""

    kind: ProcessEventKind
    text: str = ""
    returncode: int | None = None

    @classmethod
    def line(cls, text: str) -> "ProcessEvent":
        return cls(kind=ProcessEventKind.LINE, text=text)

    @classmethod
    def exit(cls, returncode: int | None, text: str = "") -> "ProcessEvent":
        return cls(kind=ProcessEventKind.EXIT, text=text, returncode=returncode)

    @property
    def is_exit(self) -> bool:
        return self.kind is ProcessEventKind.EXIT


class ProcessHandle:
    """Receive side of a spawned child."""

    def __init__(
        self,
        argv: list[str],
        proc: subprocess.Popen | None,
        events: queue.Queue[ProcessEvent],
        readers: list[threading.Thread],
    ) -> None:
        self.argv = argv
        self._proc = proc
        self._events = events
        self._readers = readers
        self._exited = False

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def exited(self) -> bool:
        """True once the exit event has been handed to the caller."""
        return self._exited

    def try_recv(self) -> ProcessEvent | None:
        """Return the next pending event without blocking."""
        if self._exited:
            return None
        try:
            event = self._events.get_nowait()
        except queue.Empty:
            return None
        if event.is_exit:
            self._exited = True
        return event

    def drain(self, limit: int | None = None) -> list[ProcessEvent]:
        """Collect every event available right now (stops after exit)."""
        events: list[ProcessEvent] = []
        while limit is None or len(events) < limit:
            event = self.try_recv()
            if event is None:
                break
            events.append(event)
            if event.is_exit:
                break
        return events

    def join(self, timeout: float | None = None) -> None:
        """Wait for the reader threads; call only after the exit event."""
        for reader in self._readers:
            reader.join(timeout)


class _ExitLatch:
    """Counts finished readers; the last one reaps the child and reports."""

    def __init__(self, proc: subprocess.Popen, events: queue.Queue[ProcessEvent], count: int) -> None:
        self._proc = proc
        self._events = events
        self._remaining = count
        self._lock = threading.Lock()

    def reader_done(self) -> None:
        with self._lock:
            self._remaining -= 1
            last = self._remaining == 0
        if not last:
            return
        try:
            code: int | None = self._proc.wait()
        except OSError as exc:
            logger.warning(f"[process] wait failed pid={self._proc.pid}: {exc}")
            code = None
        # Negative codes mean the child was killed by a signal.
        if code is not None and code < 0:
            code = None
        logger.debug(f"[process] exit pid={self._proc.pid} rc={code}")
        self._events.put(ProcessEvent.exit(code))


def _read_stream(stream: IO[str], events: queue.Queue[ProcessEvent], latch: _ExitLatch) -> None:
    try:
        for raw in stream:
            events.put(ProcessEvent.line(raw.rstrip("\r\n")))
    except (OSError, ValueError) as exc:
        logger.debug(f"[process] reader stopped: {exc}")
    finally:
        try:
            stream.close()
        except OSError as exc:
            logger.debug(f"[process] close failed: {exc}")
        latch.reader_done()


def spawn(
    argv: Iterable[str],
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> ProcessHandle:
    """Start ``argv`` and stream its output lines into a handle.

    Raises ``EmptyCommandError`` before touching the OS when ``argv`` is
    empty. An OS-level start failure does not raise: the returned handle
    holds a single ``Exit`` event with no return code and the error text.
    """
    args = [str(part) for part in argv]
    if not args or not args[0].strip():
        raise EmptyCommandError()

    events: queue.Queue[ProcessEvent] = queue.Queue()
    try:
        proc = subprocess.Popen(
            args,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
        )
    except OSError as exc:
        logger.warning(f"[process] spawn failed argv0={args[0]}: {exc}")
        events.put(ProcessEvent.exit(None, f"spawn failed: {exc}"))
        return ProcessHandle(args, None, events, [])

    logger.debug(f"[process] spawned pid={proc.pid} argv0={args[0]}")
    latch = _ExitLatch(proc, events, count=2)
    readers = [
        threading.Thread(target=_read_stream, args=(stream, events, latch), daemon=True)
        for stream in (proc.stdout, proc.stderr)
    ]
    for reader in readers:
        reader.start()
    return ProcessHandle(args, proc, events, readers)
