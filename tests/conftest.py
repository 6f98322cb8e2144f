"""Shared fixtures for the usbide test-suite."""

from __future__ import annotations

import os
import time

import pytest

from usbide.runtime.process import ProcessEvent, ProcessHandle


@pytest.fixture(autouse=True)
def clean_usbide_env(monkeypatch):
    """Keep host USBIDE_* settings out of every test."""
    for name in list(os.environ):
        if name.startswith("USBIDE_"):
            monkeypatch.delenv(name, raising=False)


def collect_events(handle: ProcessHandle, timeout: float = 15.0) -> list[ProcessEvent]:
    """Poll a handle until its exit event (or fail after ``timeout``)."""
    events: list[ProcessEvent] = []
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        event = handle.try_recv()
        if event is None:
            time.sleep(0.01)
            continue
        events.append(event)
        if event.is_exit:
            handle.join()
            return events
    raise AssertionError(f"no exit event within {timeout}s: {events!r}")


def make_executable(path, content: str = "") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    path.chmod(0o755)
