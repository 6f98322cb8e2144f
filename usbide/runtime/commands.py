"""Command vectors for shell commands and Python scripts."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

from usbide.errors import EmptyCommandError, EmptyScriptError
from usbide.runtime.environment import env_lookup, resolve_windows

_UNC_PREFIX = "\\\\?\\UNC\\"
_EXTENDED_PREFIX = "\\\\?\\"


def path_for_cmd(path: str | Path, is_windows: bool | None = None) -> str:
    """Strip extended-length prefixes that cmd.exe and node refuse."""
    raw = str(path)
    if not resolve_windows(is_windows):
        return raw
    if raw.startswith(_UNC_PREFIX):
        return "\\\\" + raw[len(_UNC_PREFIX):]
    if raw.startswith(_EXTENDED_PREFIX):
        return raw[len(_EXTENDED_PREFIX):]
    return raw


def command_processor(env: Mapping[str, str] | None = None) -> str:
    value = env_lookup(os.environ if env is None else env, "COMSPEC", is_windows=True)
    return value.strip() if value and value.strip() else "cmd.exe"


def windows_cmd_argv(command: str, env: Mapping[str, str] | None = None) -> list[str]:
    return [command_processor(env), "/d", "/s", "/c", command]


def shell_argv(
    command: str,
    env: Mapping[str, str] | None = None,
    is_windows: bool | None = None,
) -> list[str]:
    """Wrap a free-form command line for the platform shell."""
    if not command.strip():
        raise EmptyCommandError("shell command is empty")
    if resolve_windows(is_windows):
        return windows_cmd_argv(command, env)
    return ["sh", "-lc", command]


def python_interpreter(env: Mapping[str, str] | None = None, override: str | None = None) -> str:
    if override and override.strip():
        return override.strip()
    for key in ("USBIDE_PYTHON", "PYTHON"):
        value = env_lookup(os.environ if env is None else env, key)
        if value and value.strip():
            return value.strip()
    return "python"


def python_run_argv(
    script: str | Path,
    env: Mapping[str, str] | None = None,
    interpreter: str | None = None,
) -> list[str]:
    if not str(script).strip():
        raise EmptyScriptError()
    return [python_interpreter(env, interpreter), path_for_cmd(script)]
