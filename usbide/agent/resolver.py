"""Locate the agent CLI and its node runtime, and build its command vectors.

Resolution order for the agent executable:

1. portable node under ``<root>/tools/node`` plus the entry script declared
   by the installed package manifest under ``<root>/.usbide/<agent>``;
2. the bare command found on the search path of the environment map
   (Windows ``.cmd``/``.bat``/``.ps1`` shims are wrapped in their interpreter);
3. the bare command name, left to the OS resolver.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Mapping, Sequence

from loguru import logger

from usbide.agent.registry import AgentDef, get_agent_def
from usbide.errors import EmptyPackageError, EmptyPromptError, NodeMissingError, NpmMissingError
from usbide.runtime.commands import path_for_cmd, windows_cmd_argv
from usbide.runtime.environment import (
    PATH_KEY,
    env_lookup,
    normalize_path_key,
    prepend_path,
    resolve_windows,
    split_search_path,
)

DEFAULT_PATHEXT = ".COM;.EXE;.BAT;.CMD;.PS1"
SHIM_SUFFIXES = (".cmd", ".bat", ".ps1")


# ---------------------------------------------------------------------------
# Search-path lookup
# ---------------------------------------------------------------------------


def _has_separator(name: str, windows: bool) -> bool:
    if os.sep in name or (os.altsep and os.altsep in name):
        return True
    return windows and ("/" in name or "\\" in name)


def _extensions(name: str, windows: bool, pathext: str | None) -> list[str]:
    if not windows or Path(name).suffix:
        return [""]
    raw = pathext if pathext is not None else DEFAULT_PATHEXT
    exts = [ext for ext in raw.split(";") if ext]
    return exts or [""]


def locate_on_path(
    name: str,
    search_path: str | None,
    is_windows: bool | None = None,
    pathext: str | None = None,
) -> Path | None:
    """Return the first existing ``name`` on ``search_path``, or ``None``.

    Names carrying a directory separator (or absolute paths) are only
    checked for existence. On Windows an extension-less name is tried with
    every ``PATHEXT`` suffix, in directory order first.
    """
    name = (name or "").strip()
    if not name:
        return None
    windows = resolve_windows(is_windows)
    candidate = Path(name)
    if candidate.is_absolute() or _has_separator(name, windows):
        return candidate if candidate.exists() else None

    extensions = _extensions(name, windows, pathext)
    for directory in split_search_path(search_path, windows):
        base = Path(directory)
        for ext in extensions:
            # Windows file systems ignore case; try the lowercase spelling too.
            for suffix in dict.fromkeys((ext, ext.lower())):
                found = base / f"{name}{suffix}"
                if found.exists():
                    return found
    return None


def _search_path(env: Mapping[str, str] | None, windows: bool) -> str | None:
    source = env if env is not None else os.environ
    return env_lookup(source, PATH_KEY, windows)


def _pathext(env: Mapping[str, str] | None, windows: bool) -> str | None:
    if not windows:
        return None
    source = env if env is not None else os.environ
    return env_lookup(source, "PATHEXT", windows)


def resolve_in_env(name: str, env: Mapping[str, str] | None, is_windows: bool | None = None) -> Path | None:
    windows = resolve_windows(is_windows)
    return locate_on_path(name, _search_path(env, windows), windows, _pathext(env, windows))


# ---------------------------------------------------------------------------
# Portable layout
# ---------------------------------------------------------------------------


def node_tools_dir(root: Path) -> Path:
    return root / "tools" / "node"


def agent_install_prefix(root: Path, agent: AgentDef | None = None) -> Path:
    agent = agent or get_agent_def()
    return root / ".usbide" / agent.install_dir


def agent_bin_dir(prefix: Path) -> Path:
    return prefix / "node_modules" / ".bin"


def agent_package_json(prefix: Path, agent: AgentDef | None = None) -> Path:
    agent = agent or get_agent_def()
    return prefix.joinpath("node_modules", *agent.package_parts, "package.json")


def node_executable(
    root: Path,
    env: Mapping[str, str] | None = None,
    is_windows: bool | None = None,
) -> Path | None:
    """Portable node first, then ``node`` from the search path."""
    windows = resolve_windows(is_windows)
    node_dir = node_tools_dir(root)
    if windows:
        candidates = [node_dir / "node.exe"]
    else:
        candidates = [node_dir / "bin" / "node", node_dir / "node"]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return resolve_in_env("node", env, windows)


def npm_cli_js(root: Path, node: Path | None = None, env: Mapping[str, str] | None = None) -> Path | None:
    node = node or node_executable(root, env)
    if node is None:
        return None
    node_dir = node.parent
    candidate = node_dir / "node_modules" / "npm" / "bin" / "npm-cli.js"
    if candidate.exists():
        return candidate
    alternative = node_dir.parent / "lib" / "node_modules" / "npm" / "bin" / "npm-cli.js"
    if alternative.exists():
        return alternative.resolve()
    return None


def agent_env(
    root: Path,
    base_env: Mapping[str, str] | None = None,
    agent: AgentDef | None = None,
    is_windows: bool | None = None,
) -> dict[str, str]:
    """Base environment with the portable node and agent shims on PATH."""
    windows = resolve_windows(is_windows)
    env = normalize_path_key(dict(os.environ if base_env is None else base_env), windows)
    node_dir = node_tools_dir(root)
    node_bin = node_dir / "bin"
    if node_bin.exists():
        env = prepend_path(env, node_bin, windows)
    env = prepend_path(env, node_dir, windows)
    env = prepend_path(env, agent_bin_dir(agent_install_prefix(root, agent)), windows)
    return env


def _manifest_entry(bin_field: object, bin_key: str) -> str | None:
    if isinstance(bin_field, str):
        return bin_field
    if isinstance(bin_field, dict):
        value = bin_field.get(bin_key)
        if isinstance(value, str):
            return value
        for value in bin_field.values():
            if isinstance(value, str):
                return value
    return None


def agent_entrypoint(prefix: Path, agent: AgentDef | None = None) -> Path | None:
    """Entry script declared by the installed package's ``bin`` mapping."""
    agent = agent or get_agent_def()
    manifest = agent_package_json(prefix, agent)
    if not manifest.exists():
        return None
    try:
        data = json.loads(manifest.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning(f"[resolver] unreadable manifest {manifest}: {exc}")
        return None
    if not isinstance(data, dict):
        return None
    relative = _manifest_entry(data.get("bin"), agent.bin_key)
    if not relative:
        return None
    entry = manifest.parent / relative
    return entry if entry.exists() else None


def _is_shim(path: Path, windows: bool) -> bool:
    return windows and path.suffix.lower() in SHIM_SUFFIXES


def agent_cli_available(
    root: Path | None,
    env: Mapping[str, str] | None = None,
    agent: AgentDef | None = None,
    is_windows: bool | None = None,
) -> bool:
    agent = agent or get_agent_def()
    windows = resolve_windows(is_windows)
    if root is not None:
        node = node_executable(root, env, windows)
        entry = agent_entrypoint(agent_install_prefix(root, agent), agent)
        if node is not None and entry is not None:
            return True
        search_env = agent_env(root, env, agent, windows)
    else:
        search_env = dict(os.environ if env is None else env)

    resolved = resolve_in_env(agent.resolve_command(search_env), search_env, windows)
    if resolved is None:
        return False
    if _is_shim(resolved, windows):
        if root is not None:
            return node_executable(root, search_env, windows) is not None
        return resolve_in_env("node", search_env, windows) is not None
    return True


# ---------------------------------------------------------------------------
# Command vectors
# ---------------------------------------------------------------------------


def build_agent_argv(
    root: Path | None,
    env: Mapping[str, str] | None = None,
    agent: AgentDef | None = None,
    is_windows: bool | None = None,
) -> list[str]:
    """Program part of every agent invocation (no subcommand yet)."""
    agent = agent or get_agent_def()
    windows = resolve_windows(is_windows)
    if root is not None:
        node = node_executable(root, env, windows)
        entry = agent_entrypoint(agent_install_prefix(root, agent), agent)
        if node is not None and entry is not None:
            return [path_for_cmd(node, windows), path_for_cmd(entry, windows)]

    command = agent.resolve_command(env)
    resolved = resolve_in_env(command, env, windows)
    if resolved is None:
        return [command]
    suffix = resolved.suffix.lower()
    if windows and suffix in (".cmd", ".bat"):
        return windows_cmd_argv(path_for_cmd(resolved, windows), env)
    if windows and suffix == ".ps1":
        powershell = resolve_in_env("powershell", env, windows)
        return [
            str(powershell) if powershell is not None else "powershell",
            "-NoProfile",
            "-ExecutionPolicy",
            "Bypass",
            "-File",
            path_for_cmd(resolved, windows),
        ]
    return [path_for_cmd(resolved, windows)]


def agent_login_argv(
    root: Path | None,
    env: Mapping[str, str] | None = None,
    device_auth: bool = False,
    agent: AgentDef | None = None,
    is_windows: bool | None = None,
) -> list[str]:
    argv = build_agent_argv(root, env, agent, is_windows)
    argv.append("login")
    if device_auth:
        argv.append("--device-auth")
    return argv


def agent_status_argv(
    root: Path | None,
    env: Mapping[str, str] | None = None,
    agent: AgentDef | None = None,
    is_windows: bool | None = None,
) -> list[str]:
    return [*build_agent_argv(root, env, agent, is_windows), "login", "status"]


def agent_exec_argv(
    prompt: str,
    root: Path | None,
    env: Mapping[str, str] | None = None,
    json_output: bool = True,
    extra_args: Sequence[str] = (),
    agent: AgentDef | None = None,
    is_windows: bool | None = None,
) -> list[str]:
    if not prompt.strip():
        raise EmptyPromptError()
    argv = build_agent_argv(root, env, agent, is_windows)
    argv.append("exec")
    if json_output:
        argv.append("--json")
    argv.extend(arg for arg in extra_args if arg.strip())
    # Keep prompts like "-h please" from being read as options.
    if prompt.lstrip().startswith("-"):
        argv.append("--")
    argv.append(prompt)
    return argv


def agent_install_argv(
    root: Path,
    prefix: Path,
    package: str,
    env: Mapping[str, str] | None = None,
    is_windows: bool | None = None,
) -> list[str]:
    """``node npm-cli.js install --prefix <prefix> <package>``."""
    if not package.strip():
        raise EmptyPackageError()
    windows = resolve_windows(is_windows)
    node = node_executable(root, env, windows)
    if node is None:
        raise NodeMissingError(str(node_tools_dir(root)))
    npm = npm_cli_js(root, node, env)
    if npm is None:
        raise NpmMissingError(str(node.parent / "node_modules" / "npm"))
    return [
        path_for_cmd(node, windows),
        path_for_cmd(npm, windows),
        "install",
        "--prefix",
        path_for_cmd(prefix, windows),
        "--no-audit",
        "--no-fund",
        package.strip(),
    ]
