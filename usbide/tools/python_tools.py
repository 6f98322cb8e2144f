"""Command vectors for Python tooling installed under the workspace.

Tools go into a ``pip --prefix`` tree at ``<root>/.usbide/tools`` so the
workspace stays self-contained; the prefix's script directory is put first
on PATH when those tools run.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, Mapping

from usbide.agent.resolver import resolve_in_env
from usbide.errors import EmptyPackagesError, EmptyScriptError, EmptyToolError
from usbide.runtime.commands import path_for_cmd
from usbide.runtime.environment import prepend_path, resolve_windows

DEFAULT_DEV_TOOLS = "ruff black mypy pytest"


def tools_install_prefix(root: Path) -> Path:
    return root / ".usbide" / "tools"


def python_scripts_dir(prefix: Path, is_windows: bool | None = None) -> Path:
    return prefix / ("Scripts" if resolve_windows(is_windows) else "bin")


def wheelhouse_path(root: Path) -> Path | None:
    """Offline wheel directory, when the workspace ships one."""
    wheels = root / "tools" / "wheels"
    return wheels if wheels.is_dir() else None


def tools_env(
    root: Path,
    base_env: Mapping[str, str] | None = None,
    is_windows: bool | None = None,
) -> dict[str, str]:
    windows = resolve_windows(is_windows)
    env = dict(os.environ if base_env is None else base_env)
    return prepend_path(env, python_scripts_dir(tools_install_prefix(root), windows), windows)


def parse_tool_list(raw: str) -> list[str]:
    """Split a comma/space separated list, keeping first occurrences in order."""
    names = (part.strip() for part in raw.replace(",", " ").split())
    return list(dict.fromkeys(name for name in names if name))


def tool_available(
    tool: str,
    root: Path | None = None,
    env: Mapping[str, str] | None = None,
    is_windows: bool | None = None,
) -> bool:
    if not tool.strip():
        raise EmptyToolError()
    search_env = tools_env(root, env, is_windows) if root is not None else env
    return resolve_in_env(tool.strip(), search_env, is_windows) is not None


def pyinstaller_available(root: Path | None = None, env: Mapping[str, str] | None = None) -> bool:
    return tool_available("pyinstaller", root, env)


def pip_install_argv(
    prefix: Path,
    packages: Iterable[str],
    find_links: Path | None = None,
    no_index: bool = False,
    python: str = "python",
) -> list[str]:
    cleaned = [package.strip() for package in packages if package.strip()]
    if not cleaned:
        raise EmptyPackagesError()
    argv = [python, "-m", "pip", "install", "--upgrade", "--prefix", path_for_cmd(prefix)]
    if no_index:
        argv.append("--no-index")
    if find_links is not None:
        argv.extend(["--find-links", path_for_cmd(find_links)])
    argv.extend(cleaned)
    return argv


def pyinstaller_install_argv(
    prefix: Path,
    find_links: Path | None = None,
    no_index: bool = False,
    python: str = "python",
) -> list[str]:
    return pip_install_argv(prefix, ["pyinstaller"], find_links, no_index, python)


def pyinstaller_build_argv(
    script: Path | str,
    dist_dir: Path,
    onefile: bool = False,
    work_dir: Path | None = None,
    spec_dir: Path | None = None,
) -> list[str]:
    if not str(script).strip():
        raise EmptyScriptError()
    argv = ["pyinstaller", "--noconfirm", "--onedir", "--distpath", path_for_cmd(dist_dir)]
    if onefile:
        argv.remove("--onedir")
        argv.insert(1, "--onefile")
    if work_dir is not None:
        argv.extend(["--workpath", path_for_cmd(work_dir)])
    if spec_dir is not None:
        argv.extend(["--specpath", path_for_cmd(spec_dir)])
    argv.append(path_for_cmd(script))
    return argv
