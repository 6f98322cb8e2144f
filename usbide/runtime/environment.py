"""Environment-map helpers.

Every function here returns a fresh ``dict`` and leaves the caller's mapping
untouched. Key lookup is case-insensitive on Windows only.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

from loguru import logger

PATH_KEY = "PATH"

API_KEY_VARS = ("OPENAI_API_KEY", "CODEX_API_KEY")
CUSTOM_BASE_VARS = ("OPENAI_BASE_URL", "OPENAI_API_BASE", "OPENAI_API_HOST")


def is_windows() -> bool:
    return os.name == "nt"


def resolve_windows(flag: bool | None) -> bool:
    return is_windows() if flag is None else flag


def env_lookup(env: Mapping[str, str], key: str, is_windows: bool | None = None) -> str | None:
    """Read ``key`` from ``env``; case-insensitive on Windows."""
    if key in env:
        return env[key]
    if resolve_windows(is_windows):
        wanted = key.upper()
        for name, value in env.items():
            if name.upper() == wanted:
                return value
    return None


def normalize_path_key(env: Mapping[str, str], is_windows: bool | None = None) -> dict[str, str]:
    """Fold ``Path``/``path`` variants into a single ``PATH`` key on Windows."""
    result = dict(env)
    if not resolve_windows(is_windows) or PATH_KEY in result:
        return result
    for name in list(result):
        if name.upper() == PATH_KEY:
            result[PATH_KEY] = result.pop(name)
            break
    return result


def split_search_path(value: str | None, is_windows: bool | None = None) -> list[str]:
    if not value:
        return []
    sep = ";" if resolve_windows(is_windows) else ":"
    return [part for part in value.split(sep) if part]


def prepend_path(
    env: Mapping[str, str],
    directory: str | Path,
    is_windows: bool | None = None,
) -> dict[str, str]:
    """Put ``directory`` first on the search path unless it is already listed."""
    windows = resolve_windows(is_windows)
    result = normalize_path_key(env, windows)
    entry = str(directory)
    current = split_search_path(env_lookup(result, PATH_KEY, windows), windows)
    compare = (lambda value: value.lower()) if windows else (lambda value: value)
    if any(compare(part) == compare(entry) for part in current):
        return result
    sep = ";" if windows else ":"
    result[PATH_KEY] = sep.join([entry, *current])
    return result


def base_environment(source: Mapping[str, str] | None = None) -> dict[str, str]:
    """Snapshot of the process environment with UTF-8 Python defaults."""
    env = dict(os.environ if source is None else source)
    env.setdefault("PYTHONUTF8", "1")
    env.setdefault("PYTHONIOENCODING", "utf-8")
    return env


# ---------------------------------------------------------------------------
# Portable layout under the workspace root
# ---------------------------------------------------------------------------


def portable_dirs(root: Path) -> dict[str, Path]:
    return {
        "pip_cache": root / "cache" / "pip",
        "pycache": root / "cache" / "pycache",
        "npm_cache": root / "cache" / "npm",
        "tmp": root / "tmp",
        "codex_home": root / "codex_home",
    }


def ensure_portable_dirs(root: Path) -> None:
    for path in portable_dirs(root).values():
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.warning(f"[env] cannot create {path}: {exc}")


def portable_env(root: Path, env: Mapping[str, str]) -> dict[str, str]:
    """Redirect caches, temp dirs and the agent home inside ``root``."""
    dirs = portable_dirs(root)
    result = dict(env)
    result["PIP_CACHE_DIR"] = str(dirs["pip_cache"])
    result["PYTHONPYCACHEPREFIX"] = str(dirs["pycache"])
    result["TEMP"] = str(dirs["tmp"])
    result["TMP"] = str(dirs["tmp"])
    result["PYTHONNOUSERSITE"] = "1"
    result["CODEX_HOME"] = str(dirs["codex_home"])
    result["NPM_CONFIG_CACHE"] = str(dirs["npm_cache"])
    result["NPM_CONFIG_UPDATE_NOTIFIER"] = "false"
    return result


def sanitize_agent_env(
    env: Mapping[str, str],
    allow_api_key: bool = False,
    allow_custom_base: bool = False,
    is_windows: bool | None = None,
) -> dict[str, str]:
    """Drop API-key and base-URL overrides so the agent uses its own login.

    Names match case-insensitively on Windows.
    """
    windows = resolve_windows(is_windows)
    dropped: set[str] = set()
    if not allow_api_key:
        dropped.update(API_KEY_VARS)
    if not allow_custom_base:
        dropped.update(CUSTOM_BASE_VARS)
    result: dict[str, str] = {}
    for name, value in env.items():
        if (name.upper() if windows else name) in dropped:
            logger.debug(f"[env] removed {name} from agent environment")
            continue
        result[name] = value
    return result
