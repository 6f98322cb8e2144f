"""Tests for agent resolution, search-path lookup and command vectors."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from conftest import make_executable
from usbide.agent.registry import get_agent_def
from usbide.agent.resolver import (
    agent_cli_available,
    agent_entrypoint,
    agent_env,
    agent_exec_argv,
    agent_install_argv,
    agent_install_prefix,
    agent_login_argv,
    agent_package_json,
    agent_status_argv,
    build_agent_argv,
    locate_on_path,
    node_executable,
)
from usbide.errors import EmptyPackageError, EmptyPromptError, NodeMissingError, NpmMissingError
from usbide.runtime.commands import path_for_cmd, shell_argv, windows_cmd_argv
from usbide.runtime.environment import env_lookup, prepend_path, sanitize_agent_env


def _write_manifest(root: Path, bin_field: object, entry: str = "bin/codex.js") -> Path:
    prefix = agent_install_prefix(root)
    manifest = agent_package_json(prefix)
    manifest.parent.mkdir(parents=True, exist_ok=True)
    manifest.write_text(json.dumps({"name": "@openai/codex", "bin": bin_field}), encoding="utf-8")
    script = manifest.parent / entry
    script.parent.mkdir(parents=True, exist_ok=True)
    script.write_text("// entry\n", encoding="utf-8")
    return script


def _portable_node(root: Path) -> Path:
    node = root / "tools" / "node" / "bin" / "node"
    make_executable(node, "#!/bin/sh\n")
    return node


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def test_registry_default_agent():
    agent = get_agent_def()
    assert agent.command == "codex"
    assert agent.package_parts == ("@openai", "codex")


def test_registry_rejects_unknown_agent():
    with pytest.raises(ValueError):
        get_agent_def("nope")


def test_command_override_from_env():
    agent = get_agent_def()
    assert agent.resolve_command({"USBIDE_CODEX_CMD": "  my-codex "}) == "my-codex"
    assert agent.resolve_command({"USBIDE_CODEX_CMD": "   "}) == "codex"
    assert agent.resolve_command(None) == "codex"


# ---------------------------------------------------------------------------
# Search-path lookup
# ---------------------------------------------------------------------------


def test_locate_on_path_first_directory_wins(tmp_path):
    first, second = tmp_path / "a", tmp_path / "b"
    make_executable(first / "tool")
    make_executable(second / "tool")
    found = locate_on_path("tool", f"{first}:{second}", is_windows=False)
    assert found == first / "tool"


def test_locate_on_path_missing(tmp_path):
    assert locate_on_path("tool", str(tmp_path), is_windows=False) is None
    assert locate_on_path("", str(tmp_path), is_windows=False) is None
    assert locate_on_path("tool", None, is_windows=False) is None


def test_locate_on_path_checks_paths_directly(tmp_path):
    target = tmp_path / "direct"
    make_executable(target)
    assert locate_on_path(str(target), "", is_windows=False) == target
    assert locate_on_path(str(tmp_path / "absent"), "", is_windows=False) is None


def test_locate_on_path_tries_pathext_on_windows(tmp_path):
    make_executable(tmp_path / "codex.cmd")
    found = locate_on_path("codex", str(tmp_path), is_windows=True)
    assert found == tmp_path / "codex.cmd"


def test_locate_on_path_respects_custom_pathext(tmp_path):
    make_executable(tmp_path / "codex.bat")
    assert locate_on_path("codex", str(tmp_path), is_windows=True, pathext=".EXE") is None
    assert locate_on_path("codex", str(tmp_path), is_windows=True, pathext=".EXE;.BAT") == tmp_path / "codex.bat"


# ---------------------------------------------------------------------------
# build_agent_argv
# ---------------------------------------------------------------------------


def test_cmd_shim_is_wrapped_in_command_processor(tmp_path):
    make_executable(tmp_path / "codex.cmd")
    env = {"PATH": str(tmp_path), "COMSPEC": "C:\\Windows\\system32\\cmd.exe"}
    argv = build_agent_argv(None, env, is_windows=True)
    assert argv == ["C:\\Windows\\system32\\cmd.exe", "/d", "/s", "/c", str(tmp_path / "codex.cmd")]


def test_ps1_shim_runs_through_powershell(tmp_path):
    make_executable(tmp_path / "codex.ps1")
    env = {"PATH": str(tmp_path), "PATHEXT": ".PS1"}
    argv = build_agent_argv(None, env, is_windows=True)
    assert argv[0] == "powershell"
    assert argv[1:5] == ["-NoProfile", "-ExecutionPolicy", "Bypass", "-File"]
    assert argv[-1] == str(tmp_path / "codex.ps1")


def test_plain_executable_on_path(tmp_path):
    make_executable(tmp_path / "bin" / "codex")
    argv = build_agent_argv(None, {"PATH": str(tmp_path / "bin")}, is_windows=False)
    assert argv == [str(tmp_path / "bin" / "codex")]


def test_falls_back_to_bare_command(tmp_path):
    assert build_agent_argv(tmp_path, {"PATH": ""}, is_windows=False) == ["codex"]


def test_portable_node_and_entrypoint_win(tmp_path):
    node = _portable_node(tmp_path)
    entry = _write_manifest(tmp_path, {"codex": "bin/codex.js"})
    argv = build_agent_argv(tmp_path, {"PATH": ""}, is_windows=False)
    assert argv == [str(node), str(entry)]
    assert agent_cli_available(tmp_path, {"PATH": ""}, is_windows=False)


def test_manifest_bin_as_string(tmp_path):
    entry = _write_manifest(tmp_path, "bin/codex.js")
    assert agent_entrypoint(agent_install_prefix(tmp_path)) == entry


def test_manifest_bin_first_string_value(tmp_path):
    entry = _write_manifest(tmp_path, {"other": "bin/codex.js"})
    assert agent_entrypoint(agent_install_prefix(tmp_path)) == entry


def test_manifest_invalid_json(tmp_path):
    prefix = agent_install_prefix(tmp_path)
    manifest = agent_package_json(prefix)
    manifest.parent.mkdir(parents=True)
    manifest.write_text("{broken", encoding="utf-8")
    assert agent_entrypoint(prefix) is None


def test_manifest_entry_must_exist(tmp_path):
    prefix = agent_install_prefix(tmp_path)
    manifest = agent_package_json(prefix)
    manifest.parent.mkdir(parents=True)
    manifest.write_text(json.dumps({"bin": {"codex": "bin/missing.js"}}), encoding="utf-8")
    assert agent_entrypoint(prefix) is None


def test_windows_shim_needs_node(tmp_path):
    shims = tmp_path / "shims"
    make_executable(shims / "codex.cmd")
    env = {"PATH": str(shims)}
    assert not agent_cli_available(None, env, is_windows=True)
    make_executable(shims / "node.exe")
    assert agent_cli_available(None, env, is_windows=True)


# ---------------------------------------------------------------------------
# Subcommand vectors
# ---------------------------------------------------------------------------


def test_exec_argv_layout(tmp_path):
    argv = agent_exec_argv(
        "fix the bug",
        tmp_path,
        {"PATH": ""},
        extra_args=["--sandbox", "read-only"],
        is_windows=False,
    )
    assert argv == ["codex", "exec", "--json", "--sandbox", "read-only", "fix the bug"]


def test_exec_argv_guards_prompts_that_look_like_options(tmp_path):
    argv = agent_exec_argv("-h please", tmp_path, {"PATH": ""}, is_windows=False)
    assert argv[-2:] == ["--", "-h please"]


def test_exec_argv_rejects_blank_prompt(tmp_path):
    with pytest.raises(EmptyPromptError):
        agent_exec_argv("   ", tmp_path, {"PATH": ""}, is_windows=False)


def test_login_and_status_argv(tmp_path):
    env = {"PATH": ""}
    assert agent_login_argv(tmp_path, env, is_windows=False) == ["codex", "login"]
    assert agent_login_argv(tmp_path, env, device_auth=True, is_windows=False) == ["codex", "login", "--device-auth"]
    assert agent_status_argv(tmp_path, env, is_windows=False) == ["codex", "login", "status"]


# ---------------------------------------------------------------------------
# Install vector
# ---------------------------------------------------------------------------


def test_install_argv_requires_node(tmp_path):
    with pytest.raises(NodeMissingError) as excinfo:
        agent_install_argv(tmp_path, tmp_path / "prefix", "@openai/codex", {"PATH": ""}, is_windows=False)
    assert "tools" in str(excinfo.value)


def test_install_argv_requires_npm(tmp_path):
    _portable_node(tmp_path)
    with pytest.raises(NpmMissingError):
        agent_install_argv(tmp_path, tmp_path / "prefix", "@openai/codex", {"PATH": ""}, is_windows=False)


def test_install_argv_rejects_blank_package(tmp_path):
    with pytest.raises(EmptyPackageError):
        agent_install_argv(tmp_path, tmp_path / "prefix", " ", {"PATH": ""}, is_windows=False)


def test_install_argv_with_bundled_npm(tmp_path):
    node = tmp_path / "tools" / "node" / "node"
    make_executable(node)
    npm = tmp_path / "tools" / "node" / "node_modules" / "npm" / "bin" / "npm-cli.js"
    make_executable(npm)
    prefix = tmp_path / ".usbide" / "codex"
    argv = agent_install_argv(tmp_path, prefix, "@openai/codex", {"PATH": ""}, is_windows=False)
    assert argv == [str(node), str(npm), "install", "--prefix", str(prefix), "--no-audit", "--no-fund", "@openai/codex"]


def test_node_executable_prefers_portable(tmp_path):
    node = _portable_node(tmp_path)
    other = tmp_path / "elsewhere"
    make_executable(other / "node")
    assert node_executable(tmp_path, {"PATH": str(other)}, is_windows=False) == node


# ---------------------------------------------------------------------------
# Environment maps
# ---------------------------------------------------------------------------


def test_agent_env_prepends_shims_without_mutating_input(tmp_path):
    base = {"PATH": "/usr/bin", "HOME": "/home/x"}
    env = agent_env(tmp_path, base, is_windows=False)
    parts = env["PATH"].split(":")
    assert parts[0] == str(agent_install_prefix(tmp_path) / "node_modules" / ".bin")
    assert parts[1] == str(tmp_path / "tools" / "node")
    assert parts[-1] == "/usr/bin"
    assert base == {"PATH": "/usr/bin", "HOME": "/home/x"}


def test_prepend_path_skips_duplicates():
    env = prepend_path({"PATH": "/a:/b"}, "/b", is_windows=False)
    assert env["PATH"] == "/a:/b"


def test_prepend_path_folds_windows_key_case():
    env = prepend_path({"Path": "C:\\bin"}, "C:\\tools", is_windows=True)
    assert env == {"PATH": "C:\\tools;C:\\bin"}


def test_env_lookup_case_rules():
    env = {"Path": "x"}
    assert env_lookup(env, "PATH", is_windows=True) == "x"
    assert env_lookup(env, "PATH", is_windows=False) is None


def test_sanitize_agent_env():
    env = {"OPENAI_API_KEY": "k", "OPENAI_BASE_URL": "u", "KEEP": "1"}
    assert sanitize_agent_env(env) == {"KEEP": "1"}
    assert sanitize_agent_env(env, allow_api_key=True) == {"OPENAI_API_KEY": "k", "KEEP": "1"}
    assert "OPENAI_API_KEY" in env


def test_sanitize_agent_env_ignores_case_on_windows():
    env = {"openai_api_key": "k", "Openai_Base_Url": "u", "Path": "C:\\bin"}
    assert sanitize_agent_env(env, is_windows=True) == {"Path": "C:\\bin"}
    assert sanitize_agent_env(env, is_windows=False) == env


# ---------------------------------------------------------------------------
# Shell helpers
# ---------------------------------------------------------------------------


def test_path_for_cmd_strips_extended_prefixes():
    assert path_for_cmd("\\\\?\\C:\\work\\x", is_windows=True) == "C:\\work\\x"
    assert path_for_cmd("\\\\?\\UNC\\server\\share", is_windows=True) == "\\\\server\\share"
    assert path_for_cmd("\\\\?\\C:\\x", is_windows=False) == "\\\\?\\C:\\x"


def test_windows_cmd_argv_defaults_to_cmd_exe():
    assert windows_cmd_argv("dir", {}) == ["cmd.exe", "/d", "/s", "/c", "dir"]


def test_shell_argv_platforms():
    assert shell_argv("echo hi", {}, is_windows=False) == ["sh", "-lc", "echo hi"]
    assert shell_argv("echo hi", {"ComSpec": "C:\\cmd.exe"}, is_windows=True)[0] == "C:\\cmd.exe"


@pytest.mark.skipif(os.name == "nt", reason="POSIX layout")
def test_status_uses_portable_install_when_present(tmp_path):
    node = _portable_node(tmp_path)
    entry = _write_manifest(tmp_path, {"codex": "bin/codex.js"})
    assert agent_status_argv(tmp_path, {"PATH": ""}) == [str(node), str(entry), "login", "status"]
