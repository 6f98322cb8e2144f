"""Orchestration of shell, Python and agent runs for one workspace.

The workbench owns everything that lives for the length of a session: the
capability negotiator, the event normalizer, the pending prompt, the
install-attempted flags, the live process handles and the two bounded log
panes. A front end calls the action methods and then ``poll()`` once per
tick of its own loop; nothing here blocks or starts threads besides the two
readers of each spawned child.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Callable, Mapping

from loguru import logger

from usbide.agent.capabilities import CapabilityNegotiator
from usbide.agent.diagnostics import translate_line
from usbide.agent.normalizer import DisplayItem, DisplayKind, EventNormalizer
from usbide.agent.registry import AgentDef, get_agent_def
from usbide.agent.resolver import (
    agent_cli_available,
    agent_entrypoint,
    agent_env,
    agent_exec_argv,
    agent_install_argv,
    agent_install_prefix,
    agent_login_argv,
    agent_status_argv,
    node_executable,
    node_tools_dir,
    resolve_in_env,
)
from usbide.config.loader import load_config
from usbide.config.schema import Config
from usbide.errors import EmptyCommandError, EmptyPromptError, ResolutionError, UsbideError
from usbide.runtime.commands import python_interpreter, python_run_argv, shell_argv
from usbide.runtime.environment import (
    base_environment,
    ensure_portable_dirs,
    portable_env,
    sanitize_agent_env,
)
from usbide.runtime.process import ProcessEvent, ProcessHandle, spawn
from usbide.session.issues import IssueLog
from usbide.tools.python_tools import (
    parse_tool_list,
    pip_install_argv,
    pyinstaller_available,
    pyinstaller_build_argv,
    pyinstaller_install_argv,
    tools_env,
    tools_install_prefix,
    wheelhouse_path,
)
from usbide.utils.wrap import wrap_text


class ProcessKind(StrEnum):
    SHELL = "shell"
    PYTHON = "python"
    AGENT_STATUS = "agent_status"
    AGENT_LOGIN = "agent_login"
    AGENT_EXEC = "agent_exec"
    AGENT_INSTALL = "agent_install"
    DEV_TOOLS = "dev_tools"
    PYINSTALLER_INSTALL = "pyinstaller_install"
    PYINSTALLER_BUILD = "pyinstaller_build"


class LogTarget(StrEnum):
    MAIN = "main"
    AGENT = "agent"


@dataclass(frozen=True)
class LogLine:
    target: LogTarget
    text: str
    style: str = ""  # rich style name


@dataclass
class RunningProcess:
    handle: ProcessHandle
    kind: ProcessKind
    target: LogTarget
    context: str


LogSink = Callable[[LogLine], None]

ITEM_STYLES = {
    DisplayKind.ASSISTANT: "green",
    DisplayKind.USER: "cyan",
    DisplayKind.ACTION: "yellow",
    DisplayKind.LOG: "",
}

# Processes whose line output may carry agent CLI banners worth translating.
_AGENT_HELPER_KINDS = (ProcessKind.AGENT_STATUS, ProcessKind.AGENT_LOGIN, ProcessKind.AGENT_INSTALL)


class Workbench:
    """Session-scoped orchestrator polled by a front end."""

    def __init__(
        self,
        root: Path,
        config: Config | None = None,
        base_env: Mapping[str, str] | None = None,
        sink: LogSink | None = None,
    ) -> None:
        self.root = Path(root).expanduser().resolve()
        self.config = config or load_config(self.root)
        self.agent: AgentDef = get_agent_def(self.config.agent.name)
        self.sink = sink
        self._base_env = dict(base_env) if base_env is not None else None

        self.negotiator = CapabilityNegotiator(
            sandbox_mode=self.config.agent.sandbox,
            approval_policy=self.config.agent.approval,
        )
        self.normalizer = EventNormalizer(self.negotiator, compact_view=self.config.agent.compact_view)
        self.issues = IssueLog(self.root)

        limit = self.config.ui.log_limit
        self.logs: dict[LogTarget, deque[LogLine]] = {
            LogTarget.MAIN: deque(maxlen=limit),
            LogTarget.AGENT: deque(maxlen=limit),
        }
        self.running: list[RunningProcess] = []
        self.pending_prompt: str | None = None
        self.last_prompt: str | None = None
        self.pending_build: Path | None = None
        self.agent_install_attempted = False
        self.pyinstaller_install_attempted = False
        self.error_count = 0

        ensure_portable_dirs(self.root)

    # ------------------------------------------------------------------
    # Environments
    # ------------------------------------------------------------------

    def base_env(self) -> dict[str, str]:
        return portable_env(self.root, base_environment(self._base_env))

    def agent_environment(self) -> dict[str, str]:
        env = sanitize_agent_env(
            self.base_env(),
            allow_api_key=self.config.agent.allow_api_key,
            allow_custom_base=self.config.agent.allow_custom_base,
        )
        return agent_env(self.root, env, self.agent)

    def tools_environment(self) -> dict[str, str]:
        return tools_env(self.root, self.base_env())

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def push_log(self, target: LogTarget, text: str, style: str = "") -> None:
        for raw in text.splitlines() or [""]:
            line = LogLine(target=target, text=raw, style=style)
            self.logs[target].append(line)
            if self.sink is not None:
                self.sink(line)

    def log_item(self, item: DisplayItem) -> None:
        style = ITEM_STYLES[item.kind]
        if item.kind is DisplayKind.LOG:
            self.push_log(LogTarget.AGENT, item.text, style)
            return
        lines = wrap_text(item.text, self.config.ui.wrap_width) or [""]
        self.push_log(LogTarget.AGENT, f"{item.kind.label}: {lines[0]}", style)
        for extra in lines[1:]:
            self.push_log(LogTarget.AGENT, f"  {extra}", style)

    def agent_notice(self, text: str) -> None:
        """Action item through the fingerprint filter."""
        item = self.normalizer.emit(DisplayKind.ACTION, text)
        if item is not None:
            self.log_item(item)

    def log_issue(
        self,
        message: str,
        level: str,
        context: str,
        target: LogTarget,
        details: str | None = None,
    ) -> None:
        self.push_log(target, message, "red" if level == "error" else "magenta")
        self.issues.record(level, message, context, details)
        if level == "error":
            self.error_count += 1
        logger.warning(f"[workbench] {context}: {message}")

    def clear_logs(self, target: LogTarget | None = None) -> None:
        targets = [target] if target is not None else list(self.logs)
        for name in targets:
            self.logs[name].clear()
        if target in (None, LogTarget.AGENT):
            self.normalizer.reset()

    # ------------------------------------------------------------------
    # Spawning
    # ------------------------------------------------------------------

    def _spawn(
        self,
        argv: list[str],
        env: Mapping[str, str],
        context: str,
        target: LogTarget,
        kind: ProcessKind,
    ) -> bool:
        try:
            handle = spawn(argv, cwd=self.root, env=env)
        except EmptyCommandError as exc:
            self.log_issue(f"Cannot run {context}: {exc}", "error", context, target)
            return False
        logger.debug(f"[workbench] started {kind.value} argv0={argv[0]}")
        self.running.append(RunningProcess(handle=handle, kind=kind, target=target, context=context))
        return True

    @property
    def is_busy(self) -> bool:
        return bool(self.running)

    # ------------------------------------------------------------------
    # Shell / Python
    # ------------------------------------------------------------------

    def run_shell(self, command: str) -> bool:
        if not command.strip():
            raise EmptyCommandError("shell command is empty")
        env = self.base_env()
        argv = shell_argv(command, env)
        self.push_log(LogTarget.MAIN, f"$ {command}", "bold")
        return self._spawn(argv, env, "shell", LogTarget.MAIN, ProcessKind.SHELL)

    def run_python(self, script: Path | str) -> bool:
        path = Path(script)
        if not path.is_absolute():
            path = self.root / path
        env = self.base_env()
        argv = python_run_argv(path, env, interpreter=self.config.tools.python or None)
        self.push_log(LogTarget.MAIN, f"$ {' '.join(argv)}", "bold")
        return self._spawn(argv, env, "python run", LogTarget.MAIN, ProcessKind.PYTHON)

    # ------------------------------------------------------------------
    # Agent
    # ------------------------------------------------------------------

    def ensure_node_available(self, env: Mapping[str, str], target: LogTarget) -> bool:
        if node_executable(self.root, env) is not None:
            return True
        expected = node_tools_dir(self.root)
        self.log_issue(
            f"Portable node runtime not found. Place node in {expected} (e.g. node.exe) or add node to PATH.",
            "error",
            "node",
            target,
        )
        return False

    def run_agent(self, prompt: str) -> None:
        """Submit a request: status check first, then exec with negotiated flags."""
        if not prompt.strip():
            raise EmptyPromptError()
        if self.normalizer.compact_view:
            item = self.normalizer.emit(DisplayKind.USER, prompt)
            if item is not None:
                self.log_item(item)
        env = self.agent_environment()
        if not agent_cli_available(self.root, env, self.agent):
            if not self.ensure_node_available(env, LogTarget.AGENT):
                return
            if self.install_agent(force=False):
                self.pending_prompt = prompt
            return

        self.pending_prompt = prompt
        argv = agent_status_argv(self.root, env, self.agent)
        self._spawn(argv, env, "agent status", LogTarget.AGENT, ProcessKind.AGENT_STATUS)

    def check_agent_status(self) -> None:
        env = self.agent_environment()
        node = node_executable(self.root, env)
        entry = agent_entrypoint(agent_install_prefix(self.root, self.agent), self.agent)
        on_path = resolve_in_env(self.agent.resolve_command(env), env)
        self.push_log(LogTarget.AGENT, f"node: {node or 'absent'}")
        self.push_log(LogTarget.AGENT, f"entrypoint: {entry or 'absent'}")
        self.push_log(LogTarget.AGENT, f"{self.agent.command} (PATH): {on_path or 'absent'}")
        argv = agent_status_argv(self.root, env, self.agent)
        self.push_log(LogTarget.AGENT, f"$ {' '.join(argv)}", "bold")
        self._spawn(argv, env, "agent status", LogTarget.AGENT, ProcessKind.AGENT_STATUS)

    def login_agent(self, device_auth: bool | None = None) -> None:
        device_auth = self.config.agent.device_auth if device_auth is None else device_auth
        env = self.agent_environment()
        if not agent_cli_available(self.root, env, self.agent):
            if not self.ensure_node_available(env, LogTarget.AGENT):
                return
            if self.install_agent(force=False):
                self.push_log(LogTarget.AGENT, "Agent install started; run login again once it finishes.")
            return
        self.push_log(LogTarget.AGENT, "Agent login: browser or device auth depending on config.")
        if not device_auth:
            self.push_log(
                LogTarget.AGENT,
                "Tip: if no browser opens, set USBIDE_AGENT__DEVICE_AUTH=1 and log in again.",
            )
        argv = agent_login_argv(self.root, env, device_auth, self.agent)
        self._spawn(argv, env, "agent login", LogTarget.AGENT, ProcessKind.AGENT_LOGIN)

    def install_agent(self, force: bool = False) -> bool:
        """Start the npm install; True when the agent is available or installing."""
        env = self.agent_environment()
        if not force and agent_cli_available(self.root, env, self.agent):
            return True
        if not force and self.agent_install_attempted:
            self.log_issue("Agent install already attempted (force to retry).", "warning", "agent install", LogTarget.AGENT)
            return False
        if not force and not self.config.agent.auto_install:
            self.log_issue("Agent auto-install is disabled (install it explicitly).", "warning", "agent install", LogTarget.AGENT)
            return False
        if not self.ensure_node_available(env, LogTarget.AGENT):
            return False

        self.agent_install_attempted = True
        prefix = agent_install_prefix(self.root, self.agent)
        try:
            prefix.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self.log_issue(f"Cannot create agent install dir {prefix} ({exc})", "error", "agent install", LogTarget.AGENT)
            return False
        package = self.config.agent.npm_package.strip() or self.agent.npm_package
        try:
            argv = agent_install_argv(self.root, prefix, package, env)
        except ResolutionError as exc:
            self.log_issue(str(exc), "error", "agent install", LogTarget.AGENT)
            return False
        except UsbideError as exc:
            self.log_issue(f"Agent install failed: {exc}", "error", "agent install", LogTarget.AGENT)
            return False
        logger.info(f"[workbench] installing {package} into {prefix}")
        self.push_log(LogTarget.AGENT, f"Installing {package} (prefix={prefix})")
        self.push_log(LogTarget.AGENT, f"$ {' '.join(argv)}", "bold")
        return self._spawn(argv, env, "agent install", LogTarget.AGENT, ProcessKind.AGENT_INSTALL)

    def _launch_exec(self, prompt: str) -> None:
        env = self.agent_environment()
        extra_args = self.negotiator.prepare()
        self.last_prompt = prompt
        try:
            argv = agent_exec_argv(prompt, self.root, env, True, extra_args, self.agent)
        except UsbideError as exc:
            self.log_issue(f"Agent error: {exc}", "error", "agent exec", LogTarget.AGENT)
            return
        logger.info(f"[workbench] agent exec flags={extra_args}")
        if not self.normalizer.compact_view:
            self.push_log(LogTarget.AGENT, f"$ {' '.join(argv)}", "bold")
        self._spawn(argv, env, "agent exec", LogTarget.AGENT, ProcessKind.AGENT_EXEC)

    # ------------------------------------------------------------------
    # Python tools
    # ------------------------------------------------------------------

    def _pip_python(self, env: Mapping[str, str]) -> str:
        return python_interpreter(env, self.config.tools.python or None)

    def install_dev_tools(self, raw: str | None = None) -> bool:
        tools = parse_tool_list(self.config.tools.dev_tools if raw is None else raw)
        if not tools:
            self.log_issue("Tool list is empty.", "warning", "dev tools", LogTarget.MAIN)
            return False
        env = self.tools_environment()
        prefix = tools_install_prefix(self.root)
        prefix.mkdir(parents=True, exist_ok=True)
        wheelhouse = wheelhouse_path(self.root)
        argv = pip_install_argv(prefix, tools, wheelhouse, wheelhouse is not None, self._pip_python(env))
        self.push_log(LogTarget.MAIN, f"$ {' '.join(argv)}", "bold")
        return self._spawn(argv, env, "dev tools install", LogTarget.MAIN, ProcessKind.DEV_TOOLS)

    def install_pyinstaller(self, force: bool = False) -> bool:
        env = self.tools_environment()
        if not force and pyinstaller_available(self.root, env):
            return True
        if not force and self.pyinstaller_install_attempted:
            return False
        self.pyinstaller_install_attempted = True
        prefix = tools_install_prefix(self.root)
        prefix.mkdir(parents=True, exist_ok=True)
        wheelhouse = wheelhouse_path(self.root)
        argv = pyinstaller_install_argv(prefix, wheelhouse, wheelhouse is not None, self._pip_python(env))
        self.push_log(LogTarget.MAIN, f"Installing PyInstaller (prefix={prefix})")
        self.push_log(LogTarget.MAIN, f"$ {' '.join(argv)}", "bold")
        return self._spawn(argv, env, "PyInstaller install", LogTarget.MAIN, ProcessKind.PYINSTALLER_INSTALL)

    def build_exe(self, script: Path | str) -> bool:
        path = Path(script)
        if not path.is_absolute():
            path = self.root / path
        if path.suffix.lower() != ".py" or not path.is_file():
            self.log_issue(f"Not a Python script: {path}", "warning", "exe build", LogTarget.MAIN)
            return False
        env = self.tools_environment()
        if not pyinstaller_available(self.root, env):
            if not self.install_pyinstaller(force=False):
                self.log_issue("PyInstaller unavailable.", "error", "exe build", LogTarget.MAIN)
                return False
            self.pending_build = path
            self.push_log(LogTarget.MAIN, "Build will start once PyInstaller is installed.")
            return True
        return self._launch_build(path)

    def _launch_build(self, path: Path) -> bool:
        dist_dir = self.root / "dist"
        dist_dir.mkdir(parents=True, exist_ok=True)
        argv = pyinstaller_build_argv(path, dist_dir, self.config.tools.onefile, self.root / "tmp")
        self.push_log(LogTarget.MAIN, f"$ {' '.join(argv)}", "bold")
        return self._spawn(argv, self.tools_environment(), "exe build", LogTarget.MAIN, ProcessKind.PYINSTALLER_BUILD)

    # ------------------------------------------------------------------
    # View toggles
    # ------------------------------------------------------------------

    def toggle_compact_view(self) -> bool:
        compact = not self.normalizer.compact_view
        self.normalizer.compact_view = compact
        self.config.agent.compact_view = compact
        self.push_log(LogTarget.AGENT, f"Agent view: {'compact' if compact else 'raw'}")
        return compact

    def cycle_sandbox_mode(self) -> None:
        mode = self.negotiator.sandbox_mode.next()
        self.negotiator.sandbox_mode = mode
        self.config.agent.sandbox = mode
        self.push_log(LogTarget.AGENT, f"Sandbox: {mode.label} ({mode.value})")

    def cycle_approval_policy(self) -> None:
        policy = self.negotiator.approval_policy.next()
        self.negotiator.approval_policy = policy
        self.config.agent.approval = policy
        self.push_log(LogTarget.AGENT, f"Approvals: {policy.label} ({policy.value})")

    # ------------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------------

    def poll(self, max_events: int = 500) -> int:
        """Drain every live handle without blocking; return events handled."""
        handled = 0
        active, self.running = self.running, []
        remaining: list[RunningProcess] = []
        done = 0
        try:
            for proc in active:
                finished = False
                # One event at a time so a raising handler leaves the rest queued.
                for _ in range(max_events):
                    event = proc.handle.try_recv()
                    if event is None:
                        break
                    handled += 1
                    if event.is_exit:
                        finished = True
                        self._on_exit(proc, event)
                    else:
                        self._on_line(proc, event.text)
                if not finished and not proc.handle.exited:
                    remaining.append(proc)
                done += 1
        finally:
            # Exit handlers may have started follow-up processes; handles not
            # fully processed when a handler raised stay live.
            self.running = remaining + active[done:] + self.running
        return handled

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Tick ``poll()`` until nothing is running; False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            self.poll()
            if not self.running:
                return True
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(self.config.ui.tick_s)

    def _on_line(self, proc: RunningProcess, line: str) -> None:
        if proc.kind is ProcessKind.AGENT_EXEC:
            for item in self.normalizer.feed(line):
                self.log_item(item)
            return
        if proc.kind in _AGENT_HELPER_KINDS:
            translated = translate_line(line)
            if translated is not None:
                self.push_log(proc.target, translated)
                return
        self.push_log(proc.target, line)

    def _on_exit(self, proc: RunningProcess, event: ProcessEvent) -> None:
        code = event.returncode
        proc.handle.join()
        replaying = proc.kind is ProcessKind.AGENT_EXEC and self.negotiator.retry_pending
        if event.text:
            self.log_issue(f"Failed to start {proc.context}: {event.text}", "error", proc.context, proc.target)
        elif code != 0 and not replaying:
            shown = "?" if code is None else code
            self.log_issue(f"{proc.context} terminated in error (rc={shown})", "error", proc.context, proc.target)

        handler = {
            ProcessKind.AGENT_STATUS: self._after_status,
            ProcessKind.AGENT_EXEC: self._after_exec,
            ProcessKind.AGENT_INSTALL: self._after_agent_install,
            ProcessKind.PYINSTALLER_INSTALL: self._after_pyinstaller_install,
        }.get(proc.kind)
        if handler is not None:
            handler(code)
        elif code == 0:
            self.push_log(proc.target, f"{proc.context} finished.", "green")

    def _after_status(self, code: int | None) -> None:
        prompt, self.pending_prompt = self.pending_prompt, None
        if prompt is None:
            if code == 0:
                self.push_log(LogTarget.AGENT, "Agent login status OK.", "green")
            return
        if code == 0:
            self._launch_exec(prompt)
            return
        self.agent_notice("Agent login check failed (status returned an error).")
        self.agent_notice("If you are not logged in, run login and try again.")
        self.agent_notice("If you are already logged in, check the installation and the network.")
        if not self.config.agent.device_auth:
            self.agent_notice("Tip: if no browser opens, set USBIDE_AGENT__DEVICE_AUTH=1 and log in again.")

    def _after_exec(self, code: int | None) -> None:
        if self.normalizer.compact_view:
            for item in self.normalizer.flush():
                self.log_item(item)
        self.negotiator.settle(code)
        if not self.negotiator.take_retry() or self.last_prompt is None:
            return
        logger.info("[workbench] replaying agent request with reduced flags")
        self._launch_exec(self.last_prompt)

    def _after_agent_install(self, code: int | None) -> None:
        env = self.agent_environment()
        if not agent_cli_available(self.root, env, self.agent):
            if self.pending_prompt is not None:
                self.pending_prompt = None
                self.log_issue("Agent still unavailable after install.", "error", "agent install", LogTarget.AGENT)
            return
        self.push_log(LogTarget.AGENT, "Agent installed.", "green")
        prompt, self.pending_prompt = self.pending_prompt, None
        if prompt is not None:
            self.run_agent(prompt)

    def _after_pyinstaller_install(self, code: int | None) -> None:
        path, self.pending_build = self.pending_build, None
        if path is None:
            return
        if not pyinstaller_available(self.root, self.tools_environment()):
            self.log_issue("PyInstaller unavailable.", "error", "exe build", LogTarget.MAIN)
            return
        self._launch_build(path)
