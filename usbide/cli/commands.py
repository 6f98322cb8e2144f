"""CLI commands for usbide."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import typer
from loguru import logger
from rich.console import Console

from usbide import __version__

if TYPE_CHECKING:
    from usbide.session.workbench import LogLine, Workbench

app = typer.Typer(
    name="usbide",
    help="usbide - portable IDE shell for shell, Python and coding-agent runs",
    no_args_is_help=True,
)
console = Console()

ROOT_OPTION = typer.Option(Path("."), "--root", "-r", help="Workspace root directory.")
TIMEOUT_OPTION = typer.Option(None, "--timeout", help="Give up waiting after N seconds.")


def version_callback(value: bool) -> None:
    if value:
        console.print(f"usbide v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Show diagnostic logging on stderr."),
) -> None:
    """usbide entrypoint."""
    del version
    if not verbose:
        logger.remove()


# ---------------------------------------------------------------------------
# Headless helpers
# ---------------------------------------------------------------------------


def _print_line(line: "LogLine") -> None:
    console.print(line.text, style=line.style or None, markup=False, highlight=False)


def _open_workbench(root: Path, **agent_overrides: object) -> "Workbench":
    from usbide.config.loader import load_config
    from usbide.session.workbench import Workbench

    config = load_config(root)
    for key, value in agent_overrides.items():
        if value is not None:
            setattr(config.agent, key, value)
    return Workbench(root, config=config, sink=_print_line)


def _finish(bench: "Workbench", timeout: float | None) -> None:
    if not bench.wait_idle(timeout):
        console.print(f"[yellow]Still running after {timeout}s; giving up.[/yellow]")
        raise typer.Exit(1)
    if bench.error_count:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def init(
    root: Path = ROOT_OPTION,
    force: bool = typer.Option(False, "--force", help="Overwrite existing config."),
) -> None:
    """Write a default config file and the portable directories."""
    from usbide.config.loader import get_config_path, load_config, save_config
    from usbide.runtime.environment import ensure_portable_dirs

    config_path = get_config_path(root)
    if config_path.exists() and not force:
        console.print(f"[yellow]Config already exists at {config_path} (use --force).[/yellow]")
        raise typer.Exit()
    save_config(load_config(root), root)
    ensure_portable_dirs(root)
    console.print(f"[green]OK[/green] Created config at {config_path}")


@app.command()
def info(root: Path = ROOT_OPTION) -> None:
    """Show workspace layout and agent resolution."""
    from usbide.agent.resolver import agent_cli_available, build_agent_argv, node_executable
    from usbide.config.loader import get_config_path
    from usbide.session.workbench import Workbench

    bench = Workbench(root)
    env = bench.agent_environment()
    config_path = get_config_path(bench.root)
    node = node_executable(bench.root, env)

    console.print("usbide Status\n")
    console.print(f"Config: {config_path} {'[green]OK[/green]' if config_path.exists() else '[dim]defaults[/dim]'}")
    console.print(f"Node: {node if node else '[red]absent[/red]'}")
    available = agent_cli_available(bench.root, env, bench.agent)
    console.print(f"{bench.agent.name}: {'[green]available[/green]' if available else '[red]missing[/red]'}")
    console.print(f"Command: [cyan]{' '.join(build_agent_argv(bench.root, env, bench.agent))}[/cyan]")
    console.print(f"Sandbox: [cyan]{bench.config.agent.sandbox.value}[/cyan]")
    console.print(f"Approvals: [cyan]{bench.config.agent.approval.value}[/cyan]")


@app.command()
def ask(
    prompt: str = typer.Argument(..., help="Request for the coding agent."),
    root: Path = ROOT_OPTION,
    sandbox: str = typer.Option(None, "--sandbox", "-s", help="read-only | workspace-write | danger-full-access"),
    approval: str = typer.Option(None, "--approval", "-a", help="untrusted | on-failure | on-request | never"),
    raw: bool = typer.Option(False, "--raw", help="Show raw agent records instead of the compact view."),
    timeout: float = TIMEOUT_OPTION,
) -> None:
    """Send one request to the coding agent and stream its answer."""
    from usbide.agent.capabilities import ApprovalPolicy, SandboxMode
    from usbide.errors import EmptyPromptError

    bench = _open_workbench(
        root,
        sandbox=SandboxMode.parse(sandbox) if sandbox else None,
        approval=ApprovalPolicy.parse(approval) if approval else None,
        compact_view=False if raw else None,
    )
    try:
        bench.run_agent(prompt)
    except EmptyPromptError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(2)
    _finish(bench, timeout)


@app.command()
def shell(
    command: str = typer.Argument(..., help="Command line for the platform shell."),
    root: Path = ROOT_OPTION,
    timeout: float = TIMEOUT_OPTION,
) -> None:
    """Run a shell command in the workspace."""
    from usbide.errors import EmptyCommandError

    bench = _open_workbench(root)
    try:
        bench.run_shell(command)
    except EmptyCommandError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(2)
    _finish(bench, timeout)


@app.command()
def run(
    script: Path = typer.Argument(..., help="Python script to execute."),
    root: Path = ROOT_OPTION,
    timeout: float = TIMEOUT_OPTION,
) -> None:
    """Run a Python script with the portable environment."""
    bench = _open_workbench(root)
    bench.run_python(script)
    _finish(bench, timeout)


@app.command()
def status(root: Path = ROOT_OPTION, timeout: float = TIMEOUT_OPTION) -> None:
    """Check the agent login status."""
    bench = _open_workbench(root)
    bench.check_agent_status()
    _finish(bench, timeout)


@app.command()
def login(
    root: Path = ROOT_OPTION,
    device_auth: bool = typer.Option(None, "--device-auth/--browser", help="Use device-code login."),
    timeout: float = TIMEOUT_OPTION,
) -> None:
    """Log the agent in (browser or device auth)."""
    bench = _open_workbench(root)
    bench.login_agent(device_auth)
    _finish(bench, timeout)


@app.command()
def install(
    root: Path = ROOT_OPTION,
    force: bool = typer.Option(False, "--force", help="Reinstall even if the agent is present."),
    timeout: float = TIMEOUT_OPTION,
) -> None:
    """Install the agent CLI into the workspace with the portable node."""
    bench = _open_workbench(root)
    if not bench.install_agent(force=force):
        raise typer.Exit(1)
    if not bench.is_busy:
        console.print(f"[green]OK[/green] {bench.agent.name} already available")
    _finish(bench, timeout)


@app.command("dev-tools")
def dev_tools(
    tools: str = typer.Argument(None, help="Comma or space separated packages (default from config)."),
    root: Path = ROOT_OPTION,
    timeout: float = TIMEOUT_OPTION,
) -> None:
    """Install Python dev tools into the workspace tools prefix."""
    bench = _open_workbench(root)
    if not bench.install_dev_tools(tools):
        raise typer.Exit(1)
    _finish(bench, timeout)


@app.command()
def build(
    script: Path = typer.Argument(..., help="Python script to package."),
    root: Path = ROOT_OPTION,
    onefile: bool = typer.Option(None, "--onefile/--onedir", help="Single-file executable."),
    timeout: float = TIMEOUT_OPTION,
) -> None:
    """Package a script with PyInstaller (installed on demand)."""
    bench = _open_workbench(root)
    if onefile is not None:
        bench.config.tools.onefile = onefile
    if not bench.build_exe(script):
        raise typer.Exit(1)
    _finish(bench, timeout)


@app.command()
def tui(root: Path = ROOT_OPTION) -> None:
    """Start the terminal UI."""
    from usbide.session.workbench import Workbench
    from usbide.tui.app import UsbideApp

    UsbideApp(Workbench(root)).run()
