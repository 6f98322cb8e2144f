"""Terminal UI: a main pane for shell/Python runs and an agent pane."""

from __future__ import annotations

from typing import Optional

from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import Input, Label, RichLog, Static

from usbide.errors import UsbideError
from usbide.session.workbench import LogLine, LogTarget, Workbench


class LogPane(Vertical):
    """Title, scrolling log and a one-line input."""

    def __init__(self, pane_id: str, title: str, placeholder: str) -> None:
        super().__init__(id=pane_id, classes="log-pane")
        self.title_text = title
        self.placeholder = placeholder
        self.rich_log: Optional[RichLog] = None

    def compose(self) -> ComposeResult:
        yield Label(self.title_text, classes="pane-title")
        self.rich_log = RichLog(wrap=True, markup=False, highlight=False, auto_scroll=True)
        yield self.rich_log
        yield Input(placeholder=self.placeholder, id=f"{self.id}-input")

    def write_line(self, line: LogLine) -> None:
        if self.rich_log:
            self.rich_log.write(Text(line.text, style=line.style or ""), scroll_end=True)

    def clear(self) -> None:
        if self.rich_log:
            self.rich_log.clear()


class UsbideApp(App):
    CSS = """
    Screen {
        background: #0b0f14;
        color: #d7e3f4;
    }

    #pane-row {
        height: 1fr;
        layout: horizontal;
    }

    .log-pane {
        width: 1fr;
        margin: 0 1;
        border: heavy #3b82f6;
        background: #0f1620;
    }

    .log-pane:focus-within {
        border: heavy #facc15;
    }

    .pane-title {
        height: 1;
        content-align: center middle;
        color: #facc15;
        background: #1e293b;
        text-style: bold;
    }

    .log-pane RichLog {
        height: 1fr;
        padding: 0 1;
    }

    #status-bar {
        dock: bottom;
        height: 1;
        background: #1e293b;
        color: #a5f3fc;
        padding: 0 1;
    }
    """

    ENABLE_COMMAND_PALETTE = False

    BINDINGS = [
        Binding("f2", "agent_status", "Agent status"),
        Binding("f3", "agent_login", "Login"),
        Binding("f4", "agent_install", "Install agent"),
        Binding("f5", "cycle_sandbox", "Sandbox"),
        Binding("f6", "cycle_approval", "Approvals"),
        Binding("f7", "toggle_view", "Compact/raw"),
        Binding("f8", "dev_tools", "Dev tools"),
        Binding("ctrl+l", "clear_logs", "Clear"),
        Binding("ctrl+q", "quit", "Quit"),
    ]

    def __init__(self, workbench: Workbench) -> None:
        super().__init__()
        self.workbench = workbench
        self.panes: dict[LogTarget, LogPane] = {}
        self._status_note = "Ready"

    def compose(self) -> ComposeResult:
        with Horizontal(id="pane-row"):
            yield LogPane("main", "MAIN", "shell command, or 'run <script.py>' / 'build <script.py>'")
            yield LogPane("agent", "AGENT", "request for the coding agent")
        yield Static("", id="status-bar")

    def on_mount(self) -> None:
        self.panes = {
            LogTarget.MAIN: self.query_one("#main", LogPane),
            LogTarget.AGENT: self.query_one("#agent", LogPane),
        }
        for target, lines in self.workbench.logs.items():
            for line in lines:
                self.panes[target].write_line(line)
        self.workbench.sink = self._on_log_line
        self.set_interval(self.workbench.config.ui.tick_s, self._tick)
        self.query_one("#main-input", Input).focus()
        self.refresh_status()

    def _on_log_line(self, line: LogLine) -> None:
        pane = self.panes.get(line.target)
        if pane is not None:
            pane.write_line(line)

    def _tick(self) -> None:
        if self.workbench.poll():
            self.refresh_status()

    def refresh_status(self) -> None:
        bench = self.workbench
        running = len(bench.running)
        view = "compact" if bench.normalizer.compact_view else "raw"
        self.query_one("#status-bar", Static).update(
            f"{self._status_note} | running: {running} | sandbox: {bench.negotiator.sandbox_mode.value}"
            f" | approvals: {bench.negotiator.approval_policy.value} | view: {view}"
        )

    def _note(self, text: str) -> None:
        self._status_note = text
        self.refresh_status()

    # ── input ──

    def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value.strip()
        event.input.value = ""
        if not text:
            return
        try:
            if event.input.id == "agent-input":
                self.workbench.run_agent(text)
                self._note("Agent request sent")
                return
            verb, _, rest = text.partition(" ")
            if verb == "run" and rest.strip():
                self.workbench.run_python(rest.strip())
            elif verb == "build" and rest.strip():
                self.workbench.build_exe(rest.strip())
            else:
                self.workbench.run_shell(text)
            self._note("Command started")
        except UsbideError as exc:
            self._note(str(exc))

    # ── actions ──

    def action_agent_status(self) -> None:
        self.workbench.check_agent_status()
        self._note("Checking agent status")

    def action_agent_login(self) -> None:
        self.workbench.login_agent()
        self._note("Agent login")

    def action_agent_install(self) -> None:
        self.workbench.install_agent(force=True)
        self._note("Installing agent")

    def action_cycle_sandbox(self) -> None:
        self.workbench.cycle_sandbox_mode()
        self.refresh_status()

    def action_cycle_approval(self) -> None:
        self.workbench.cycle_approval_policy()
        self.refresh_status()

    def action_toggle_view(self) -> None:
        self.workbench.toggle_compact_view()
        self.refresh_status()

    def action_dev_tools(self) -> None:
        self.workbench.install_dev_tools()
        self._note("Installing dev tools")

    def action_clear_logs(self) -> None:
        self.workbench.clear_logs()
        for pane in self.panes.values():
            pane.clear()
        self._note("Logs cleared")
