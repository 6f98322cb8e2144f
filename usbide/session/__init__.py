"""Session orchestration (process bookkeeping, logs, issue journal)."""

from usbide.session.issues import IssueLog
from usbide.session.workbench import LogLine, LogTarget, ProcessKind, Workbench

__all__ = ["IssueLog", "LogLine", "LogTarget", "ProcessKind", "Workbench"]
