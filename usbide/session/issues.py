"""Append-only issue journal (``<root>/bug.md``)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from loguru import logger

BUG_LOG_NAME = "bug.md"


def _now() -> str:
    return datetime.now().isoformat(timespec="seconds")


@dataclass(frozen=True)
class Issue:
    level: str  # "error" | "warning"
    context: str
    message: str
    details: str | None = None
    timestamp: str = ""

    def to_markdown(self) -> str:
        lines = [
            f"## {self.timestamp or _now()}",
            f"- level: {self.level}",
            f"- context: {self.context}",
            f"- message: {self.message}",
        ]
        if self.details:
            lines.append(f"- details: {self.details}")
        lines.append("")
        return "\n".join(lines) + "\n"


class IssueLog:
    """Records user-facing failures as markdown blocks."""

    def __init__(self, root: Path) -> None:
        self.path = root / BUG_LOG_NAME

    def record(self, level: str, message: str, context: str, details: str | None = None) -> Issue:
        issue = Issue(level=level, context=context, message=message, details=details, timestamp=_now())
        try:
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(issue.to_markdown())
        except OSError as exc:
            logger.warning(f"[issues] cannot append to {self.path}: {exc}")
        return issue
