"""Turn the agent's line-oriented output into display items.

The agent prints a mix of free text and one-JSON-object-per-line records
whose shapes vary between releases. Classification is a flat list of shape
matchers applied to a record and, recursively, to its nested ``payload``,
``item`` and tool-call containers; the results are concatenated and
deduplicated on ``(kind, text)``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Callable, Iterable

from loguru import logger

from usbide.agent.capabilities import CapabilityNegotiator
from usbide.agent.diagnostics import describe_failure, translate_line


class DisplayKind(StrEnum):
    ASSISTANT = "assistant"
    USER = "user"
    ACTION = "action"
    LOG = "log"

    @property
    def label(self) -> str:
        return {
            DisplayKind.ASSISTANT: "Agent",
            DisplayKind.USER: "You",
            DisplayKind.ACTION: "Action",
            DisplayKind.LOG: "",
        }[self]


@dataclass(frozen=True)
class DisplayItem:
    kind: DisplayKind
    text: str


TEXT_PART_TYPES = ("output_text", "output_markdown", "text", "input_text")
ASSISTANT_RECORD_TYPES = ("agent_message", "assistant_message")
USER_RECORD_TYPES = ("user_message", "user")
ACTION_TYPES = ("tool_call", "function_call", "action", "tool")
NAME_FIELDS = ("name", "tool", "tool_name")
ARGS_FIELDS = ("arguments", "args", "input", "parameters")

DELTA_TYPES = ("response.output_text.delta", "response.output_text")
FLUSH_TYPES = ("response.output_text.done", "response.output_item.done", "response.completed")
OUTPUT_TEXT_TYPES = ("response.output_text.done", "response.output_text")

# Nesting deeper than this is not produced by any known agent release.
MAX_DEPTH = 6


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _first(record: dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if key in record:
            return record[key]
    return None


def _text_items(kind: DisplayKind, texts: Iterable[Any]) -> list[DisplayItem]:
    return [DisplayItem(kind, text) for text in texts if isinstance(text, str) and text]


def extract_text_from_content(content: Any) -> list[str]:
    """Text fragments of a content value: typed parts, bare strings, or a string."""
    if isinstance(content, str):
        return [content] if content else []
    if not isinstance(content, list):
        return []
    texts: list[str] = []
    for part in content:
        if isinstance(part, str):
            if part:
                texts.append(part)
            continue
        if not isinstance(part, dict) or part.get("type") not in TEXT_PART_TYPES:
            continue
        text = _first(part, ("text", "content"))
        if isinstance(text, str) and text:
            texts.append(text)
    return texts


def _render_scalar(value: Any) -> str:
    if isinstance(value, str):
        return value.strip('"')
    return json.dumps(value, ensure_ascii=False).strip('"')


def format_action(record: dict[str, Any]) -> str | None:
    """``"name: args"`` for tool/function-call shaped records."""
    raw_type = str(record.get("type") or "").lower()
    has_name = any(key in record for key in NAME_FIELDS)
    has_args = any(key in record for key in ARGS_FIELDS)
    if raw_type not in ACTION_TYPES and not (has_name and has_args):
        return None

    name = _first(record, (*NAME_FIELDS, "id"))
    args = _first(record, ARGS_FIELDS)

    description = _first(record, ("message", "description"))
    if name is None and not has_args and isinstance(description, str) and description.strip():
        return description.strip()

    name_text = _render_scalar(name) if name is not None else ""
    if has_args:
        if isinstance(args, (dict, list)):
            args_text = json.dumps(args, separators=(",", ":"), ensure_ascii=False)
        else:
            args_text = _render_scalar(args)
    else:
        args_text = ""

    if name_text and has_args:
        return f"{name_text}: {args_text}"
    if name_text:
        return name_text
    return args_text or None


# ---------------------------------------------------------------------------
# Shape matchers: each maps one record to zero or more items
# ---------------------------------------------------------------------------


def _match_message(record: dict[str, Any]) -> list[DisplayItem]:
    if record.get("type") != "message":
        return []
    role = record.get("role")
    if role == "assistant":
        kind = DisplayKind.ASSISTANT
    elif role == "user":
        kind = DisplayKind.USER
    else:
        return []
    texts = extract_text_from_content(record.get("content"))
    if texts:
        return _text_items(kind, texts)
    return _text_items(kind, [record.get("message")])


def _match_role_record(record: dict[str, Any]) -> list[DisplayItem]:
    record_type = record.get("type")
    if record_type in ASSISTANT_RECORD_TYPES:
        kind = DisplayKind.ASSISTANT
    elif record_type in USER_RECORD_TYPES:
        kind = DisplayKind.USER
    else:
        return []
    texts = extract_text_from_content(record.get("content"))
    return _text_items(kind, [*texts, record.get("text"), record.get("message")])


def _match_output_text(record: dict[str, Any]) -> list[DisplayItem]:
    if record.get("type") not in OUTPUT_TEXT_TYPES:
        return []
    return _text_items(DisplayKind.ASSISTANT, [record.get("text")])


def _match_action(record: dict[str, Any]) -> list[DisplayItem]:
    if record.get("type") == "message":
        return []
    action = format_action(record)
    return [DisplayItem(DisplayKind.ACTION, action)] if action else []


MATCHERS: tuple[Callable[[dict[str, Any]], list[DisplayItem]], ...] = (
    _match_message,
    _match_role_record,
    _match_output_text,
    _match_action,
)


def iter_tool_calls(record: dict[str, Any]) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []
    single = record.get("tool_call")
    if isinstance(single, dict):
        calls.append(single)
    listed = record.get("tool_calls")
    if listed is None:
        listed = record.get("tools")
    if isinstance(listed, list):
        calls.extend(call for call in listed if isinstance(call, dict))
    return calls


def _scan(record: Any, depth: int) -> list[DisplayItem]:
    if not isinstance(record, dict) or depth > MAX_DEPTH:
        return []
    items: list[DisplayItem] = []
    for matcher in MATCHERS:
        items.extend(matcher(record))
    for key in ("payload", "item"):
        items.extend(_scan(record.get(key), depth + 1))
    for call in iter_tool_calls(record):
        items.extend(_scan(call, depth + 1))
    return items


def dedup_items(items: Iterable[DisplayItem]) -> list[DisplayItem]:
    seen: set[tuple[DisplayKind, str]] = set()
    unique: list[DisplayItem] = []
    for item in items:
        key = (item.kind, item.text)
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def extract_display_items(record: dict[str, Any]) -> list[DisplayItem]:
    """All display items carried by one parsed JSON record."""
    return dedup_items(_scan(record, 0))


# ---------------------------------------------------------------------------
# Stateful per-session normalizer
# ---------------------------------------------------------------------------


class EventNormalizer:
    """Feed agent output lines, get display items back.

    Holds the streamed-text buffer and the last emitted fingerprint. In
    compact view, recognised records become Assistant/User/Action items; in
    raw view, records are echoed as ``LOG`` items.
    """

    def __init__(
        self,
        negotiator: CapabilityNegotiator | None = None,
        compact_view: bool = True,
    ) -> None:
        self.negotiator = negotiator
        self._compact_view = compact_view
        self._buffer: list[str] = []
        self._last_fingerprint: str | None = None

    @property
    def compact_view(self) -> bool:
        return self._compact_view

    @compact_view.setter
    def compact_view(self, value: bool) -> None:
        self._compact_view = value
        self._last_fingerprint = None

    @property
    def buffered_text(self) -> str:
        return "".join(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()
        self._last_fingerprint = None

    # ── emission ──

    def emit(self, kind: DisplayKind, text: str) -> DisplayItem | None:
        """Return the item unless it repeats the previous one."""
        # Lone surrogates from truncated JSON escapes cannot be written out as UTF-8.
        cleaned = text.encode("utf-8", "replace").decode("utf-8").strip()
        if not cleaned:
            return None
        if kind is DisplayKind.LOG:
            return DisplayItem(kind, cleaned)
        fingerprint = f"{kind.value}:{cleaned}"
        if fingerprint == self._last_fingerprint:
            return None
        self._last_fingerprint = fingerprint
        return DisplayItem(kind, cleaned)

    def _emit_all(self, items: Iterable[DisplayItem]) -> list[DisplayItem]:
        emitted: list[DisplayItem] = []
        for item in items:
            result = self.emit(item.kind, item.text)
            if result is not None:
                emitted.append(result)
        return emitted

    def _notice(self, text: str) -> list[DisplayItem]:
        kind = DisplayKind.ACTION if self._compact_view else DisplayKind.LOG
        return self._emit_all([DisplayItem(kind, text)])

    def flush(self) -> list[DisplayItem]:
        """Turn the streamed-text buffer into one Assistant item."""
        if not self._buffer:
            return []
        text = self.buffered_text
        self._buffer.clear()
        return self._emit_all([DisplayItem(DisplayKind.ASSISTANT, text)])

    # ── classification ──

    def feed(self, line: str) -> list[DisplayItem]:
        trimmed = line.strip()
        if not trimmed:
            return []

        if self.negotiator is not None:
            rejection = self.negotiator.observe_line(trimmed)
            if rejection is not None:
                if not rejection.first_time:
                    return []
                return self._emit_all([DisplayItem(DisplayKind.ACTION, rejection.notice)])
            # Output of an invocation that will be replayed is noise.
            if self.negotiator.retry_pending:
                return []

        translated = translate_line(trimmed)
        if translated is not None:
            return self._notice(translated)

        try:
            record = json.loads(trimmed)
        except (ValueError, RecursionError):
            record = None
        if not isinstance(record, dict):
            return self._notice(trimmed)

        event_type = str(record.get("type") or "")
        if self._compact_view:
            if event_type in DELTA_TYPES:
                delta = record.get("delta")
                if delta is None:
                    delta = record.get("text")
                if isinstance(delta, str) and delta:
                    self._buffer.append(delta)
                return []
            if event_type in FLUSH_TYPES:
                return self.flush()

        if event_type == "error":
            message = record.get("message")
            return self._failure(message if isinstance(message, str) else "", "Agent error")

        if event_type == "turn.failed":
            error = record.get("error")
            message = _first(error, ("message", "text")) if isinstance(error, dict) else None
            return self._failure(message if isinstance(message, str) else "", "Turn failed")

        if self._compact_view:
            items = extract_display_items(record)
            if not items:
                logger.debug(f"[normalizer] no display items for type={event_type or '?'}")
            return self._emit_all(items)

        raw = json.dumps(record, separators=(",", ":"), ensure_ascii=False)
        return self._emit_all([DisplayItem(DisplayKind.LOG, f"[{event_type}] {raw}" if event_type else raw)])

    def _failure(self, message: str, heading: str) -> list[DisplayItem]:
        if not self._compact_view:
            return self._emit_all([DisplayItem(DisplayKind.LOG, f"{heading}.")])
        notices = describe_failure(message, heading)
        return self._emit_all(DisplayItem(DisplayKind.ACTION, notice) for notice in notices)
