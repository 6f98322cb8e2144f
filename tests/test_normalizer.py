"""Tests for turning agent output lines into display items."""

from __future__ import annotations

import json

import pytest

from usbide.agent.capabilities import CapabilityNegotiator, FlagSupport
from usbide.agent.normalizer import (
    DisplayItem,
    DisplayKind,
    EventNormalizer,
    extract_display_items,
    extract_text_from_content,
    format_action,
)


def _line(record: dict) -> str:
    return json.dumps(record)


@pytest.fixture
def normalizer():
    return EventNormalizer()


# ---------------------------------------------------------------------------
# Record shapes
# ---------------------------------------------------------------------------


def test_item_completed_agent_message(normalizer):
    line = _line({"type": "item.completed", "item": {"type": "agent_message", "text": "Bonjour"}})
    assert normalizer.feed(line) == [DisplayItem(DisplayKind.ASSISTANT, "Bonjour")]


def test_message_with_content_parts(normalizer):
    line = _line({"type": "message", "role": "assistant", "content": [{"type": "output_text", "text": "Salut"}]})
    assert normalizer.feed(line) == [DisplayItem(DisplayKind.ASSISTANT, "Salut")]


def test_user_message_record():
    items = extract_display_items({"type": "message", "role": "user", "content": "hello"})
    assert items == [DisplayItem(DisplayKind.USER, "hello")]


def test_top_level_tool_call(normalizer):
    line = _line({"type": "tool_call", "name": "list_files", "arguments": {"path": "."}})
    assert normalizer.feed(line) == [DisplayItem(DisplayKind.ACTION, 'list_files: {"path":"."}')]


def test_nested_function_call(normalizer):
    line = _line(
        {
            "type": "item.completed",
            "item": {"type": "function_call", "name": "shell", "arguments": '{"cmd":"ls"}'},
        }
    )
    assert normalizer.feed(line) == [DisplayItem(DisplayKind.ACTION, 'shell: {"cmd":"ls"}')]


def test_assistant_text_with_tool_calls():
    record = {
        "type": "assistant_message",
        "text": "Working",
        "tool_calls": [{"name": "grep", "args": {"q": "x"}}],
    }
    assert extract_display_items(record) == [
        DisplayItem(DisplayKind.ASSISTANT, "Working"),
        DisplayItem(DisplayKind.ACTION, 'grep: {"q":"x"}'),
    ]


def test_payload_wrapper_is_scanned():
    record = {"type": "event_msg", "payload": {"type": "agent_message", "message": "Done"}}
    assert extract_display_items(record) == [DisplayItem(DisplayKind.ASSISTANT, "Done")]


def test_duplicates_within_one_record_collapse():
    record = {
        "type": "agent_message",
        "text": "same",
        "payload": {"type": "agent_message", "text": "same"},
    }
    assert extract_display_items(record) == [DisplayItem(DisplayKind.ASSISTANT, "same")]


def test_unknown_record_yields_nothing(normalizer):
    assert normalizer.feed(_line({"type": "turn.started"})) == []


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_extract_text_from_content_variants():
    assert extract_text_from_content("plain") == ["plain"]
    assert extract_text_from_content(["a", {"type": "text", "text": "b"}, {"type": "image"}]) == ["a", "b"]
    assert extract_text_from_content(None) == []


def test_format_action_description_only():
    assert format_action({"type": "action", "description": "Reading files"}) == "Reading files"


def test_format_action_name_falls_back_to_id():
    assert format_action({"type": "tool_call", "id": "call_1"}) == "call_1"


def test_format_action_ignores_plain_records():
    assert format_action({"type": "agent_message", "text": "x"}) is None


# ---------------------------------------------------------------------------
# Streaming and dedup
# ---------------------------------------------------------------------------


def test_deltas_are_buffered_until_completion(normalizer):
    assert normalizer.feed(_line({"type": "response.output_text.delta", "delta": "Hel"})) == []
    assert normalizer.feed(_line({"type": "response.output_text.delta", "delta": "lo"})) == []
    assert normalizer.buffered_text == "Hello"
    assert normalizer.feed(_line({"type": "response.completed"})) == [DisplayItem(DisplayKind.ASSISTANT, "Hello")]
    assert normalizer.buffered_text == ""


def test_flush_with_empty_buffer(normalizer):
    assert normalizer.flush() == []


def test_repeated_item_is_suppressed(normalizer):
    line = _line({"type": "user_message", "message": "hello"})
    assert normalizer.feed(line) == [DisplayItem(DisplayKind.USER, "hello")]
    assert normalizer.feed(line) == []


def test_same_text_different_kind_is_not_a_repeat(normalizer):
    assert normalizer.emit(DisplayKind.USER, "hi") is not None
    assert normalizer.emit(DisplayKind.ASSISTANT, "hi") is not None


def test_toggling_view_resets_fingerprint(normalizer):
    line = _line({"type": "user_message", "message": "hello"})
    normalizer.feed(line)
    normalizer.compact_view = True
    assert normalizer.feed(line) == [DisplayItem(DisplayKind.USER, "hello")]


# ---------------------------------------------------------------------------
# Non-JSON lines, errors and raw view
# ---------------------------------------------------------------------------


def test_plain_text_becomes_action_notice(normalizer):
    assert normalizer.feed("warming up") == [DisplayItem(DisplayKind.ACTION, "warming up")]


def test_non_object_json_passes_through(normalizer):
    assert normalizer.feed("[1, 2]") == [DisplayItem(DisplayKind.ACTION, "[1, 2]")]


def test_blank_lines_are_ignored(normalizer):
    assert normalizer.feed("   ") == []


def test_known_banner_is_translated(normalizer):
    assert normalizer.feed("Logged in using ChatGPT") == [DisplayItem(DisplayKind.ACTION, "Logged in with ChatGPT.")]


def test_error_record_with_status(normalizer):
    items = normalizer.feed(_line({"type": "error", "message": "unexpected status 401 Unauthorized"}))
    assert [item.kind for item in items] == [DisplayKind.ACTION, DisplayKind.ACTION]
    assert items[0].text == "Agent error HTTP 401."
    assert "401" in items[1].text


def test_turn_failed_without_status(normalizer):
    items = normalizer.feed(_line({"type": "turn.failed", "error": {"message": "stream closed"}}))
    assert items == [DisplayItem(DisplayKind.ACTION, "Turn failed: something went wrong. Check the log or retry later.")]


def test_raw_view_echoes_records():
    normalizer = EventNormalizer(compact_view=False)
    items = normalizer.feed('{"type": "x", "a": 1}')
    assert items == [DisplayItem(DisplayKind.LOG, '[x] {"type":"x","a":1}')]
    assert normalizer.feed("plain") == [DisplayItem(DisplayKind.LOG, "plain")]


def test_raw_view_does_not_buffer_deltas():
    normalizer = EventNormalizer(compact_view=False)
    items = normalizer.feed(_line({"type": "response.output_text.delta", "delta": "Hi"}))
    assert len(items) == 1
    assert items[0].kind is DisplayKind.LOG
    assert normalizer.buffered_text == ""


def test_raw_view_logs_are_never_deduplicated():
    normalizer = EventNormalizer(compact_view=False)
    assert normalizer.feed("same") and normalizer.feed("same")


# ---------------------------------------------------------------------------
# Flag rejections
# ---------------------------------------------------------------------------


def test_rejection_produces_one_notice_and_silences_replayed_run():
    negotiator = CapabilityNegotiator()
    negotiator.prepare()
    normalizer = EventNormalizer(negotiator)

    items = normalizer.feed("error: unexpected argument '--sandbox' found")
    assert len(items) == 1
    assert items[0].kind is DisplayKind.ACTION
    assert "--sandbox" in items[0].text
    assert negotiator.state.sandbox is FlagSupport.UNSUPPORTED

    assert normalizer.feed("Usage: codex exec --json --sandbox <SANDBOX_MODE> [PROMPT]") == []
    assert normalizer.feed("error: unexpected argument '--sandbox' found") == []


# ---------------------------------------------------------------------------
# Wrapped records seen in agent session logs
# ---------------------------------------------------------------------------


def test_response_item_payload_message(normalizer):
    line = _line(
        {
            "type": "response_item",
            "payload": {"type": "message", "role": "assistant", "content": [{"type": "output_text", "text": "Bonjour"}]},
        }
    )
    assert normalizer.feed(line) == [DisplayItem(DisplayKind.ASSISTANT, "Bonjour")]


def test_event_msg_payload_agent_message(normalizer):
    line = _line({"type": "event_msg", "payload": {"type": "agent_message", "message": "Salut"}})
    assert normalizer.feed(line) == [DisplayItem(DisplayKind.ASSISTANT, "Salut")]


# ---------------------------------------------------------------------------
# Malformed input
# ---------------------------------------------------------------------------


def test_deeply_nested_json_degrades_to_passthrough(normalizer):
    line = "[" * 100000 + "]" * 100000
    items = normalizer.feed(line)
    assert items == [DisplayItem(DisplayKind.ACTION, line)]


def test_lone_surrogate_is_replaced(normalizer):
    items = normalizer.feed('{"type":"message","role":"assistant","content":"bad \\ud83d tail"}')
    assert items == [DisplayItem(DisplayKind.ASSISTANT, "bad ? tail")]
    items[0].text.encode("utf-8")


def test_lone_surrogate_in_raw_view():
    normalizer = EventNormalizer(compact_view=False)
    items = normalizer.feed('{"type":"x","text":"\\udc00"}')
    assert items == [DisplayItem(DisplayKind.LOG, '[x] {"type":"x","text":"?"}')]
