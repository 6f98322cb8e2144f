"""Word wrapping for the log panes."""

from __future__ import annotations

import textwrap

FENCE = "```"
MIN_WIDTH = 10


def hard_wrap(line: str, width: int) -> list[str]:
    """Slice ``line`` every ``width`` characters."""
    if width <= 0 or not line:
        return [line]
    return [line[start:start + width] for start in range(0, len(line), width)]


def wrap_line(line: str, width: int) -> list[str]:
    if len(line) <= width:
        return [line]
    wrapped = textwrap.wrap(
        line,
        width=width,
        break_long_words=False,
        break_on_hyphens=False,
    )
    lines: list[str] = []
    for piece in wrapped:
        # Words wider than the pane are sliced hard.
        lines.extend(hard_wrap(piece, width) if len(piece) > width else [piece])
    return lines or [""]


def wrap_text(text: str, width: int) -> list[str]:
    """Wrap prose to ``width`` columns.

    Lines inside ``` fences are kept byte-for-byte, blank lines stay as
    paragraph breaks, and words longer than the width are split hard.
    """
    width = max(width, MIN_WIDTH)
    lines: list[str] = []
    in_code_block = False

    for raw in text.splitlines():
        # Track code blocks; never rewrap inside them
        if raw.strip().startswith(FENCE):
            in_code_block = not in_code_block
            lines.append(raw)
            continue

        if in_code_block:
            lines.append(raw)
            continue

        if not raw.strip():
            lines.append("")
            continue

        lines.extend(wrap_line(raw, width))

    return lines
