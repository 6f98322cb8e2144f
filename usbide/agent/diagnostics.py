"""Human-readable translations of the agent CLI's own diagnostics."""

from __future__ import annotations

import re

from usbide.agent.capabilities import APPROVAL_FLAG, REJECTION_PHRASES

_STATUS_RE = re.compile(r"(?:unexpected status|last status[: ]+)\s*(\d{3})", re.IGNORECASE)
# Loose fallback: any standalone 3-digit token. Can misfire on ports or counts.
_ANY_CODE_RE = re.compile(r"\b(\d{3})\b")


def _rejects_argument(lower: str) -> bool:
    return any(phrase in lower for phrase in REJECTION_PHRASES)


def translate_line(line: str) -> str | None:
    """Map an argument-parser/banner line to a user-facing sentence.

    Rules are checked in order; the first hit wins. Returns ``None`` for
    lines the table does not know.
    """
    trimmed = line.strip()
    if not trimmed:
        return None
    lower = trimmed.lower()
    if APPROVAL_FLAG in lower and _rejects_argument(lower):
        return f"Error: option {APPROVAL_FLAG} is not recognised by this agent version."
    if lower.startswith("tip:") and APPROVAL_FLAG in lower:
        return f"Tip: to pass {APPROVAL_FLAG} as a value, use -- {APPROVAL_FLAG}."
    if lower.startswith("usage: codex exec"):
        return "Usage: codex exec --json --sandbox <SANDBOX_MODE> [PROMPT]."
    if lower.startswith("for more information") or "try '--help'" in lower:
        return "For more information, use --help."
    if lower.startswith("error:"):
        if _rejects_argument(lower):
            return "Error: unknown or invalid option. See --help."
        return "Error: invalid agent command. See --help."
    if lower.startswith("logged in using"):
        return "Logged in with ChatGPT."
    if lower.startswith("up to date in"):
        return "Up to date."
    return None


def extract_status_code(message: str) -> int | None:
    """HTTP-like status carried by an agent error message."""
    match = _STATUS_RE.search(message) or _ANY_CODE_RE.search(message)
    if match is None:
        return None
    return int(match.group(1))


def hint_for_status(status: int) -> str | None:
    if status == 401:
        return "401 = invalid authentication -> log in again (login) or `codex logout` then log in with ChatGPT."
    if status == 403:
        return "403 = access forbidden -> check the ChatGPT login (not an API key), permissions and network."
    if status == 407:
        return "407 = proxy authentication required -> configure HTTP_PROXY/HTTPS_PROXY."
    if status == 429:
        return "429 = rate limit -> retry later or slow down."
    if 500 <= status <= 599:
        return f"{status} = server error -> retry, possible incident on the provider side."
    return None


def describe_failure(message: str, heading: str) -> list[str]:
    """Notices for an error/turn-failed record: translation, status + hint, or generic."""
    translated = translate_line(message)
    if translated is not None:
        return [translated]
    status = extract_status_code(message)
    if status is None:
        return [f"{heading}: something went wrong. Check the log or retry later."]
    notices = [f"{heading} HTTP {status}."]
    hint = hint_for_status(status)
    notices.append(hint if hint is not None else "Unclassified status: retry later.")
    return notices
