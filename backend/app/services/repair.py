"""Best-effort recovery of JSON text returned by language models.

Model output regularly arrives with stray quotes inside string values, raw
newlines, a token-limit truncation, or prose around the object. `repair`
tries progressively looser fixes and never raises: callers get either the
parsed value or a failure payload carrying the raw text.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

INVALID_INPUT = "Invalid response format"
PARSE_FAILED = "Failed to parse JSON response"

_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}
_TRAILING_COMMA_RE = re.compile(r",\s*$")
_CLOSER = {"{": "}", "[": "]"}


@dataclass(frozen=True)
class RepairFailure:
    error: str
    original_error: Optional[str]
    raw_response: Any

    def as_dict(self) -> dict[str, Any]:
        return {
            "error": self.error,
            "originalError": self.original_error,
            "rawResponse": self.raw_response,
        }


@dataclass(frozen=True)
class RepairResult:
    value: Any = None
    failure: Optional[RepairFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


def _strip_code_fences(text: str) -> str:
    """Remove common Markdown code fences while preserving inner content."""
    t = text.strip()
    t = re.sub(r"^```(?:json)?\s*\n", "", t, flags=re.IGNORECASE)
    t = re.sub(r"\n?```\s*$", "", t)
    return t.strip()


def _closes_string(text: str, idx: int) -> bool:
    # A quote ends the string when JSON structure follows it.
    j = idx + 1
    while j < len(text) and text[j] in " \t\r\n":
        j += 1
    return j >= len(text) or text[j] in ",:}]"


def fix_unescaped_quotes(text: str) -> str:
    """Escape stray quotes and raw control whitespace inside string literals."""

    out: list[str] = []
    in_string = False
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if not in_string:
            if ch == '"':
                in_string = True
            out.append(ch)
        elif ch == "\\" and i + 1 < n:
            out.append(ch)
            out.append(text[i + 1])
            i += 1
        elif ch == '"':
            if _closes_string(text, i):
                in_string = False
                out.append(ch)
            else:
                out.append('\\"')
        elif ch in _ESCAPES:
            out.append(_ESCAPES[ch])
        else:
            out.append(ch)
        i += 1
    return "".join(out)


def close_open_structures(text: str) -> str:
    """Append the closers a truncated document is missing.

    Assumes the quote fix already ran. An unterminated string is closed first,
    then open brackets/braces are closed innermost first.
    """

    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSER:
            stack.append(ch)
        elif ch in "}]" and stack:
            stack.pop()

    result = text
    if in_string:
        result += '"'
    if not stack:
        return result
    result = _TRAILING_COMMA_RE.sub("", result.rstrip())
    return result + "".join(_CLOSER[c] for c in reversed(stack))


def _first_object_span(text: str) -> Optional[str]:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def repair(text: Any) -> RepairResult:
    if not isinstance(text, str) or not text.strip():
        logger.error("Invalid JSON string received: %r", text)
        return RepairResult(failure=RepairFailure(INVALID_INPUT, None, text))

    try:
        return RepairResult(value=json.loads(text))
    except ValueError as exc:
        first_error = str(exc)
    logger.debug("Direct JSON parse failed (%s); attempting repair", first_error)

    body = _strip_code_fences(text)
    quoted = fix_unescaped_quotes(body)
    for candidate in (body, quoted, close_open_structures(quoted)):
        try:
            return RepairResult(value=json.loads(candidate))
        except ValueError:
            continue

    span = _first_object_span(body)
    if span is not None:
        try:
            return RepairResult(value=json.loads(fix_unescaped_quotes(span)))
        except ValueError:
            pass

    logger.warning("All JSON repair attempts failed: %s", first_error)
    return RepairResult(failure=RepairFailure(PARSE_FAILED, first_error, text))
