from __future__ import annotations

import json
import re
from typing import Any, List

from playbook_review.errors import GenerationParseError


_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_SMART_QUOTES = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'"})
_CLOSERS = {"{": "}", "[": "]"}


def parse_json_payload(text: Any) -> Any:
    """Best-effort extraction of a JSON object or array from generated text."""

    if isinstance(text, (dict, list)):
        return text
    raw = "" if text is None else str(text)
    if not raw.strip():
        raise GenerationParseError("Generator returned empty content")

    cleaned = _strip_code_fence(raw)
    found, value = _decode_longest(cleaned)
    if found:
        return value

    error: json.JSONDecodeError | None = None
    for candidate in _repair_candidates(cleaned):
        try:
            return json.loads(_repair(candidate))
        except json.JSONDecodeError as exc:
            error = error or exc
    message = error.msg if error else "no JSON found"
    raise GenerationParseError(f"Could not parse generated JSON ({message})", raw) from error


def expect_object(payload: Any, raw_text: str = "") -> dict:
    if not isinstance(payload, dict):
        raise GenerationParseError("Expected a JSON object", raw_text or json.dumps(payload)[:200])
    return payload


def _strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    if "```" not in cleaned:
        return cleaned
    parts = cleaned.split("```")
    for segment in parts[1::2]:
        segment = segment.strip()
        if segment.lower().startswith("json"):
            segment = segment[4:].strip()
        if segment:
            return segment
    return cleaned


def _decode_longest(text: str) -> tuple[bool, Any]:
    """Decode at every top-level ``{``/``[`` in order and keep the longest value."""

    decoder = json.JSONDecoder()
    best: Any = None
    best_span = 0
    index = 0
    while True:
        starts = [pos for pos in (text.find("{", index), text.find("[", index)) if pos != -1]
        if not starts:
            break
        start = min(starts)
        try:
            value, end = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            index = start + 1
            continue
        if end - start > best_span:
            best, best_span = value, end - start
        index = end
    return best_span > 0, best


def _repair_candidates(text: str) -> List[str]:
    """Object and array blocks ordered by where they start, or the whole text when neither appears."""

    candidates: List[tuple[int, str]] = []
    for opener, closer in _CLOSERS.items():
        start = text.find(opener)
        if start == -1:
            continue
        end = text.rfind(closer)
        candidates.append((start, text[start : end + 1] if end > start else text[start:]))
    return [block for _, block in sorted(candidates)] or [text]


def _repair(text: str) -> str:
    repaired = text.translate(_SMART_QUOTES)
    repaired = _TRAILING_COMMA.sub(r"\1", repaired)
    return _balance_brackets(repaired)


def _balance_brackets(text: str) -> str:
    stack: List[str] = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _CLOSERS:
            stack.append(_CLOSERS[char])
        elif char in ("}", "]") and stack and stack[-1] == char:
            stack.pop()
    suffix = '"' if in_string else ""
    return text + suffix + "".join(reversed(stack))


__all__ = ["expect_object", "parse_json_payload"]
