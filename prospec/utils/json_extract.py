"""Pull a JSON object out of free-form model output."""

from __future__ import annotations

import json
import re
from typing import Any

_COMMENT_LINE_RE = re.compile(r"^\s*//.*$", re.MULTILINE)


def strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ``` or ```{...}```)."""
    text = text.strip()
    if not text.startswith("```"):
        return text
    text = text.removeprefix("```")
    for lang in ("json", "JSON"):
        text = text.removeprefix(lang)
    text = text.lstrip("\n")
    return text.rsplit("```", 1)[0].strip()


def _outermost_object(text: str) -> str | None:
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape_next = False
    for i in range(start, len(text)):
        ch = text[i]
        if escape_next:
            escape_next = False
            continue
        if in_string:
            if ch == "\\":
                escape_next = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def extract_json(text: str) -> dict[str, Any]:
    """Parse the JSON object in ``text``.

    Accepts pure JSON, fenced JSON, JSON with a preamble or postamble, and
    whole-line ``//`` comments. Returns an empty dict when nothing parses.
    """
    text = strip_code_fence(text or "")
    text = _COMMENT_LINE_RE.sub("", text).strip()
    if not text:
        return {}

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        candidate = _outermost_object(text)
        if candidate is None:
            return {}
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            return {}

    return data if isinstance(data, dict) else {}
