"""Best-effort extraction of typed values from free-form model replies.

Every parser returns None when nothing usable is found; the retrying
generators treat None as "ask again".
"""

from __future__ import annotations

import json
import re
from typing import Any

from .contracts import ActionResponse, ShouldRespond

_JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*\n(.*?)\n?```", re.DOTALL | re.IGNORECASE)
_SINGLE_QUOTED_RE = re.compile(r"(?<!\\)'([^']*)'")
_SHOULD_RESPOND_RE = re.compile(r"^(RESPOND|IGNORE|STOP)$")
_SHOULD_RESPOND_WORD_RE = re.compile(r"\b(RESPOND|IGNORE|STOP)\b")

_AFFIRMATIVE = {"YES", "Y", "TRUE", "T", "1", "ON", "ENABLE"}
_NEGATIVE = {"NO", "N", "FALSE", "F", "0", "OFF", "DISABLE"}

_ACTION_PATTERNS = {
    "like": re.compile(r"\[LIKE\]", re.IGNORECASE),
    "retweet": re.compile(r"\[RETWEET\]", re.IGNORECASE),
    "quote": re.compile(r"\[QUOTE\]", re.IGNORECASE),
    "reply": re.compile(r"\[REPLY\]", re.IGNORECASE),
}


def parse_should_respond(text: str) -> ShouldRespond | None:
    if not text:
        return None
    first_line = text.split("\n", 1)[0].strip().replace("[", "").replace("]", "").upper()
    match = _SHOULD_RESPOND_RE.match(first_line)
    if match:
        return match.group(1)  # type: ignore[return-value]
    # Case-sensitive whole words only, so prose like "correspond" is not a decision.
    match = _SHOULD_RESPOND_WORD_RE.search(text)
    return match.group(1) if match else None  # type: ignore[return-value]


def parse_boolean(text: str) -> bool | None:
    if not text:
        return None
    normalized = text.strip().rstrip(".!").upper()
    if normalized in _AFFIRMATIVE:
        return True
    if normalized in _NEGATIVE:
        return False
    return None


def _loads_lenient(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(_SINGLE_QUOTED_RE.sub(r'"\1"', raw))
    except json.JSONDecodeError:
        return None


def _candidates(text: str, opener: str, closer: str) -> list[str]:
    out: list[str] = []
    block = _JSON_BLOCK_RE.search(text)
    if block:
        out.append(block.group(1).strip())
    start = text.find(opener)
    end = text.rfind(closer)
    if start != -1 and end > start:
        out.append(text[start : end + 1])
    return out


def parse_json_array(text: str) -> list[Any] | None:
    if not text:
        return None
    for raw in _candidates(text, "[", "]"):
        data = _loads_lenient(raw)
        if isinstance(data, list):
            return data
    return None


def parse_json_object(text: str) -> dict[str, Any] | None:
    if not text:
        return None
    for raw in _candidates(text, "{", "}"):
        data = _loads_lenient(raw)
        if isinstance(data, dict):
            return data
    return None


def parse_action_response(text: str) -> ActionResponse | None:
    # A reply with no markers is a valid "take no action"; only blank text fails.
    if not text or not text.strip():
        return None
    return ActionResponse(**{name: bool(p.search(text)) for name, p in _ACTION_PATTERNS.items()})
