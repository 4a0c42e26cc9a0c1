"""Structured parsing of model replies.

Agent replies in a tool loop are exactly one of three shapes, modelled as a
tagged union so callers dispatch on type rather than on substrings:

    ToolCall          {"tool": "...", "params": {...}}
    CompletionSignal  {"complete": true, "confidence": 0-100, "findings": "..."}
    Unparseable       anything else
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class ToolCall:
    tool: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CompletionSignal:
    findings: str
    confidence: int


@dataclass(frozen=True)
class Unparseable:
    raw: str
    reason: str


AgentReply = ToolCall | CompletionSignal | Unparseable


def _outermost(text: str, open_char: str, close_char: str) -> str | None:
    start = text.find(open_char)
    end = text.rfind(close_char)
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def extract_json(text: str) -> Any | None:
    """Best-effort extraction of one JSON value from model output.

    Tries, in order: fenced code blocks, the whole text, the outermost {...}
    span, the outermost [...] span. Returns None when nothing parses.
    """
    candidates = [m.strip() for m in _FENCE_RE.findall(text)]
    candidates.append(text.strip())
    for open_char, close_char in (("{", "}"), ("[", "]")):
        span = _outermost(text, open_char, close_char)
        if span:
            candidates.append(span)

    for candidate in candidates:
        if not candidate:
            continue
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    return None


def extract_object(text: str) -> dict[str, Any] | None:
    value = extract_json(text)
    return value if isinstance(value, dict) else None


def clamp_int(value: Any, low: int, high: int, default: int) -> int:
    """Coerce `value` to an int within [low, high], or `default` if it is not numeric."""
    if isinstance(value, bool):
        return default
    try:
        number = int(round(float(value)))
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


def str_list(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,) if value.strip() else ()
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value if v is not None and str(v).strip())
    return ()


def parse_agent_reply(text: str) -> AgentReply:
    """Classify one tool-loop reply."""
    data = extract_object(text)
    if data is None:
        return Unparseable(raw=text, reason="no JSON object found")

    if data.get("complete") is True:
        findings = data.get("findings")
        if not isinstance(findings, str) or not findings.strip():
            return Unparseable(raw=text, reason="completion without findings")
        return CompletionSignal(
            findings=findings.strip(),
            confidence=clamp_int(data.get("confidence"), 0, 100, 70),
        )

    tool = data.get("tool")
    if isinstance(tool, str) and tool.strip():
        params = data.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            return Unparseable(raw=text, reason="tool params must be an object")
        return ToolCall(tool=tool.strip(), params=params)

    return Unparseable(raw=text, reason="JSON is neither a tool call nor a completion")
