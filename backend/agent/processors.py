"""
Model Output Processors

Models are asked for bare JSON or a single question, and frequently wrap,
prefix or malform the answer. These helpers recover what they can:

    parse_json_object(raw)    ordered chain of JSON extraction strategies
    extract_json_span(raw)    first balanced top-level {...} span
    clean_question(raw)       strip chatter around a clarifying question
"""

import json
import logging
import re
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# JSON Recovery
# =============================================================================

CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


def extract_json_span(text: str) -> Optional[str]:
    """
    Return the first balanced top-level {...} span in text.

    Braces inside JSON strings are ignored. Returns None if no opening
    brace is found or it is never closed.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
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
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def _loads_object(candidate: Optional[str]) -> Optional[dict]:
    if not candidate:
        return None
    try:
        value = json.loads(candidate)
    except (json.JSONDecodeError, TypeError):
        return None
    return value if isinstance(value, dict) else None


def _direct(raw: str) -> Optional[dict]:
    return _loads_object(raw.strip())


def _bracketed(raw: str) -> Optional[dict]:
    return _loads_object(extract_json_span(raw))


def _unfenced(raw: str) -> Optional[dict]:
    return _loads_object(CODE_FENCE.sub("", raw).strip())


# Order matters: cheapest and strictest first
JSON_STRATEGIES: list[tuple[str, Callable[[str], Optional[dict]]]] = [
    ("direct", _direct),
    ("bracketed", _bracketed),
    ("unfenced", _unfenced),
]


def parse_json_object(
    raw: str,
    accept: Callable[[dict], bool] = lambda _: True,
    strategies: Optional[list[tuple[str, Callable[[str], Optional[dict]]]]] = None,
) -> Optional[dict]:
    """
    Try each extraction strategy until one yields an acceptable object.

    Args:
        raw: Raw model output
        accept: Extra validation; a parsed object it rejects does not count
        strategies: Override the default strategy chain

    Returns:
        The first accepted dict, or None
    """
    for name, strategy in strategies or JSON_STRATEGIES:
        parsed = strategy(raw)
        if parsed is not None and accept(parsed):
            logger.debug(f"JSON recovered with '{name}' strategy")
            return parsed
    return None


def string_list(value: Any) -> list[str]:
    """Coerce a JSON value to a list of non-empty strings."""
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if item and str(item).strip()]


# =============================================================================
# Clarifying Question Cleanup
# =============================================================================

_QUESTION_NOISE = [
    re.compile(r"\[\[.*?\]\]", re.IGNORECASE),
    re.compile(r"Wait, I apologize[\s\S]*$", re.IGNORECASE),
    re.compile(r"Here'?s (the|my) (corrected|actual|revised) response:?\s*", re.IGNORECASE),
    re.compile(r"^(Assistant|AI|Bot):\s*", re.IGNORECASE),
]


def clean_question(raw: str) -> str:
    """Remove markers, self-corrections and speaker labels from a reply."""
    text = raw
    for pattern in _QUESTION_NOISE:
        text = pattern.sub("", text)
    return text.strip()
