"""Recover a structured object from free-text provider responses."""

import json
import re
from typing import Any, Dict, List, Optional

from .errors import UnparseableResponse

# Fences only count at the start (with optional language tag) or end of a line
_FENCE_RE = re.compile(r"^[ \t]*```[A-Za-z0-9_+-]*|```[ \t]*$", re.MULTILINE)


def strip_wrappers(text: str) -> str:
    """Remove code-fence markers and surrounding whitespace."""
    return _FENCE_RE.sub("", text).strip()


def outermost_object_span(text: str) -> Optional[str]:
    """Return the text from the first '{' to the last '}', or None if there is no such pair."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def strip_trailing_commas(text: str) -> str:
    """
    Drop commas that directly precede a closing brace or bracket.

    String literals are scanned past so commas inside values survive.
    """
    out: List[str] = []
    in_string = False
    escaped = False
    pending_comma: Optional[int] = None

    for ch in text:
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
            pending_comma = None
        elif ch == ",":
            pending_comma = len(out)
        elif ch in "}]":
            if pending_comma is not None:
                out[pending_comma] = ""
                pending_comma = None
        elif not ch.isspace():
            pending_comma = None
        out.append(ch)

    return "".join(out)


def _try_load_object(candidate: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_structured_response(text: Any) -> Dict[str, Any]:
    """
    Parse a provider response into a JSON object.

    Stage one strips known wrappers (code fences, whitespace) and tries a
    direct parse. Stage two scans for the outermost brace pair, parses
    that span, and finally retries it with trailing commas removed.

    Args:
        text: Raw provider text

    Returns:
        Parsed object

    Raises:
        UnparseableResponse: If no attempt yields a JSON object
    """
    if not isinstance(text, str) or not text.strip():
        raise UnparseableResponse("Empty provider response")

    cleaned = strip_wrappers(text)
    parsed = _try_load_object(cleaned)
    if parsed is not None:
        return parsed

    span = outermost_object_span(cleaned)
    if span is None:
        raise UnparseableResponse("No JSON object found in provider response")

    parsed = _try_load_object(span)
    if parsed is not None:
        return parsed

    parsed = _try_load_object(strip_trailing_commas(span))
    if parsed is not None:
        return parsed

    raise UnparseableResponse("Could not parse JSON object from provider response")
