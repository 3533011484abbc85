"""
Recover structured payloads from LLM responses.

Models often wrap JSON in markdown fences or surround it with prose.
extract_json() finds the intended object/array; load_json_payload()
parses it and fails loudly so callers can treat the response as malformed.

Example:
    from castforge.utils.json_utils import load_json_payload

    data = load_json_payload('Sure! ```json\\n{"segments": []}\\n```')
    # {'segments': []}
"""

import json
import logging
import re
from typing import Any, Literal

logger = logging.getLogger(__name__)

JsonKind = Literal["object", "array", "auto"]

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")
_BRACKETS = {"object": ("{", "}"), "array": ("[", "]")}


def extract_json(text: str, json_type: JsonKind = "auto") -> str:
    """
    Extract the JSON text embedded in an LLM response.

    Args:
        text: Raw LLM response
        json_type: "object", "array", or "auto" (whichever bracket comes first)

    Returns:
        JSON substring, or "" if no candidate bracket is present

    Example:
        >>> extract_json('Result: [1, 2] done', json_type="array")
        '[1, 2]'
    """
    if not text:
        return ""

    cleaned = text.strip()
    fenced = _FENCE_RE.search(cleaned)
    if fenced:
        cleaned = fenced.group(1).strip()

    if json_type == "auto":
        positions = {
            kind: cleaned.find(open_bracket)
            for kind, (open_bracket, _) in _BRACKETS.items()
        }
        found = {kind: pos for kind, pos in positions.items() if pos != -1}
        if not found:
            return ""
        json_type = min(found, key=found.get)

    open_bracket, close_bracket = _BRACKETS[json_type]
    start = cleaned.find(open_bracket)
    if start == -1:
        return ""

    return _balanced_span(cleaned[start:], open_bracket, close_bracket)


def _balanced_span(text: str, open_bracket: str, close_bracket: str) -> str:
    """Return text up to the bracket closing the first one, ignoring brackets inside strings."""
    depth = 0
    in_string = False
    escaped = False

    for i, char in enumerate(text):
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = in_string
        elif char == '"':
            in_string = not in_string
        elif not in_string:
            if char == open_bracket:
                depth += 1
            elif char == close_bracket:
                depth -= 1
                if depth == 0:
                    return text[: i + 1]

    # Unbalanced: hand the remainder to the JSON parser for a precise error
    return text


def load_json_payload(text: str, json_type: JsonKind = "object") -> Any:
    """
    Extract and parse JSON from an LLM response.

    Args:
        text: Raw LLM response
        json_type: Expected top-level JSON type

    Returns:
        Parsed JSON value

    Raises:
        ValueError: If no JSON is found or it does not parse
    """
    json_str = extract_json(text, json_type)
    if not json_str:
        raise ValueError("No JSON found in response")

    try:
        return json.loads(json_str)
    except json.JSONDecodeError as e:
        preview = json_str[:200] + "..." if len(json_str) > 200 else json_str
        logger.warning(f"Failed to parse JSON: {e}. Input: {preview}")
        raise ValueError(f"Invalid JSON in response: {e}") from e
