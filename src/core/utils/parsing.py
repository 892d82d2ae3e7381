"""Helpers for pulling JSON out of model responses."""

import json
import re
from typing import Any

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


def extract_outermost_object(text: str) -> str | None:
    """Return the text between the first '{' and the last '}', if any."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def extract_fenced_json(text: str) -> dict[str, Any] | None:
    """Decode the first fenced ```json block holding an object.

    Falls back to a bare object when the whole reply is JSON. Returns None
    when nothing decodes to a JSON object.
    """
    match = _FENCED_JSON.search(text)
    if match:
        candidate = match.group(1)
    elif text.strip().startswith("{"):
        candidate = extract_outermost_object(text)
    else:
        return None

    if candidate is None:
        return None
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None
