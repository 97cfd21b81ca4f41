"""Best-effort plain-text extraction from loosely shaped LLM responses."""
from typing import Any, Mapping, Sequence

MAX_DEPTH = 8

# Checked in order; the first one yielding non-blank text wins.
TEXT_KEYS = ("text", "content", "message", "body", "output", "result", "data")
LIST_KEYS = ("choices", "messages", "candidates", "parts")


def extract_text(value: Any, max_depth: int = MAX_DEPTH) -> str:
    """Return plausible narrative text from ``value``; never raises."""
    try:
        found = _walk(value, max_depth)
    except Exception:
        found = None
    if found is not None:
        return found
    return _as_str(value)


def _walk(value: Any, depth: int) -> Any:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if depth <= 0:
        return None
    if isinstance(value, Mapping):
        return _walk_mapping(value, depth)
    if isinstance(value, Sequence):
        if not value:
            return ""
        return _walk(value[0], depth - 1)
    return None


def _walk_mapping(value: Mapping, depth: int) -> Any:
    for key in TEXT_KEYS:
        if key not in value or value[key] is None:
            continue
        found = _walk(value[key], depth - 1)
        if isinstance(found, str) and found.strip():
            return found
    for key in LIST_KEYS:
        items = value.get(key)
        if isinstance(items, Sequence) and not isinstance(items, (str, bytes)) and items:
            found = _walk(items[0], depth - 1)
            if isinstance(found, str) and found.strip():
                return found
    return None


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    try:
        return str(value)
    except Exception:
        return ""
