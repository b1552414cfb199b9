"""Sanitizers for untrusted free text from upstream feeds."""

import re
from typing import Any

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_WHITESPACE = re.compile(r"\s+")


def sanitize_text(text: Any, max_length: int = 200) -> str | None:
    """
    Clean a free-text field from the quote feed or filer directory.

    Non-string scalars are stringified, control characters removed, runs of
    whitespace collapsed and the result truncated to max_length (with an
    ellipsis). Empty results and NaN become None.

    Args:
        text: Raw value (may be None or NaN)
        max_length: Maximum length before truncation

    Returns:
        Cleaned text or None
    """
    if text is None:
        return None
    if isinstance(text, float) and text != text:
        return None

    cleaned = _CONTROL_CHARS.sub(" ", str(text))
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    if not cleaned:
        return None

    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length].rstrip() + "..."
    return cleaned
