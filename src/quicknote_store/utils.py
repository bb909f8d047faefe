"""Utility functions for the QuickNote store."""

import datetime
from datetime import timezone
from typing import Any, Optional


def sanitize_filename(text: str, fallback: str = "note") -> str:
    """Sanitize text for use as a file name stem.

    Keeps word characters, spaces and hyphens, collapses whitespace runs
    into single underscores and trims the result.

    Examples:
        "Shopping: Milk & Eggs" -> "Shopping_Milk_Eggs"
        "  " -> "note"

    Args:
        text: The text to sanitize.
        fallback: Returned when nothing usable is left.

    Returns:
        A string safe to use as part of a file name.
    """
    if not text:
        return fallback

    words = []
    for word in text.split():
        sanitized_word = "".join(c for c in word if c.isalnum() or c in "-_")
        if sanitized_word:
            words.append(sanitized_word)

    result = "_".join(words)[:80]
    return result or fallback


def filename_timestamp(moment: Optional[datetime.datetime] = None) -> str:
    """Format a moment as YYYYMMDD_HHMMSS for backup file names."""
    moment = moment or datetime.datetime.now(timezone.utc)
    return moment.strftime("%Y%m%d_%H%M%S")


def parse_timestamp(value: Any) -> Optional[datetime.datetime]:
    """Parse an ISO-8601 timestamp string into an aware datetime.

    Accepts a trailing 'Z' and naive values (treated as UTC). Anything that
    is not a parseable string yields None.
    """
    if isinstance(value, datetime.datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_size(size_bytes: Optional[int]) -> str:
    """Human-readable size string (B, KB, MB, GB)."""
    if size_bytes is None:
        return "Unknown size"
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    if size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    return f"{size_bytes / (1024 * 1024 * 1024):.1f} GB"
