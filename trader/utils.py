"""
Utility functions for the autonomous prediction market trader.

Shared helpers with no trading logic: JSON extraction from model output,
numeric coercion, keyword extraction and backoff delays.
"""

import json
import logging
import random
import re
from typing import Any, Optional

# Configure module logger
logger = logging.getLogger(__name__)


STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "will", "be", "is", "are", "was", "were", "been", "have",
    "has", "had", "do", "does", "did", "this", "that", "these", "those",
    "what", "which", "who", "when", "where", "why", "how", "before", "after",
    "than", "then", "from", "into", "over", "under", "end", "any", "more",
})


def safe_json_loads(text: str, default: Optional[Any] = None) -> Optional[Any]:
    """
    Parse a JSON object out of free-form model output.

    Strips markdown fences and any prose around the outermost braces.

    Args:
        text: Raw text that may contain a JSON object
        default: Value returned when nothing parseable is found

    Returns:
        Parsed JSON value, or default
    """
    if not text or not isinstance(text, str):
        return default

    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    cleaned = cleaned.strip()

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        logger.debug(f"No JSON object found in text: {cleaned[:200]}")
        return default

    try:
        return json.loads(cleaned[start:end + 1])
    except json.JSONDecodeError as e:
        logger.debug(f"JSON decode error: {e}")
        return default


def clamp(value: float, min_value: float = 0.0, max_value: float = 1.0) -> float:
    """
    Clamp a value between minimum and maximum bounds.

    Raises:
        ValueError: If min_value > max_value
    """
    if min_value > max_value:
        raise ValueError(f"min_value ({min_value}) must be <= max_value ({max_value})")

    return max(min_value, min(value, max_value))


def safe_float(value: Any, default: float = 0.0) -> float:
    """
    Convert API values (numbers, numeric strings, None) to float.

    Booleans and unparseable strings return default.
    """
    if value is None or isinstance(value, bool):
        return default

    if isinstance(value, (int, float)):
        return float(value)

    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return default

    return default


def format_currency(value: float, decimals: int = 2) -> str:
    """Format a number as dollars, e.g. "$1,234.50"."""
    return f"${value:,.{decimals}f}"


def extract_keywords(text: str, limit: int = 5) -> list[str]:
    """
    Pull search keywords out of a market question.

    Lowercases, strips punctuation, drops stopwords and words of two
    characters or fewer, and keeps the first `limit` words in order.

    Args:
        text: Market question or title
        limit: Maximum number of keywords

    Returns:
        List of keywords
    """
    if not text:
        return []

    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    keywords: list[str] = []
    for word in words:
        if len(word) <= 2 or word in STOPWORDS or word in keywords:
            continue
        keywords.append(word)
        if len(keywords) >= limit:
            break
    return keywords


def backoff_delay(attempt: int, initial_delay: float, max_delay: float, factor: float = 2.0) -> float:
    """
    Exponential backoff delay with +/-10% jitter for a zero-based attempt.
    """
    wait_time = min(initial_delay * (factor ** attempt), max_delay)
    jitter = wait_time * random.uniform(-0.1, 0.1)
    return max(0.0, wait_time + jitter)
