"""
Text and timestamp helpers shared by the collectors.
"""
import html
import re
from datetime import datetime, timezone
from typing import Dict, Optional, Union

from dateutil import parser as dateparser

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


def clean_html(text: Optional[str]) -> str:
    """Strip tags, unescape entities and collapse whitespace."""
    if not text:
        return ""
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text)
    return _WS_RE.sub(" ", text).strip()


def parse_utc_datetime(value: Union[str, int, float, None]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string or a unix timestamp into an aware UTC datetime.

    Returns:
        UTC datetime, or None if the value is empty or unparseable
    """
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        parsed = dateparser.parse(value)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo:
        return parsed.astimezone(timezone.utc)
    return parsed.replace(tzinfo=timezone.utc)


_TERM_PATTERNS: Dict[str, "re.Pattern"] = {}


def term_pattern(term: str) -> "re.Pattern":
    """Case-insensitive whole-word pattern for a term or phrase."""
    if term not in _TERM_PATTERNS:
        _TERM_PATTERNS[term] = re.compile(r"\b" + re.escape(term) + r"\b", re.IGNORECASE)
    return _TERM_PATTERNS[term]


def contains_any(text: str, terms) -> bool:
    """True when any term occurs as a whole word, so "bard" does not match "bombarded"."""
    return any(term_pattern(term).search(text) for term in terms)
