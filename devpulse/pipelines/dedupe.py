"""
Deduplication of feedback items on the (platform, author, content) key.
"""

from typing import Iterable, List, Set
import logging

from devpulse.models.schemas import FeedbackItem

logger = logging.getLogger(__name__)

KEY_SEPARATOR = "\u0000"


def make_key(platform: str, author: str, content: str) -> str:
    return f"{platform}{KEY_SEPARATOR}{author}{KEY_SEPARATOR}{content}"


def dedup_key(item: FeedbackItem) -> str:
    platform = getattr(item.platform, "value", item.platform)
    return make_key(platform, item.author, item.content)


def dedupe(items: Iterable[FeedbackItem]) -> List[FeedbackItem]:
    """
    Keep the first occurrence of every key, preserving input order.

    Args:
        items: Feedback items, possibly from several collectors

    Returns:
        Unique items in first-seen order
    """
    seen: Set[str] = set()
    unique: List[FeedbackItem] = []
    for item in items:
        key = dedup_key(item)
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique


def exclude_existing(items: Iterable[FeedbackItem], existing_keys: Set[str]) -> List[FeedbackItem]:
    """Drop items whose key is already stored."""
    return [item for item in items if dedup_key(item) not in existing_keys]
