#!/usr/bin/env python3
"""Extract plain data from normalised raw events.

This module provides utility functions for reading event data:
- extract_text_content: Best-effort plain text of an event
- detect_agent: Guess which agent backend produced an event
- parse_timestamp / timestamp_sort_key: ISO timestamp handling

For RawEvent creation from raw dicts, see factories/.
"""

from datetime import datetime, timezone
from typing import Optional

from .models import (
    BlockContent,
    PartsContent,
    RawEvent,
    StringContent,
    TextBlock,
)


def extract_text_content(event: RawEvent) -> str:
    """Extract the plain text transcript of an event's content.

    Block arrays contribute their text blocks joined by newlines, string
    content is used as is and part arrays contribute the parts carrying
    text. Anything else yields an empty string.
    """
    content = event.content
    if isinstance(content, BlockContent):
        return "\n".join(
            block.text for block in content.blocks if isinstance(block, TextBlock)
        ).strip()
    if isinstance(content, StringContent):
        return content.text.strip()
    if isinstance(content, PartsContent):
        return "\n".join(content.texts).strip()
    return ""


def detect_agent(event: RawEvent) -> str:
    """Name the agent family from the model name, then the content shape."""
    model = event.model or ""
    if "claude" in model:
        return "claude"
    if "gemini" in model:
        return "gemini"
    if "gpt" in model:
        return "gpt-4"

    if isinstance(event.content, BlockContent):
        return "claude"
    if isinstance(event.content, PartsContent):
        return "gemini"
    return "unknown"


def parse_timestamp(timestamp_str: str) -> Optional[datetime]:
    """Parse ISO timestamp to datetime object."""
    try:
        return datetime.fromisoformat(timestamp_str.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None


def timestamp_sort_key(timestamp_str: str) -> float:
    """Epoch seconds for sorting; naive timestamps are taken as UTC.

    Unparseable timestamps sort before everything else.
    """
    dt = parse_timestamp(timestamp_str)
    if dt is None:
        return float("-inf")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()
