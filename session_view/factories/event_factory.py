"""Factory for creating RawEvent instances from raw session log data.

Every shape question about the upstream log is answered here, once:
- where the content lives (``message.content`` or top-level ``content``)
- which variant it is (block array, string, parts array, nothing)
- which blocks are recognised (text, thinking, tool_use, tool_result)

Unrecognised or malformed pieces degrade to ``UnknownBlock`` /
``EmptyContent`` instead of raising.
"""

import logging
from typing import Any, Optional, cast

from pydantic import BaseModel, ValidationError

from ..models import (
    BlockContent,
    ContentBlock,
    EmptyContent,
    EventContent,
    PartsContent,
    RawEvent,
    StringContent,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UnknownBlock,
    UsageInfo,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Content Block Registry
# =============================================================================

# Maps block type strings to their model classes
CONTENT_BLOCK_CREATORS: dict[str, type[BaseModel]] = {
    "text": TextBlock,
    "thinking": ThinkingBlock,
    "tool_use": ToolUseBlock,
    "tool_result": ToolResultBlock,
}


def create_content_block(item_data: Any) -> ContentBlock:
    """Create a ContentBlock from raw data using the registry.

    Returns:
        ContentBlock instance, with fallback to UnknownBlock for unknown
        types and shapes that fail validation
    """
    if not isinstance(item_data, dict):
        return UnknownBlock()

    data = cast(dict[str, Any], item_data)
    block_type = data.get("type")
    model_class = CONTENT_BLOCK_CREATORS.get(block_type) if isinstance(block_type, str) else None
    if model_class is None:
        return UnknownBlock(type=block_type if isinstance(block_type, str) else "unknown")

    try:
        return cast(ContentBlock, model_class.model_validate(data))
    except ValidationError as exc:
        logger.debug("Malformed %s block skipped: %s", block_type, exc.errors()[:1])
        return UnknownBlock(type=block_type)


def create_event_content(content_data: Any, parts_data: Any = None) -> EventContent:
    """Classify raw content into one of the closed content variants."""
    if isinstance(content_data, list):
        items = cast(list[Any], content_data)
        return BlockContent(blocks=[create_content_block(item) for item in items])
    if isinstance(content_data, str):
        return StringContent(text=content_data)
    if isinstance(parts_data, list):
        parts = cast(list[Any], parts_data)
        texts = [
            part["text"]
            for part in parts
            if isinstance(part, dict) and isinstance(part.get("text"), str) and part["text"]
        ]
        return PartsContent(texts=texts)
    return EmptyContent()


# =============================================================================
# Field Helpers
# =============================================================================


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _optional_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def normalize_usage_info(usage_data: Any) -> Optional[UsageInfo]:
    """Normalize usage data from JSON to UsageInfo."""
    if not isinstance(usage_data, dict):
        return None
    try:
        return UsageInfo.model_validate(usage_data)
    except ValidationError:
        return None


# =============================================================================
# Raw Event Creation
# =============================================================================


def create_raw_event(data: Any) -> Optional[RawEvent]:
    """Create a RawEvent from a JSON dictionary.

    Returns None when ``data`` is not a mapping with a string ``type``;
    such entries carry nothing that can be displayed.
    """
    if not isinstance(data, dict):
        return None
    entry = cast(dict[str, Any], data)
    event_type = entry.get("type")
    if not isinstance(event_type, str):
        return None

    message_data = entry.get("message")
    message: dict[str, Any] = (
        cast(dict[str, Any], message_data) if isinstance(message_data, dict) else {}
    )

    if "content" in message:
        content_data = message.get("content")
    else:
        content_data = entry.get("content")
    parts_data = message.get("parts", entry.get("parts"))

    timestamp = entry.get("timestamp")

    return RawEvent(
        type=event_type,
        timestamp=timestamp if isinstance(timestamp, str) else str(timestamp or ""),
        role=_optional_str(entry.get("role") or message.get("role")),
        subtype=_optional_str(entry.get("subtype")),
        id=_optional_str(entry.get("id")),
        parent_tool_use_id=_optional_str(entry.get("parent_tool_use_id")),
        model=_optional_str(message.get("model")),
        text=entry.get("text") if isinstance(entry.get("text"), str) else None,
        content=create_event_content(content_data, parts_data),
        usage=normalize_usage_info(message.get("usage")),
        duration=_optional_number(message.get("duration")),
        raw=entry,
    )


def create_raw_events(entries: Any) -> list[RawEvent]:
    """Create RawEvents from a list of raw entries, dropping unusable ones."""
    if not isinstance(entries, list):
        return []
    events: list[RawEvent] = []
    for entry in cast(list[Any], entries):
        event = create_raw_event(entry)
        if event is not None:
            events.append(event)
    return events
