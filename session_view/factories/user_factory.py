"""Factory for user prompt messages.

Only real prompts become messages: user events that carry tool results are
folded into the matching ToolCall by the tool registry and never shown on
their own.
"""

from typing import Optional

from ..models import (
    ConversationMessage,
    MessageMetadata,
    RawEvent,
    TextBlock,
    TextSegment,
    ToolResultBlock,
)
from ..parser import detect_agent, extract_text_content
from .system_factory import synthesize_id


def has_tool_result(event: RawEvent) -> bool:
    return any(isinstance(block, ToolResultBlock) for block in event.blocks)


def is_text_only(event: RawEvent) -> bool:
    """True unless the event has a block that is not a text block."""
    return all(isinstance(block, TextBlock) for block in event.blocks)


def create_user_message(event: RawEvent, index: int) -> Optional[ConversationMessage]:
    """Create a user prompt message, or None for tool results and empty text."""
    if has_tool_result(event) or not is_text_only(event):
        return None

    text = extract_text_content(event)
    if not text:
        return None

    return ConversationMessage(
        id=event.id or synthesize_id("user", index, event.timestamp),
        role="user",
        timestamp=event.timestamp,
        segments=(TextSegment(content=text),),
        metadata=MessageMetadata(agent=detect_agent(event)),
    )
