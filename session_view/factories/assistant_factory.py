"""Factory for assistant messages.

An assistant event becomes an ordered list of segments:
- a direct ``text`` field wins over any structured content
- otherwise text, thinking and top-level tool_use blocks, in block order
- with nothing matched, the plain text of the event

Assistant messages produced by the synthetic error model are reclassified
as system error messages.
"""

from typing import Optional

from ..models import (
    ConversationMessage,
    MessageMetadata,
    RawEvent,
    Role,
    Segment,
    SystemSubtype,
    TextBlock,
    TextSegment,
    ThinkingBlock,
    ThinkingSegment,
    ToolCallSegment,
    ToolUseBlock,
)
from ..parser import detect_agent, extract_text_content
from .system_factory import synthesize_id
from .tool_factory import ToolRegistry

SYNTHETIC_MODEL = "<synthetic>"
SYNTHETIC_ERROR_MARKERS = ("Prompt is too long", "API Error", "error")


def create_assistant_segments(
    event: RawEvent,
    tools: ToolRegistry,
    placed_tool_ids: set[str],
) -> list[Segment]:
    """Build the ordered segments of an assistant event.

    ``placed_tool_ids`` collects the tool calls already attached to a
    message so a repeated tool_use id is only placed once.
    """
    segments: list[Segment] = []

    if event.text:
        text = event.text.strip()
        if text:
            segments.append(TextSegment(content=text))
        return segments

    for block in event.blocks:
        if isinstance(block, TextBlock):
            text = block.text.strip()
            if text:
                segments.append(TextSegment(content=text))
        elif isinstance(block, ThinkingBlock):
            thinking = block.body.strip()
            if thinking:
                segments.append(ThinkingSegment(content=thinking))
        elif isinstance(block, ToolUseBlock):
            # Only top-level tools; children are reached through their parent
            if tools.is_top_level(block.id) and block.id not in placed_tool_ids:
                placed_tool_ids.add(block.id)
                segments.append(ToolCallSegment(tool_id=block.id))

    if not segments:
        text = extract_text_content(event)
        if text:
            segments.append(TextSegment(content=text))
    return segments


def top_level_tool_ids(event: RawEvent, tools: ToolRegistry) -> list[str]:
    """Ids of the top-level tool calls an assistant event would place.

    Events carrying direct text place no tool calls.
    """
    if event.text:
        return []
    return [
        block.id
        for block in event.blocks
        if isinstance(block, ToolUseBlock) and tools.is_top_level(block.id)
    ]


def is_synthetic_error(event: RawEvent, segments: list[Segment]) -> bool:
    if event.model != SYNTHETIC_MODEL:
        return False
    return any(
        isinstance(seg, TextSegment)
        and any(marker in seg.content for marker in SYNTHETIC_ERROR_MARKERS)
        for seg in segments
    )


def create_assistant_message(
    event: RawEvent,
    index: int,
    tools: ToolRegistry,
    placed_tool_ids: set[str],
) -> Optional[ConversationMessage]:
    """Create an assistant (or synthetic error) message; None if empty."""
    segments = create_assistant_segments(event, tools, placed_tool_ids)
    if not segments:
        return None

    synthetic_error = is_synthetic_error(event, segments)
    usage = event.usage
    return ConversationMessage(
        id=event.id or synthesize_id("assistant", index, event.timestamp),
        role=Role.SYSTEM.value if synthetic_error else Role.ASSISTANT.value,
        timestamp=event.timestamp,
        segments=tuple(segments),
        metadata=MessageMetadata(
            agent=detect_agent(event),
            model=event.model,
            duration=event.duration,
            tokens=usage.total_tokens if usage else None,
            cost=usage.cost if usage else None,
            system_subtype=SystemSubtype.ERROR.value if synthetic_error else None,
        ),
    )
