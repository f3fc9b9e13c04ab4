#!/usr/bin/env python3
"""Reconstruct a conversation from time-sorted raw session events.

The conversation builder makes a single ordered pass over the events,
dispatching on event type, and consults a ToolRegistry built from the same
events (or a superset of them) for tool calls and their results.
"""

from dataclasses import replace
from typing import Optional, Sequence

from .factories import (
    ToolRegistry,
    create_assistant_message,
    create_result_message,
    create_system_message,
    create_user_message,
    top_level_tool_ids,
)
from .models import (
    Conversation,
    ConversationMessage,
    EventType,
    RawEvent,
)
from .parser import timestamp_sort_key
from .timings import log_timing

# Histories longer than this are built progressively on first load
PROGRESSIVE_THRESHOLD = 100
# Number of most recent events built and published first
INITIAL_BATCH_SIZE = 50


def sort_events(events: Sequence[RawEvent]) -> list[RawEvent]:
    """Stable sort by timestamp; ties keep their arrival order."""
    return sorted(events, key=lambda event: timestamp_sort_key(event.timestamp))


def _sort_messages(messages: list[ConversationMessage]) -> list[ConversationMessage]:
    return sorted(messages, key=lambda msg: timestamp_sort_key(msg.timestamp))


def _unique_id(message: ConversationMessage, index: int, seen: set[str]) -> str:
    """Return the message id, disambiguated with the event index if taken."""
    candidate = message.id
    suffix = 0
    while candidate in seen:
        candidate = f"{message.id}-{index}" if suffix == 0 else f"{message.id}-{index}-{suffix}"
        suffix += 1
    return candidate


def create_message(
    event: RawEvent,
    index: int,
    tools: ToolRegistry,
    placed_tool_ids: set[str],
) -> Optional[ConversationMessage]:
    """Dispatch one event to its message factory; None when it shows nothing."""
    if event.type == EventType.USER:
        return create_user_message(event, index)
    if event.type == EventType.ASSISTANT:
        return create_assistant_message(event, index, tools, placed_tool_ids)
    if event.type == EventType.SYSTEM:
        return create_system_message(event, index)
    if event.type == EventType.RESULT:
        return create_result_message(event, index)
    return None


def build_messages(
    events: Sequence[RawEvent],
    tools: ToolRegistry,
    *,
    index_offset: int = 0,
    reserved_ids: Optional[set[str]] = None,
    placed_tool_ids: Optional[set[str]] = None,
) -> list[ConversationMessage]:
    """Convert raw events into ordered conversation messages.

    Args:
        events: Raw events, already sorted by timestamp.
        tools: Registry resolving tool_use ids; may cover more events than
            ``events`` (progressive builds share one registry).
        index_offset: Position of ``events[0]`` in the full event sequence,
            so synthesized ids do not depend on how the history was batched.
        reserved_ids: Ids already in use by earlier messages built
            elsewhere; a message claiming one of them is disambiguated.
        placed_tool_ids: Top-level tool calls already placed under earlier
            messages; they are not placed again.
    """
    messages: list[ConversationMessage] = []
    seen_ids: set[str] = set(reserved_ids or ())
    placed: set[str] = set(placed_tool_ids or ())

    for position, event in enumerate(events):
        index = position + index_offset
        message = create_message(event, index, tools, placed)
        if message is None:
            continue

        unique_id = _unique_id(message, index, seen_ids)
        if unique_id != message.id:
            message = replace(message, id=unique_id)
        seen_ids.add(unique_id)
        messages.append(message)

    return _sort_messages(messages)


def scan_prefix_claims(
    events: Sequence[RawEvent],
    tools: ToolRegistry,
    *,
    index_offset: int = 0,
) -> tuple[set[str], set[str]]:
    """Message ids and tool placements ``events`` claim, without building them all.

    Synthesized ids embed the event index and never collide, so only events
    with an explicit id are built. The result lets a later batch be built
    before this one with the ids and placements a full build would give it.
    """
    claimed_ids: set[str] = set()
    placed: set[str] = set()
    for position, event in enumerate(events):
        index = position + index_offset
        if event.id is None:
            if event.type == EventType.ASSISTANT:
                placed.update(top_level_tool_ids(event, tools))
            continue
        message = create_message(event, index, tools, placed)
        if message is not None:
            claimed_ids.add(_unique_id(message, index, claimed_ids))
    return claimed_ids, placed


def build_conversation(
    events: Sequence[RawEvent],
    tools: Optional[ToolRegistry] = None,
    *,
    index_offset: int = 0,
    reserved_ids: Optional[set[str]] = None,
) -> Conversation:
    """Build the registry (unless given) and the messages for ``events``."""
    if tools is None:
        with log_timing(lambda: f"Build tool registry ({len(events)} events)"):
            tools = ToolRegistry.build(events)
    with log_timing(lambda: f"Transform messages ({len(events)} events)"):
        messages = build_messages(
            events, tools, index_offset=index_offset, reserved_ids=reserved_ids
        )
    return Conversation(messages=messages, tools=tools)


def should_build_progressively(
    event_count: int,
    is_first_load: bool,
    threshold: int = PROGRESSIVE_THRESHOLD,
) -> bool:
    return is_first_load and event_count > threshold


def split_for_progressive_build(
    events: Sequence[RawEvent],
    batch_size: int = INITIAL_BATCH_SIZE,
) -> tuple[Sequence[RawEvent], Sequence[RawEvent]]:
    """Split sorted events into (older prefix, most recent batch)."""
    cut = max(0, len(events) - batch_size)
    return events[:cut], events[cut:]


def merge_batches(
    prefix: list[ConversationMessage],
    tail: list[ConversationMessage],
) -> list[ConversationMessage]:
    """Splice the older prefix before the already published tail."""
    return _sort_messages(prefix + tail)
