"""Factory for messages built from system and result events.

System events are dispatched on ``subtype`` through a registry; subtypes
that are not registered produce no message. New upstream subtypes are
therefore ignored rather than treated as errors.
"""

from typing import Any, Callable, Optional

from ..models import (
    ConversationMessage,
    MessageMetadata,
    RawEvent,
    Segment,
    SystemInfoSegment,
    SystemSubtype,
    TextSegment,
)


def _text_field(raw: dict[str, Any], *keys: str) -> str:
    """First truthy string among ``keys``, else an empty string."""
    for key in keys:
        value = raw.get(key)
        if value and isinstance(value, str):
            return value
    return ""


def _init_segments(raw: dict[str, Any]) -> list[Segment]:
    return [
        SystemInfoSegment(
            info={
                "cwd": raw.get("cwd"),
                "model": raw.get("model"),
                "tools": raw.get("tools"),
                "mcp_servers": raw.get("mcp_servers"),
                "permissionMode": raw.get("permissionMode"),
                "session_id": raw.get("session_id"),
            }
        )
    ]


def _context_compacted_segments(raw: dict[str, Any]) -> list[Segment]:
    return [
        TextSegment(content=_text_field(raw, "summary")),
        SystemInfoSegment(info={"message": raw.get("message")}),
    ]


def _error_segments(raw: dict[str, Any]) -> list[Segment]:
    return [
        SystemInfoSegment(
            info={
                "error": raw.get("error"),
                "details": raw.get("details"),
                "message": raw.get("message"),
            }
        )
    ]


def _git_segments(raw: dict[str, Any]) -> list[Segment]:
    return [TextSegment(content=_text_field(raw, "message", "raw_output"))]


# subtype -> (id prefix, segment builder)
SYSTEM_MESSAGE_CREATORS: dict[
    str, tuple[str, Callable[[dict[str, Any]], list[Segment]]]
] = {
    SystemSubtype.INIT.value: ("system-init", _init_segments),
    SystemSubtype.CONTEXT_COMPACTED.value: ("context-compacted", _context_compacted_segments),
    SystemSubtype.ERROR.value: ("error", _error_segments),
    SystemSubtype.GIT_OPERATION.value: ("git-operation", _git_segments),
    SystemSubtype.GIT_ERROR.value: ("git-error", _git_segments),
}


def synthesize_id(prefix: str, index: int, timestamp: str) -> str:
    return f"{prefix}-{index}-{timestamp}"


def create_system_message(event: RawEvent, index: int) -> Optional[ConversationMessage]:
    """Create a system message for a recognised subtype, else None."""
    creator = SYSTEM_MESSAGE_CREATORS.get(event.subtype or "")
    if creator is None:
        return None
    prefix, build_segments = creator

    session_info = event.raw if event.subtype == SystemSubtype.INIT.value else None
    return ConversationMessage(
        id=event.id or synthesize_id(prefix, index, event.timestamp),
        role="system",
        timestamp=event.timestamp,
        segments=tuple(build_segments(event.raw)),
        metadata=MessageMetadata(
            system_subtype=event.subtype,
            session_info=session_info,
        ),
    )


def create_result_message(event: RawEvent, index: int) -> Optional[ConversationMessage]:
    """Create an error message for a failed execution result.

    Successful results carry nothing worth displaying and yield None.
    """
    raw = event.raw
    result = raw.get("result")
    if not raw.get("is_error") or not result:
        return None

    duration = raw.get("duration_ms")
    cost = raw.get("total_cost_usd")
    return ConversationMessage(
        id=event.id or synthesize_id("error", index, event.timestamp),
        role="system",
        timestamp=event.timestamp,
        segments=(TextSegment(content=f"Error: {result}"),),
        metadata=MessageMetadata(
            system_subtype=SystemSubtype.ERROR.value,
            duration=float(duration) if isinstance(duration, (int, float)) else None,
            cost=float(cost) if isinstance(cost, (int, float)) else None,
        ),
    )
