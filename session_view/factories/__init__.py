"""Factory modules for creating typed objects from raw session events."""

from .event_factory import (
    # Content classification
    CONTENT_BLOCK_CREATORS,
    create_content_block,
    create_event_content,
    # Raw event creation
    create_raw_event,
    create_raw_events,
    # Usage normalization
    normalize_usage_info,
)
from .tool_factory import (
    # Tool registry
    SUB_AGENT_TOOL_NAME,
    ToolRegistry,
    create_tool_call,
    create_tool_result,
    serialize_result_content,
)
from .system_factory import (
    # System and result message creation
    SYSTEM_MESSAGE_CREATORS,
    create_result_message,
    create_system_message,
    synthesize_id,
)
from .user_factory import (
    # User prompt detection and creation
    create_user_message,
    has_tool_result,
    is_text_only,
)
from .assistant_factory import (
    # Assistant message creation
    SYNTHETIC_ERROR_MARKERS,
    SYNTHETIC_MODEL,
    create_assistant_message,
    create_assistant_segments,
    is_synthetic_error,
    top_level_tool_ids,
)

__all__ = [
    # Content classification
    "CONTENT_BLOCK_CREATORS",
    "create_content_block",
    "create_event_content",
    # Raw event creation
    "create_raw_event",
    "create_raw_events",
    "normalize_usage_info",
    # Tool registry
    "SUB_AGENT_TOOL_NAME",
    "ToolRegistry",
    "create_tool_call",
    "create_tool_result",
    "serialize_result_content",
    # System and result message creation
    "SYSTEM_MESSAGE_CREATORS",
    "create_result_message",
    "create_system_message",
    "synthesize_id",
    # User prompt detection and creation
    "create_user_message",
    "has_tool_result",
    "is_text_only",
    # Assistant message creation
    "SYNTHETIC_ERROR_MARKERS",
    "SYNTHETIC_MODEL",
    "create_assistant_message",
    "create_assistant_segments",
    "is_synthetic_error",
    "top_level_tool_ids",
]
