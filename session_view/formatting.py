"""Plain-text formatting of conversation content for terminal surfaces.

This module contains text formatters for:
- Tool inputs (Read, Edit/MultiEdit, Write, Bash, Grep, Task, TodoWrite, generic)
- Tool results (Task text, image placeholders, JSON, long output)
- Tool call trees with nested sub-agent actions
- Agent names, timestamps and durations
- Whole messages, including system notices
"""

import json
from datetime import datetime
from typing import Any, Callable, Optional, cast

from .factories import ToolRegistry
from .models import (
    ConversationMessage,
    DisplaySettings,
    MessageMetadata,
    Role,
    SystemInfoSegment,
    SystemSubtype,
    TextSegment,
    ThinkingSegment,
    ToolCall,
    ToolCallSegment,
    ToolStatus,
)

LONG_RESULT_THRESHOLD = 300
RESULT_PREVIEW_CHARS = 100
DEFAULT_READ_LIMIT = 2000

STATUS_ICONS: dict[ToolStatus, str] = {
    ToolStatus.SUCCESS: "✓",
    ToolStatus.ERROR: "✗",
    ToolStatus.PENDING: "…",
}

TODO_ICONS = {"completed": "✓", "in_progress": "→"}

AGENT_NAMES = {
    "claude": "Claude",
    "gpt-4": "GPT-4",
    "openai": "GPT-4",
    "gemini": "Gemini",
    "google": "Gemini",
}


def get_agent_name(agent: Optional[str]) -> str:
    return AGENT_NAMES.get(agent or "", "Assistant")


def format_timestamp(timestamp_str: Optional[str]) -> str:
    """Format ISO timestamp for display, converting to UTC."""
    if not timestamp_str:
        return ""
    try:
        dt = datetime.fromisoformat(timestamp_str.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return timestamp_str
    if dt.tzinfo is not None:
        dt = datetime(*dt.utctimetuple()[:6])
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def format_duration(metadata: Optional[MessageMetadata]) -> str:
    """Duration in seconds with one decimal, e.g. ``1.5s``; empty if unknown."""
    if metadata is None or not metadata.duration:
        return ""
    return f"{metadata.duration / 1000:.1f}s"


# -- Tool Inputs -------------------------------------------------------------


def _format_read_input(tool_input: dict[str, Any]) -> list[str]:
    lines: list[str] = []
    if tool_input.get("file_path"):
        lines.append(f"File: {tool_input['file_path']}")
    offset = tool_input.get("offset")
    if isinstance(offset, int) and offset:
        limit = tool_input.get("limit") or DEFAULT_READ_LIMIT
        lines.append(f"Lines: {offset}-{offset + limit}")
    return lines


def _format_edit_input(tool_input: dict[str, Any]) -> list[str]:
    lines: list[str] = []
    if tool_input.get("file_path"):
        lines.append(f"File: {tool_input['file_path']}")
    edits = tool_input.get("edits")
    if isinstance(edits, list):
        lines.append(f"{len(cast(list[Any], edits))} changes")
    return lines


def _format_write_input(tool_input: dict[str, Any]) -> list[str]:
    lines: list[str] = []
    if tool_input.get("file_path"):
        lines.append(f"File: {tool_input['file_path']}")
    content = tool_input.get("content")
    if isinstance(content, str) and content:
        lines.append(f"{len(content.split(chr(10)))} lines")
    return lines


def _format_bash_input(tool_input: dict[str, Any]) -> list[str]:
    return [f"$ {tool_input.get('command', '')}"]


def _format_grep_input(tool_input: dict[str, Any]) -> list[str]:
    lines = [f'Pattern: "{tool_input.get("pattern", "")}"']
    if tool_input.get("path"):
        lines.append(f"Path: {tool_input['path']}")
    if tool_input.get("glob"):
        lines.append(f"Files: {tool_input['glob']}")
    return lines


def _format_task_input(tool_input: dict[str, Any]) -> list[str]:
    lines: list[str] = []
    if tool_input.get("description"):
        lines.append(f"Task: {tool_input['description']}")
    if tool_input.get("subagent_type"):
        lines.append(f"Agent Type: {tool_input['subagent_type']}")
    if tool_input.get("prompt"):
        lines.append(f"Prompt: {tool_input['prompt']}")
    return lines


def _format_todowrite_input(tool_input: dict[str, Any]) -> list[str]:
    todos = tool_input.get("todos")
    if not isinstance(todos, list):
        return []
    lines: list[str] = []
    for todo in cast(list[Any], todos):
        if isinstance(todo, dict):
            item = cast(dict[str, Any], todo)
            icon = TODO_ICONS.get(item.get("status", ""), "○")
            lines.append(f"{icon} {item.get('content', '')}")
    return lines


TOOL_INPUT_FORMATTERS: dict[str, Callable[[dict[str, Any]], list[str]]] = {
    "Read": _format_read_input,
    "Edit": _format_edit_input,
    "MultiEdit": _format_edit_input,
    "Write": _format_write_input,
    "Bash": _format_bash_input,
    "Grep": _format_grep_input,
    "Task": _format_task_input,
    "TodoWrite": _format_todowrite_input,
}


def format_tool_input(tool_name: str, tool_input: Any) -> list[str]:
    """Summarise a tool's input as display lines; empty for empty input."""
    if not tool_input:
        return []
    formatter = TOOL_INPUT_FORMATTERS.get(tool_name)
    if formatter is not None and isinstance(tool_input, dict):
        return formatter(cast(dict[str, Any], tool_input))
    return json.dumps(tool_input, indent=2, ensure_ascii=False, default=str).splitlines()


# -- Tool Results ------------------------------------------------------------


def format_tool_result(tool_name: str, content: str) -> list[str]:
    """Summarise a tool result as display lines."""
    if not content:
        return ["No result"]

    try:
        parsed = json.loads(content)
    except (json.JSONDecodeError, ValueError):
        if len(content) > LONG_RESULT_THRESHOLD:
            return [f"{content[:RESULT_PREVIEW_CHARS]}... ({len(content)} chars)"]
        return content.splitlines()

    if isinstance(parsed, list):
        items = cast(list[Any], parsed)
        if tool_name == "Task":
            texts = [
                item["text"]
                for item in items
                if isinstance(item, dict) and item.get("type") == "text" and item.get("text")
            ]
            if texts:
                return "\n\n".join(texts).splitlines()
        if items and isinstance(items[0], dict) and items[0].get("type") == "image":
            return ["[Image displayed to assistant]"]

    return json.dumps(parsed, indent=2, ensure_ascii=False).splitlines()


# -- Tool Call Trees ---------------------------------------------------------


def tool_call_title(tool_call: ToolCall) -> str:
    icon = STATUS_ICONS[tool_call.status]
    if tool_call.is_sub_agent:
        label = "Sub-Agent"
        if tool_call.sub_agent_type:
            label += f" [{tool_call.sub_agent_type}]"
    else:
        label = tool_call.name
    return f"{icon} {label}"


def format_tool_call(
    tools: ToolRegistry,
    tool_call: ToolCall,
    *,
    expanded: bool = True,
    depth: int = 0,
    indent: str = "  ",
) -> list[str]:
    """Display lines of a tool call, its nested children and its result."""
    pad = indent * depth
    lines = [f"{pad}{tool_call_title(tool_call)}"]
    if not expanded:
        return lines

    body_pad = pad + indent
    lines.extend(f"{body_pad}{line}" for line in format_tool_input(tool_call.name, tool_call.input))

    children = tools.children(tool_call)
    if children:
        lines.append(f"{body_pad}Sub-agent Actions:")
        for child in children:
            lines.extend(
                format_tool_call(tools, child, expanded=expanded, depth=depth + 2, indent=indent)
            )

    if tool_call.result is not None:
        label = "Error:" if tool_call.result.is_error else "Result:"
        lines.append(f"{body_pad}{label}")
        lines.extend(
            f"{body_pad}{indent}{line}"
            for line in format_tool_result(tool_call.name, tool_call.result.content)
        )
    elif not children:
        lines.append(f"{body_pad}Waiting for result...")
    return lines


# -- Messages ----------------------------------------------------------------


def format_message_header(message: ConversationMessage) -> str:
    """Speaker, time and usage line of a message."""
    metadata = message.metadata
    if message.role == Role.USER.value:
        speaker = "You"
    elif message.role == Role.ASSISTANT.value:
        speaker = get_agent_name(metadata.agent if metadata else None)
    else:
        speaker = "System"

    parts = [speaker, format_timestamp(message.timestamp)]
    if metadata is not None:
        if metadata.model and message.role == Role.ASSISTANT.value:
            parts.append(metadata.model)
        duration = format_duration(metadata)
        if duration:
            parts.append(duration)
        if metadata.tokens:
            parts.append(f"{metadata.tokens:,} tokens")
        if metadata.cost:
            parts.append(f"${metadata.cost:.4f}")
    return " · ".join(part for part in parts if part)


def _system_info(message: ConversationMessage) -> dict[str, Any]:
    for segment in message.segments:
        if isinstance(segment, SystemInfoSegment):
            return segment.info
    return {}


def format_system_message(message: ConversationMessage) -> tuple[str, list[str]]:
    """Title and body lines of a system message."""
    info = _system_info(message)
    text = message.text
    subtype = message.system_subtype

    if subtype == SystemSubtype.INIT.value:
        tools = info.get("tools")
        tool_count = len(cast(list[Any], tools)) if isinstance(tools, list) else 0
        return "Session Started", [
            f"Model: {info.get('model') or ''}",
            f"Working Directory: {info.get('cwd') or ''}",
            f"Tools: {tool_count} available",
        ]
    if subtype == SystemSubtype.ERROR.value:
        title = info.get("error") or "Session Error"
        body = info.get("message") or text
        lines = str(body).splitlines()
        if info.get("details"):
            lines.append(f"Details: {info['details']}")
        return str(title), lines
    if subtype == SystemSubtype.CONTEXT_COMPACTED.value:
        lines = text.splitlines()
        if info.get("message"):
            lines.append(str(info["message"]))
        return "Context Compacted", lines
    if subtype == SystemSubtype.GIT_OPERATION.value:
        return "Git Operation", [
            line.strip()
            for line in text.splitlines()
            if line.strip() and "GIT OPERATION" not in line
        ]
    if subtype == SystemSubtype.GIT_ERROR.value:
        return "Git Error", [line.strip() for line in text.splitlines() if line.strip()]
    return "System", text.splitlines()


def format_message(
    message: ConversationMessage,
    tools: ToolRegistry,
    settings: DisplaySettings,
) -> list[str]:
    """Plain-text rendition of a message honouring the display settings."""
    lines = [format_message_header(message)]
    if message.role == Role.SYSTEM.value:
        title, body = format_system_message(message)
        lines.append(f"  {title}")
        lines.extend(f"    {line}" for line in body)
        return lines

    for segment in message.segments:
        if isinstance(segment, ThinkingSegment):
            if settings.show_thinking:
                lines.append("  Thinking:")
                lines.extend(f"    {line}" for line in segment.content.splitlines())
        elif isinstance(segment, TextSegment):
            lines.extend(f"  {line}" for line in segment.content.splitlines())
        elif isinstance(segment, ToolCallSegment) and settings.show_tool_calls:
            tool_call = tools.get(segment.tool_id)
            if tool_call is not None:
                lines.extend(
                    format_tool_call(
                        tools, tool_call, expanded=not settings.collapse_tools, depth=1
                    )
                )
    return lines
