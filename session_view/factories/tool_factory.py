"""Tool registry: the arena holding every ToolCall of a conversation.

The registry is built in three passes over the raw events:

- Pass A records tool results (``tool_use_id -> ToolResult``) and parent
  links (``child tool id -> parent tool id``).
- Pass B constructs a ToolCall for every ``tool_use`` block of an assistant
  event, with its result and parent already known.
- Pass C links each ToolCall into its parent's ``child_ids``.

Since A completes before B starts, a result or parent link may appear
anywhere in the log relative to the ``tool_use`` it belongs to.

A tool call whose declared parent never shows up keeps its
``parent_tool_id`` but is linked nowhere: it is neither top-level nor
reachable from another tool call.
"""

import json
from typing import Any, Iterable, Iterator, Optional

from ..models import (
    EventType,
    RawEvent,
    ToolCall,
    ToolResult,
    ToolResultBlock,
    ToolUseBlock,
)

SUB_AGENT_TOOL_NAME = "Task"


def serialize_result_content(content: Any) -> str:
    """Render tool result content as a string without losing data."""
    if isinstance(content, str):
        return content
    if content is None:
        return ""
    return json.dumps(content, ensure_ascii=False, default=str)


def create_tool_result(block: ToolResultBlock) -> ToolResult:
    return ToolResult(
        content=serialize_result_content(block.content),
        is_error=bool(block.is_error),
    )


def create_tool_call(
    block: ToolUseBlock,
    result: Optional[ToolResult],
    parent_tool_id: Optional[str],
) -> ToolCall:
    """Create a ToolCall from a tool_use block and what passes A found for it."""
    is_sub_agent = block.name == SUB_AGENT_TOOL_NAME
    sub_agent_type: Optional[str] = None
    if is_sub_agent and isinstance(block.input, dict):
        value = block.input.get("subagent_type")  # type: ignore[union-attr]
        sub_agent_type = value if isinstance(value, str) else None

    return ToolCall(
        id=block.id,
        name=block.name,
        input=block.input,
        result=result,
        is_sub_agent=is_sub_agent,
        sub_agent_type=sub_agent_type,
        parent_tool_id=parent_tool_id,
    )


class ToolRegistry:
    """Append-only store of ToolCalls indexed by id.

    Parent and child edges are stored as ids and resolved through the
    registry, so there are no object cycles between tool calls.
    """

    def __init__(self) -> None:
        self.results: dict[str, ToolResult] = {}
        self.parents: dict[str, str] = {}
        self.calls: dict[str, ToolCall] = {}

    @classmethod
    def build(cls, events: Iterable[RawEvent]) -> "ToolRegistry":
        registry = cls()
        event_list = list(events)
        registry._collect_results_and_parents(event_list)
        registry._construct_calls(event_list)
        registry._link_children()
        return registry

    # -- Build passes ---------------------------------------------------------

    def _collect_results_and_parents(self, events: list[RawEvent]) -> None:
        for event in events:
            if event.parent_tool_use_id and event.has_block_content:
                for block in event.blocks:
                    if isinstance(block, ToolUseBlock):
                        # First declaration wins: a tool call has at most one parent
                        self.parents.setdefault(block.id, event.parent_tool_use_id)

            if event.type == EventType.USER:
                for block in event.blocks:
                    if isinstance(block, ToolResultBlock):
                        self.results[block.tool_use_id] = create_tool_result(block)

    def _construct_calls(self, events: list[RawEvent]) -> None:
        for event in events:
            if event.type != EventType.ASSISTANT:
                continue
            for block in event.blocks:
                if isinstance(block, ToolUseBlock) and block.id not in self.calls:
                    self.calls[block.id] = create_tool_call(
                        block,
                        self.results.get(block.id),
                        self.parents.get(block.id),
                    )

    def _link_children(self) -> None:
        for tool_call in self.calls.values():
            if tool_call.parent_tool_id is None:
                continue
            parent = self.calls.get(tool_call.parent_tool_id)
            if parent is not None and parent is not tool_call:
                parent.child_ids.append(tool_call.id)

    # -- Lookups --------------------------------------------------------------

    def __contains__(self, tool_id: object) -> bool:
        return tool_id in self.calls

    def __len__(self) -> int:
        return len(self.calls)

    def get(self, tool_id: str) -> Optional[ToolCall]:
        return self.calls.get(tool_id)

    def is_top_level(self, tool_id: str) -> bool:
        tool_call = self.calls.get(tool_id)
        return tool_call is not None and tool_call.parent_tool_id is None

    def children(self, tool_call: ToolCall) -> list[ToolCall]:
        """Resolve a tool call's child ids, in first-seen order."""
        return [self.calls[child_id] for child_id in tool_call.child_ids if child_id in self.calls]

    def walk(self, tool_id: str) -> Iterator[tuple[int, ToolCall]]:
        """Yield ``(depth, tool_call)`` for a tool call and all its descendants.

        Depth-first, children in first-seen order. Parent links that form a
        cycle are visited once.
        """
        seen: set[str] = set()
        stack: list[tuple[int, str]] = [(0, tool_id)]
        while stack:
            depth, current_id = stack.pop()
            tool_call = self.calls.get(current_id)
            if tool_call is None or current_id in seen:
                continue
            seen.add(current_id)
            yield depth, tool_call
            for child_id in reversed(tool_call.child_ids):
                stack.append((depth + 1, child_id))

    def count_reachable(self, tool_id: str) -> int:
        return sum(1 for _ in self.walk(tool_id))

    def orphans(self) -> list[ToolCall]:
        """Tool calls whose declared parent is not in the registry.

        These are never displayed; exposed so callers can report them.
        """
        return [
            tool_call
            for tool_call in self.calls.values()
            if tool_call.parent_tool_id is not None
            and tool_call.parent_tool_id not in self.calls
        ]
