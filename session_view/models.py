"""Models for raw session events and the reconstructed conversation.

Raw events arrive in several shapes depending on the agent backend that
produced them. They are parsed once (see factories/event_factory.py) into
``RawEvent`` whose ``content`` is one of a closed set of variants, so the
builders never probe ad hoc fields.

The reconstructed conversation uses plain frozen dataclasses:
ConversationMessage -> Segment -> ToolCall ids resolved through a
``ToolRegistry`` (factories/tool_factory.py).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from .factories.tool_factory import ToolRegistry


class EventType(str, Enum):
    """Top-level ``type`` of a raw event.

    Using str as base class keeps plain string comparisons working.
    """

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    RESULT = "result"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class SystemSubtype(str, Enum):
    """System subtypes that produce a message. Anything else is ignored."""

    INIT = "init"
    CONTEXT_COMPACTED = "context_compacted"
    ERROR = "error"
    GIT_OPERATION = "git_operation"
    GIT_ERROR = "git_error"


class ToolStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


# =============================================================================
# Raw Event Content Models
# =============================================================================


class TextBlock(BaseModel):
    type: Literal["text"]
    text: str = ""


class ThinkingBlock(BaseModel):
    """Reasoning block.

    Backends disagree on the field name, so ``thinking``, ``content`` and
    ``text`` are all accepted; ``body`` picks the first string among them.
    """

    type: Literal["thinking"]
    thinking: Optional[Any] = None
    content: Optional[Any] = None
    text: Optional[Any] = None

    @property
    def body(self) -> str:
        for candidate in (self.thinking, self.content, self.text):
            if candidate:
                return candidate if isinstance(candidate, str) else ""
        return ""


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"]
    id: str
    name: str = ""
    input: Any = None


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"]
    tool_use_id: str
    content: Any = None
    is_error: Optional[bool] = None


class UnknownBlock(BaseModel):
    """Block with an unrecognised type or a shape that failed validation."""

    type: str = "unknown"


ContentBlock = Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock, UnknownBlock]


class BlockContent(BaseModel):
    kind: Literal["blocks"] = "blocks"
    blocks: list[ContentBlock] = Field(default_factory=list)


class StringContent(BaseModel):
    kind: Literal["string"] = "string"
    text: str


class PartsContent(BaseModel):
    """Gemini style ``parts`` array, reduced to the parts carrying text."""

    kind: Literal["parts"] = "parts"
    texts: list[str] = Field(default_factory=list)


class EmptyContent(BaseModel):
    kind: Literal["empty"] = "empty"


EventContent = Union[BlockContent, StringContent, PartsContent, EmptyContent]


class UsageInfo(BaseModel):
    """Token usage as reported by the backend. All fields are optional."""

    model_config = ConfigDict(extra="ignore")

    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    cost: Optional[float] = None

    @property
    def total_tokens(self) -> int:
        return (self.input_tokens or 0) + (self.output_tokens or 0)


class RawEvent(BaseModel):
    """One entry of the upstream session log, normalised.

    ``raw`` keeps the source mapping for subtype specific payloads
    (cwd, tools, summary, ...) which are passed through untouched.
    """

    type: str
    timestamp: str = ""
    role: Optional[str] = None
    subtype: Optional[str] = None
    id: Optional[str] = None
    parent_tool_use_id: Optional[str] = None
    model: Optional[str] = None
    text: Optional[str] = None
    content: EventContent = Field(default_factory=EmptyContent)
    usage: Optional[UsageInfo] = None
    duration: Optional[float] = None
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)

    @property
    def blocks(self) -> list[ContentBlock]:
        """Content blocks, or an empty list for non-block content."""
        if isinstance(self.content, BlockContent):
            return self.content.blocks
        return []

    @property
    def has_block_content(self) -> bool:
        return isinstance(self.content, BlockContent)


# =============================================================================
# Conversation Model
# =============================================================================


@dataclass(frozen=True)
class TextSegment:
    type: ClassVar[str] = "text"
    content: str


@dataclass(frozen=True)
class ToolCallSegment:
    """A top-level tool call, referenced by id.

    Resolve it with ``Conversation.tools`` (or any registry built from a
    superset of the same events) to get the current status and children.
    """

    type: ClassVar[str] = "tool_call"
    tool_id: str


@dataclass(frozen=True)
class SystemInfoSegment:
    type: ClassVar[str] = "system_info"
    info: dict[str, Any]


@dataclass(frozen=True)
class ThinkingSegment:
    type: ClassVar[str] = "thinking"
    content: str


Segment = Union[TextSegment, ToolCallSegment, SystemInfoSegment, ThinkingSegment]


@dataclass(frozen=True)
class MessageMetadata:
    agent: Optional[str] = None
    model: Optional[str] = None
    duration: Optional[float] = None
    tokens: Optional[int] = None
    cost: Optional[float] = None
    system_subtype: Optional[str] = None
    session_info: Optional[dict[str, Any]] = field(default=None, compare=False)


@dataclass(frozen=True)
class ConversationMessage:
    id: str
    role: str
    timestamp: str
    segments: tuple[Segment, ...]
    metadata: Optional[MessageMetadata] = None

    @property
    def text(self) -> str:
        """All text segments joined by a blank line."""
        return "\n\n".join(
            seg.content for seg in self.segments if isinstance(seg, TextSegment)
        )

    @property
    def system_subtype(self) -> Optional[str]:
        return self.metadata.system_subtype if self.metadata else None

    def segments_of(self, segment_type: str) -> list[Segment]:
        return [seg for seg in self.segments if seg.type == segment_type]


@dataclass(frozen=True)
class ToolResult:
    content: str
    is_error: bool = False


@dataclass
class ToolCall:
    """One tool invocation in the arena.

    Edges are ids only: ``parent_tool_id`` is a back-reference and
    ``child_ids`` lists owned children in first-seen order.
    """

    id: str
    name: str
    input: Any = None
    result: Optional[ToolResult] = None
    is_sub_agent: bool = False
    sub_agent_type: Optional[str] = None
    parent_tool_id: Optional[str] = None
    child_ids: list[str] = field(default_factory=lambda: [])  # type: list[str]

    @property
    def status(self) -> ToolStatus:
        if self.result is None:
            return ToolStatus.PENDING
        return ToolStatus.ERROR if self.result.is_error else ToolStatus.SUCCESS

    @property
    def has_children(self) -> bool:
        return bool(self.child_ids)


@dataclass
class Conversation:
    """Ordered messages plus the tool registry their segments resolve against."""

    messages: list[ConversationMessage]
    tools: "ToolRegistry"

    @property
    def message_ids(self) -> list[str]:
        return [msg.id for msg in self.messages]

    def __len__(self) -> int:
        return len(self.messages)


# =============================================================================
# Search Model
# =============================================================================


@dataclass(frozen=True)
class SearchMatch:
    segment_index: int
    snippet: str
    start: int
    end: int


@dataclass(frozen=True)
class SearchResult:
    message_index: int
    matches: tuple[SearchMatch, ...]


# =============================================================================
# Display Settings
# =============================================================================


class DisplaySettings(BaseModel):
    """Persisted display preferences.

    Field aliases match the camelCase keys of the stored preference blob.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    show_tool_calls: bool = Field(default=True, alias="showToolCalls")
    compact_mode: bool = Field(default=False, alias="compactMode")
    collapse_tools: bool = Field(default=False, alias="collapseTools")
    show_thinking: bool = Field(default=True, alias="showThinking")
    show_session_init: bool = Field(default=False, alias="showSessionInit")
