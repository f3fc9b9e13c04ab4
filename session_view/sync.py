#!/usr/bin/env python3
"""Incremental synchronisation of a session's conversation.

``ConversationController`` owns all per-session state: the displayed
messages, the snapshot of the previous build, the tool registry, and the
search and viewport controllers that react to them. Every reload fetches
both raw streams, rebuilds the conversation and then either appends the new
suffix (when the previous message ids are an exact positional prefix of the
new ones) or replaces the displayed messages wholesale.

Concurrency is cooperative: state is only touched between awaits on the
event loop. Each session switch bumps a generation counter; a reload,
debounced reload or background batch belonging to an older generation
discards its result.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Sequence, cast

from .builder import (
    INITIAL_BATCH_SIZE,
    PROGRESSIVE_THRESHOLD,
    build_conversation,
    build_messages,
    merge_batches,
    scan_prefix_claims,
    should_build_progressively,
    sort_events,
    split_for_progressive_build,
)
from .client import ApiResponse, SessionClient
from .factories import ToolRegistry, create_raw_event, create_raw_events
from .models import (
    ConversationMessage,
    DisplaySettings,
    RawEvent,
    Role,
    SystemSubtype,
)
from .search import SearchController
from .settings import PreferenceStore, save_display_settings
from .timings import log_timing, set_timing_var, timing_stat
from .viewport import ScrollAlign, ViewportController, VirtualList

logger = logging.getLogger(__name__)

RELOAD_DEBOUNCE = 0.5
BACKGROUND_BATCH_DELAY = 0.1
LOAD_ERROR_MESSAGE = "Failed to load conversation history"


# =============================================================================
# Stream Merging
# =============================================================================


def prompts_to_events(response: ApiResponse) -> list[RawEvent]:
    """Turn summarised prompt rows into user events with one text block."""
    if not response.success or not isinstance(response.data, list):
        return []
    events: list[RawEvent] = []
    for row in cast(list[Any], response.data):
        if not isinstance(row, dict) or row.get("message_type") != Role.USER.value:
            continue
        event = create_raw_event(
            {
                "type": "user",
                "message": {
                    "role": "user",
                    "content": [{"type": "text", "text": row.get("content") or ""}],
                },
                "timestamp": row.get("timestamp") or "",
            }
        )
        if event is not None:
            events.append(event)
    return events


def merge_streams(
    conversation_response: ApiResponse,
    events_response: ApiResponse,
) -> list[RawEvent]:
    """Merge prompt rows and the event log into one timestamp-sorted list."""
    events = prompts_to_events(conversation_response)
    if events_response.success:
        events.extend(create_raw_events(events_response.data))
    return sort_events(events)


# =============================================================================
# Update Planning
# =============================================================================


class UpdateKind(str, Enum):
    CLEAR = "clear"
    REPLACE = "replace"
    APPEND = "append"
    PREPEND = "prepend"
    ERROR = "error"


@dataclass(frozen=True)
class ConversationUpdate:
    """What changed in the displayed messages.

    ``messages`` holds the new suffix for APPEND, the spliced-in prefix for
    PREPEND and the complete list for REPLACE.
    """

    kind: UpdateKind
    messages: tuple[ConversationMessage, ...] = ()


def is_pure_append(
    previous: Sequence[ConversationMessage],
    current: Sequence[ConversationMessage],
) -> bool:
    """True when every previous id sits at the same index in ``current``."""
    if not previous or len(current) <= len(previous):
        return False
    return all(prev.id == cur.id for prev, cur in zip(previous, current))


def plan_update(
    previous: Sequence[ConversationMessage],
    current: Sequence[ConversationMessage],
) -> ConversationUpdate:
    if is_pure_append(previous, current):
        return ConversationUpdate(UpdateKind.APPEND, tuple(current[len(previous) :]))
    return ConversationUpdate(UpdateKind.REPLACE, tuple(current))


def filter_messages(
    messages: Sequence[ConversationMessage],
    settings: DisplaySettings,
) -> list[ConversationMessage]:
    """Messages the view displays: session init is hidden unless enabled."""
    if settings.show_session_init:
        return list(messages)
    return [
        msg
        for msg in messages
        if not (msg.role == Role.SYSTEM.value and msg.system_subtype == SystemSubtype.INIT.value)
    ]


def find_prompt_index(messages: Sequence[ConversationMessage], prompt_index: int) -> Optional[int]:
    """Index of the ``prompt_index``-th user message in ``messages``."""
    if prompt_index < 0:
        return None
    count = 0
    for index, msg in enumerate(messages):
        if msg.role == Role.USER.value:
            if count == prompt_index:
                return index
            count += 1
    return None


def is_waiting_for_response(
    messages: Sequence[ConversationMessage],
    session_status: Optional[str],
) -> bool:
    if session_status == "running":
        return True
    if session_status == "waiting" and messages:
        return messages[-1].role == Role.USER.value
    return False


UpdateListener = Callable[[ConversationUpdate], None]


# =============================================================================
# Controller
# =============================================================================


class ConversationController:
    """Per-session conversation state and its reload protocol."""

    def __init__(
        self,
        client: SessionClient,
        settings: Optional[DisplaySettings] = None,
        *,
        virtual_list: Optional[VirtualList] = None,
        preferences: Optional[PreferenceStore] = None,
        reload_debounce: float = RELOAD_DEBOUNCE,
        batch_delay: float = BACKGROUND_BATCH_DELAY,
        progressive_threshold: int = PROGRESSIVE_THRESHOLD,
        initial_batch_size: int = INITIAL_BATCH_SIZE,
    ):
        self.client = client
        self.settings = settings or DisplaySettings()
        self.preferences = preferences
        self.reload_debounce = reload_debounce
        self.batch_delay = batch_delay
        self.progressive_threshold = progressive_threshold
        self.initial_batch_size = initial_batch_size

        self.search = SearchController(on_navigate=self._scroll_to_search_result)
        self.viewport: Optional[ViewportController] = (
            ViewportController(virtual_list) if virtual_list is not None else None
        )
        self._listeners: list[UpdateListener] = []

        self.session_id: Optional[str] = None
        self.messages: list[ConversationMessage] = []
        self.tools = ToolRegistry()
        self.loading = False
        self.error: Optional[str] = None
        self.is_first_load = True

        self._previous: list[ConversationMessage] = []
        self._generation = 0
        self._loading_generation: Optional[int] = None
        self._reload_requested = False
        self._debounce_task: Optional["asyncio.Task[None]"] = None
        self._background_task: Optional["asyncio.Task[None]"] = None
        self._followup_task: Optional["asyncio.Task[None]"] = None

    # -- Listeners ------------------------------------------------------------

    def add_listener(self, listener: UpdateListener) -> None:
        self._listeners.append(listener)

    def _emit(self, update: ConversationUpdate) -> None:
        filtered = self.filtered_messages
        self.search.refresh(filtered)
        if self.viewport is not None:
            self.viewport.on_messages_changed(filtered, self.loading)
        for listener in self._listeners:
            listener(update)

    # -- Derived state --------------------------------------------------------

    @property
    def filtered_messages(self) -> list[ConversationMessage]:
        return filter_messages(self.messages, self.settings)

    @property
    def is_reloading(self) -> bool:
        return self._loading_generation is not None

    def prompt_message_index(self, prompt_index: int) -> Optional[int]:
        return find_prompt_index(self.filtered_messages, prompt_index)

    # -- Session lifecycle ----------------------------------------------------

    async def switch_session(self, session_id: str) -> None:
        """Drop all state of the current session and load ``session_id``."""
        self._cancel_tasks()
        self._generation += 1
        self._loading_generation = None
        self._reload_requested = False

        self.session_id = session_id
        self.messages = []
        self._previous = []
        self.tools = ToolRegistry()
        self.error = None
        self.loading = True
        self.is_first_load = True
        self.search.reset()
        if self.viewport is not None:
            self.viewport.reset()
        set_timing_var("_current_session_id", session_id)
        self._emit(ConversationUpdate(UpdateKind.CLEAR))

        await self.reload()

    def close(self) -> None:
        """Cancel pending work; late results of this controller are ignored."""
        self._cancel_tasks()
        self._generation += 1
        self.search.reset()
        if self.viewport is not None:
            self.viewport.cancel_pending()

    def _cancel_tasks(self) -> None:
        for task in (self._debounce_task, self._background_task, self._followup_task):
            if task is not None:
                task.cancel()
        self._debounce_task = None
        self._background_task = None
        self._followup_task = None

    # -- Reloading ------------------------------------------------------------

    def notify_output_available(self, session_id: str) -> None:
        """Schedule a debounced reload; bursts collapse into one reload."""
        if session_id != self.session_id:
            return
        if self._debounce_task is not None:
            self._debounce_task.cancel()
        self._debounce_task = asyncio.create_task(self._debounced_reload(self._generation))

    async def _debounced_reload(self, generation: int) -> None:
        await asyncio.sleep(self.reload_debounce)
        self._debounce_task = None
        if generation == self._generation:
            await self.reload()

    async def reload(self) -> None:
        """Fetch, rebuild and publish the current session's conversation.

        Returns immediately while another reload of the same session is in
        flight; that reload runs once more when it finishes.
        """
        session_id = self.session_id
        generation = self._generation
        if session_id is None:
            return
        if self._loading_generation == generation:
            self._reload_requested = True
            return

        self._loading_generation = generation
        try:
            self.error = None
            conversation_response, events_response = await asyncio.gather(
                self.client.get_conversation(session_id),
                self.client.get_json_messages(session_id),
            )
            if generation != self._generation:
                logger.debug("Discarding stale reload of session %s", session_id)
                return

            events = merge_streams(conversation_response, events_response)
            if should_build_progressively(
                len(events), self.is_first_load, self.progressive_threshold
            ):
                self._publish_progressively(events, generation)
            else:
                self._publish_full(events)
        except Exception:
            if generation == self._generation:
                logger.exception("Failed to load conversation of session %s", session_id)
                self.error = LOAD_ERROR_MESSAGE
                self.loading = False
                self._emit(ConversationUpdate(UpdateKind.ERROR))
        finally:
            if self._loading_generation == generation:
                self._loading_generation = None
            if generation == self._generation:
                self.loading = False
                if self._reload_requested:
                    self._reload_requested = False
                    self._followup_task = asyncio.create_task(self.reload())

    def _publish_full(self, events: list[RawEvent]) -> None:
        # A full build supersedes a pending background batch
        if self._background_task is not None:
            self._background_task.cancel()
            self._background_task = None

        with timing_stat("_build_timings"):
            conversation = build_conversation(events)
        update = plan_update(self._previous, conversation.messages)

        self.tools = conversation.tools
        if update.kind == UpdateKind.APPEND:
            self.messages = self.messages + list(update.messages)
        else:
            self.messages = list(conversation.messages)
        self._previous = list(conversation.messages)
        self.is_first_load = False
        self.loading = False
        self._emit(update)

    def _publish_progressively(self, events: list[RawEvent], generation: int) -> None:
        """Publish the most recent batch now and build the rest in the background."""
        prefix_events, tail_events = split_for_progressive_build(events, self.initial_batch_size)

        with log_timing(lambda: f"Build tool registry ({len(events)} events)"):
            tools = ToolRegistry.build(events)
        # The older prefix keeps first claim on duplicate ids and repeated tool calls
        claimed_ids, placed_tool_ids = scan_prefix_claims(prefix_events, tools)
        with log_timing("Transform initial batch"):
            tail = build_messages(
                tail_events,
                tools,
                index_offset=len(prefix_events),
                reserved_ids=claimed_ids,
                placed_tool_ids=placed_tool_ids,
            )

        self.tools = tools
        self.messages = tail
        # No snapshot until the full history is in place
        self._previous = []
        self.is_first_load = False
        self.loading = False
        self._emit(ConversationUpdate(UpdateKind.REPLACE, tuple(tail)))

        self._background_task = asyncio.create_task(
            self._build_remaining(prefix_events, tail, tools, generation)
        )

    async def _build_remaining(
        self,
        prefix_events: Sequence[RawEvent],
        tail: list[ConversationMessage],
        tools: ToolRegistry,
        generation: int,
    ) -> None:
        await asyncio.sleep(self.batch_delay)
        if generation != self._generation:
            return

        with log_timing("Transform remaining messages"):
            prefix = build_messages(prefix_events, tools)
        full = merge_batches(prefix, tail)

        self._background_task = None
        self.messages = full
        self._previous = list(full)
        self._emit(ConversationUpdate(UpdateKind.PREPEND, tuple(prefix)))

    # -- Display settings and navigation ---------------------------------------

    def update_settings(self, **changes: bool) -> DisplaySettings:
        """Apply setting changes, persist them and refresh dependent state."""
        unknown = set(changes) - set(DisplaySettings.model_fields)
        if unknown:
            raise ValueError(f"Unknown display settings: {', '.join(sorted(unknown))}")
        self.settings = self.settings.model_copy(update=changes)
        if self.preferences is not None:
            save_display_settings(self.preferences, self.settings)
        self._emit(ConversationUpdate(UpdateKind.REPLACE, tuple(self.messages)))
        return self.settings

    def scroll_to_prompt(self, prompt_index: int) -> bool:
        """Scroll to the ``prompt_index``-th user message; False if absent."""
        index = self.prompt_message_index(prompt_index)
        if index is None or self.viewport is None:
            return False
        return self.viewport.scroll_to_index(index, ScrollAlign.CENTER)

    def _scroll_to_search_result(self, message_index: int) -> None:
        if self.viewport is not None:
            self.viewport.scroll_to_index(message_index, ScrollAlign.CENTER)
