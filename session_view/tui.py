#!/usr/bin/env python3
"""Interactive Terminal User Interface for following an agent session."""

from typing import ClassVar, Optional, Sequence

from rich.markup import escape
from textual.app import App, ComposeResult
from textual.binding import Binding, BindingType
from textual.containers import Horizontal, VerticalScroll
from textual.message import Message
from textual.widgets import Footer, Header, Input, Label, Static

from .client import JsonlSessionClient, OutputWatcher, SessionClient
from .factories import ToolRegistry
from .formatting import format_message_header, format_system_message, format_tool_call
from .models import (
    ConversationMessage,
    DisplaySettings,
    Role,
    TextSegment,
    ThinkingSegment,
    ToolCallSegment,
)
from .search import highlight_spans
from .settings import PreferenceStore, load_display_settings
from .sync import ConversationController, ConversationUpdate
from .viewport import ScrollAlign

COLLAPSE_THRESHOLD = 200
COLLAPSED_PREVIEW_CHARS = 200


def highlight_markup(text: str, query: str) -> str:
    """Escape ``text`` for Rich markup, reversing every match of ``query``."""
    parts: list[str] = []
    pos = 0
    for start, end in highlight_spans(text, query):
        parts.append(escape(text[pos:start]))
        parts.append(f"[reverse]{escape(text[start:end])}[/reverse]")
        pos = end
    parts.append(escape(text[pos:]))
    return "".join(parts)


def is_collapsible(message: ConversationMessage) -> bool:
    return len(message.text) > COLLAPSE_THRESHOLD


def render_message(
    message: ConversationMessage,
    tools: ToolRegistry,
    settings: DisplaySettings,
    *,
    collapsed: bool = False,
    expanded_tools: Optional[set[str]] = None,
    query: str = "",
) -> str:
    """Rich markup for one message."""
    expanded_tools = expanded_tools or set()
    lines = [f"[bold]{escape(format_message_header(message))}[/bold]"]

    if message.role == Role.SYSTEM.value:
        title, body = format_system_message(message)
        lines.append(f"[b]{escape(title)}[/b]")
        lines.extend(highlight_markup(line, query) for line in body)
        return "\n".join(lines)

    for segment in message.segments:
        if isinstance(segment, ThinkingSegment):
            if settings.show_thinking:
                lines.append(f"[dim italic]{escape(segment.content)}[/dim italic]")
        elif isinstance(segment, TextSegment):
            text = segment.content
            if collapsed:
                text = text[:COLLAPSED_PREVIEW_CHARS].rstrip() + "…"
            lines.append(highlight_markup(text, query))
        elif isinstance(segment, ToolCallSegment) and settings.show_tool_calls:
            tool_call = tools.get(segment.tool_id)
            if tool_call is None:
                continue
            expanded = not settings.collapse_tools or tool_call.id in expanded_tools
            tool_lines = format_tool_call(tools, tool_call, expanded=expanded)
            lines.append(f"[b]{escape(tool_lines[0])}[/b]")
            lines.extend(escape(line) for line in tool_lines[1:])

    if collapsed:
        lines.append("[dim](click to expand)[/dim]")
    return "\n".join(lines)


class MessageView(Static):
    """One conversation message in the list."""

    class Selected(Message):
        """Posted when a message is clicked."""

        def __init__(self, view: "MessageView") -> None:
            super().__init__()
            self.view = view

    def __init__(self, message: ConversationMessage) -> None:
        super().__init__("", classes=f"message {message.role}")
        self.message = message

    def on_click(self) -> None:
        self.post_message(self.Selected(self))


class MessageList(VerticalScroll):
    """Scrollable message container, driven by the viewport controller."""

    class BottomChanged(Message):
        def __init__(self, at_bottom: bool) -> None:
            super().__init__()
            self.at_bottom = at_bottom

    at_bottom: bool = True

    def on_mount(self) -> None:
        self.watch(self, "scroll_y", self._check_bottom, init=False)

    def _check_bottom(self) -> None:
        at_bottom = self.max_scroll_y - self.scroll_y <= 1
        if at_bottom != self.at_bottom:
            self.at_bottom = at_bottom
            self.post_message(self.BottomChanged(at_bottom))

    @property
    def views(self) -> list[MessageView]:
        return [child for child in self.children if isinstance(child, MessageView)]

    @property
    def scroll_offset(self) -> float:
        return float(self.scroll_y)

    @property
    def max_scroll_offset(self) -> float:
        return float(self.max_scroll_y)

    def scroll_to_index(self, index: int, align: ScrollAlign, smooth: bool) -> None:
        views = self.views
        if not 0 <= index < len(views) or (
            align == ScrollAlign.END and index == len(views) - 1
        ):
            # Not mounted yet; the settle pass corrects the offset later
            self.scroll_end(animate=smooth)
            return
        self.scroll_to_widget(
            views[index],
            animate=smooth,
            center=align == ScrollAlign.CENTER,
            top=align == ScrollAlign.START,
        )

    def scroll_to_offset(self, offset: float, smooth: bool) -> None:
        self.scroll_to(y=offset, animate=smooth)


class SessionViewApp(App[None]):
    """Live view of one session's conversation."""

    CSS = """
    #search-bar {
        display: none;
        height: 3;
    }

    #search-bar.open {
        display: block;
    }

    #search-input {
        width: 1fr;
    }

    #search-status {
        width: auto;
        padding: 1 1;
        color: $text-muted;
    }

    #status {
        height: auto;
        color: $text-muted;
    }

    #status.error {
        color: $error;
    }

    #messages {
        height: 1fr;
    }

    .message {
        padding: 1 2;
        margin-bottom: 1;
    }

    #messages.compact .message {
        padding: 0 1;
        margin-bottom: 0;
    }

    .message.user {
        border-left: thick $primary;
    }

    .message.assistant {
        border-left: thick $secondary;
    }

    .message.system {
        border-left: thick $warning;
        color: $text-muted;
    }

    .message.search-match {
        background: $boost;
    }

    .message.search-current {
        background: $accent 20%;
    }

    #jump-to-latest {
        display: none;
        dock: bottom;
        width: 100%;
        content-align: center middle;
        background: $primary;
    }

    #jump-to-latest.visible {
        display: block;
    }
    """

    TITLE = "Session View"
    BINDINGS: ClassVar[list[BindingType]] = [
        Binding("q", "quit", "Quit"),
        Binding("ctrl+f", "open_search", "Search", priority=True),
        Binding("n", "next_result", "Next match", show=False),
        Binding("N", "previous_result", "Previous match", show=False),
        Binding("escape", "close_search", "Close search", show=False, priority=True),
        Binding("end", "jump_to_latest", "Latest", priority=True),
        Binding("left_square_bracket", "previous_prompt", "Prev prompt", key_display="["),
        Binding("right_square_bracket", "next_prompt", "Next prompt", key_display="]"),
        Binding("t", "toggle_setting('show_tool_calls')", "Tools"),
        Binding("k", "toggle_setting('show_thinking')", "Thinking"),
        Binding("i", "toggle_setting('show_session_init')", "Init", show=False),
        Binding("c", "toggle_setting('compact_mode')", "Compact", show=False),
        Binding("o", "toggle_setting('collapse_tools')", "Collapse tools", show=False),
        Binding("r", "reload", "Reload"),
    ]

    controller: ConversationController
    watcher: Optional[OutputWatcher]

    def __init__(
        self,
        client: SessionClient,
        session_id: str,
        *,
        preferences: Optional[PreferenceStore] = None,
        settings: Optional[DisplaySettings] = None,
        watch_output: bool = True,
    ):
        """Initialize the view for ``session_id``."""
        super().__init__()
        self.theme = "gruvbox"
        self.client = client
        self.session_id = session_id
        self.preferences = preferences
        if settings is None:
            settings = (
                load_display_settings(preferences) if preferences else DisplaySettings()
            )
        self.initial_settings = settings
        self.watch_output = watch_output
        self.watcher = None
        self.collapsed_messages: set[str] = set()
        self.expanded_tools: set[str] = set()
        self.prompt_index: Optional[int] = None
        self.sub_title = session_id

    def compose(self) -> ComposeResult:
        """Create the UI layout."""
        yield Header()
        with Horizontal(id="search-bar"):
            yield Input(placeholder="Search messages...", id="search-input")
            yield Label("", id="search-status")
        yield Label("Loading conversation...", id="status")
        yield MessageList(id="messages")
        yield Label("↓ Jump to latest (End)", id="jump-to-latest")
        yield Footer()

    def on_mount(self) -> None:
        """Create the controller and start loading the session."""
        message_list = self.query_one(MessageList)
        self.controller = ConversationController(
            self.client,
            self.initial_settings,
            virtual_list=message_list,
            preferences=self.preferences,
        )
        self.controller.search.on_results = lambda _results: self._update_search_state()
        self.controller.add_listener(self._on_conversation_update)
        message_list.set_class(self.initial_settings.compact_mode, "compact")

        if self.watch_output and isinstance(self.client, JsonlSessionClient):
            self.watcher = OutputWatcher(
                self.client, self.session_id, self.controller.notify_output_available
            )
            self.watcher.start()

        self.run_worker(
            self.controller.switch_session(self.session_id), group="load", exclusive=True
        )

    def on_unmount(self) -> None:
        self.controller.search.on_results = None
        if self.watcher is not None:
            self.watcher.stop()
        self.controller.close()

    # -- Rendering -------------------------------------------------------------

    def _on_conversation_update(self, _update: ConversationUpdate) -> None:
        self._update_status()
        self.run_worker(self._sync_message_views(), group="render", exclusive=True)

    def _update_status(self) -> None:
        status = self.query_one("#status", Label)
        controller = self.controller
        status.set_class(controller.error is not None, "error")
        if controller.error is not None:
            status.update(controller.error)
        elif controller.loading:
            status.update("Loading conversation...")
        elif not controller.filtered_messages:
            status.update("No messages yet")
        else:
            status.update("")
        status.display = bool(
            controller.error or controller.loading or not controller.filtered_messages
        )

    async def _sync_message_views(self) -> None:
        """Bring the mounted views in line with the filtered messages."""
        message_list = self.query_one(MessageList)
        message_list.set_class(self.controller.settings.compact_mode, "compact")
        messages = self.controller.filtered_messages
        views = message_list.views
        rendered_ids = [view.message.id for view in views]
        ids = [message.id for message in messages]

        if views and ids[: len(views)] == rendered_ids:
            for view, message in zip(views, messages):
                view.message = message
            new_views = [MessageView(message) for message in messages[len(views) :]]
            if new_views:
                await message_list.mount_all(new_views)
        elif views and ids[len(ids) - len(views) :] == rendered_ids:
            for view, message in zip(views, messages[len(ids) - len(views) :]):
                view.message = message
            new_views = [MessageView(message) for message in messages[: len(ids) - len(views)]]
            await message_list.mount_all(new_views, before=views[0])
        else:
            await message_list.remove_children()
            await message_list.mount_all([MessageView(message) for message in messages])

        self._refresh_views(message_list.views)
        self._update_search_state()

    def _refresh_views(self, views: Sequence[MessageView]) -> None:
        tools = self.controller.tools
        settings = self.controller.settings
        query = self.controller.search.active_query
        for view in views:
            message = view.message
            view.update(
                render_message(
                    message,
                    tools,
                    settings,
                    collapsed=message.id in self.collapsed_messages,
                    expanded_tools=self.expanded_tools,
                    query=query,
                )
            )

    def _update_search_state(self) -> None:
        search = self.controller.search
        label = self.query_one("#search-status", Label)
        if search.results:
            label.update(search.status)
        elif search.active_query:
            label.update("No results")
        else:
            label.update("")

        current = search.current
        for index, view in enumerate(self.query_one(MessageList).views):
            view.set_class(search.is_match(index), "search-match")
            view.set_class(
                current is not None and current.message_index == index, "search-current"
            )

    # -- Events ----------------------------------------------------------------

    def on_message_list_bottom_changed(self, event: MessageList.BottomChanged) -> None:
        viewport = self.controller.viewport
        if viewport is None:
            return
        viewport.on_bottom_state_changed(event.at_bottom)
        self.query_one("#jump-to-latest", Label).set_class(
            viewport.show_jump_to_latest, "visible"
        )

    def on_message_view_selected(self, event: MessageView.Selected) -> None:
        """Clicking a message toggles its collapse and its tool expansion."""
        message = event.view.message
        if is_collapsible(message):
            self.collapsed_messages ^= {message.id}
        if self.controller.settings.collapse_tools:
            for segment in message.segments:
                if isinstance(segment, ToolCallSegment):
                    self.expanded_tools ^= {segment.tool_id}
        self._refresh_views([event.view])

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id == "search-input":
            self.controller.search.set_query(event.value)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id == "search-input":
            self.action_next_result()

    # -- Actions ---------------------------------------------------------------

    def action_open_search(self) -> None:
        self.controller.search.open()
        self.query_one("#search-bar").add_class("open")
        self.query_one("#search-input", Input).focus()

    def action_close_search(self) -> None:
        if not self.controller.search.is_open:
            return
        self.controller.search.close()
        search_input = self.query_one("#search-input", Input)
        with search_input.prevent(Input.Changed):
            search_input.value = ""
        self.query_one("#search-bar").remove_class("open")
        self.query_one(MessageList).focus()
        self._refresh_views(self.query_one(MessageList).views)

    def action_next_result(self) -> None:
        if self.controller.search.next() is not None:
            self._refresh_views(self.query_one(MessageList).views)
            self._update_search_state()

    def action_previous_result(self) -> None:
        if self.controller.search.previous() is not None:
            self._refresh_views(self.query_one(MessageList).views)
            self._update_search_state()

    def action_jump_to_latest(self) -> None:
        if self.controller.viewport is not None:
            self.controller.viewport.jump_to_latest()

    def _prompt_count(self) -> int:
        return sum(
            1 for message in self.controller.filtered_messages if message.role == Role.USER.value
        )

    def action_previous_prompt(self) -> None:
        count = self._prompt_count()
        if count == 0:
            return
        if self.prompt_index is None:
            self.prompt_index = count - 1
        else:
            self.prompt_index = max(0, min(self.prompt_index, count) - 1)
        self.controller.scroll_to_prompt(self.prompt_index)

    def action_next_prompt(self) -> None:
        count = self._prompt_count()
        if count == 0:
            return
        if self.prompt_index is None:
            self.prompt_index = 0
        else:
            self.prompt_index = min(count - 1, self.prompt_index + 1)
        self.controller.scroll_to_prompt(self.prompt_index)

    def action_toggle_setting(self, name: str) -> None:
        value = not getattr(self.controller.settings, name)
        self.controller.update_settings(**{name: value})
        label = name.replace("_", " ")
        self.notify(f"{label.capitalize()}: {'on' if value else 'off'}")

    def action_reload(self) -> None:
        self.run_worker(self.controller.reload(), group="reload")


def run_session_view(
    client: SessionClient,
    session_id: str,
    preferences: Optional[PreferenceStore] = None,
) -> None:
    """Run the session view TUI until the user quits."""
    app = SessionViewApp(client, session_id, preferences=preferences)
    try:
        app.run()
    except KeyboardInterrupt:
        # Textual handles terminal cleanup automatically
        print("\nInterrupted")
