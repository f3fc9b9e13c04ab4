#!/usr/bin/env python3
"""Tests for the Textual session view."""

import json
from pathlib import Path
from typing import Any, Callable

import pytest

from session_view.builder import build_conversation, sort_events
from session_view.client import ApiResponse, JsonlSessionClient
from session_view.factories import create_raw_events
from session_view.models import ConversationMessage, DisplaySettings, TextSegment
from session_view.settings import SETTINGS_KEY, PreferenceStore
from session_view.sync import LOAD_ERROR_MESSAGE
from session_view.tui import (
    COLLAPSED_PREVIEW_CHARS,
    MessageList,
    MessageView,
    SessionViewApp,
    highlight_markup,
    is_collapsible,
    render_message,
)


async def _wait_until(pilot: Any, condition: Callable[[], bool], timeout: float = 3.0) -> None:
    waited = 0.0
    while not condition() and waited < timeout:
        await pilot.pause(0.05)
        waited += 0.05
    assert condition()


def _views(app: SessionViewApp) -> list[MessageView]:
    return app.query_one(MessageList).views


class BrokenClient:
    async def get_conversation(self, session_id: str) -> ApiResponse:
        return ApiResponse(success=True, data=[])

    async def get_json_messages(self, session_id: str) -> ApiResponse:
        return ApiResponse(success=False, error="boom")


class TestRenderMessage:
    """Tests for the markup of a single message."""

    def test_highlight_escapes_markup(self):
        assert highlight_markup("a [b] a", "a") == (
            "[reverse]a[/reverse] \\[b] [reverse]a[/reverse]"
        )
        assert highlight_markup("[red]", "") == "\\[red]"

    def test_tool_call_and_settings(self, fix_the_bug_entries):
        conversation = build_conversation(sort_events(create_raw_events(fix_the_bug_entries)))
        assistant = conversation.messages[1]

        markup = render_message(assistant, conversation.tools, DisplaySettings())
        assert "[b]✓ Bash[/b]" in markup
        assert "$ ls" in markup

        collapsed = render_message(
            assistant, conversation.tools, DisplaySettings(collapse_tools=True)
        )
        assert "$ ls" not in collapsed
        expanded = render_message(
            assistant,
            conversation.tools,
            DisplaySettings(collapse_tools=True),
            expanded_tools={"t1"},
        )
        assert "$ ls" in expanded

        hidden = render_message(
            assistant, conversation.tools, DisplaySettings(show_tool_calls=False)
        )
        assert "Bash" not in hidden

    def test_collapsed_long_message(self, fix_the_bug_entries):
        tools = build_conversation(sort_events(create_raw_events(fix_the_bug_entries))).tools
        message = ConversationMessage(
            id="user-0", role="user", timestamp="", segments=(TextSegment(content="x" * 500),)
        )
        assert is_collapsible(message)
        markup = render_message(message, tools, DisplaySettings(), collapsed=True)
        assert "x" * COLLAPSED_PREVIEW_CHARS + "…" in markup
        assert "x" * (COLLAPSED_PREVIEW_CHARS + 1) not in markup
        assert "(click to expand)" in markup

    def test_query_highlighted(self, fix_the_bug_entries):
        conversation = build_conversation(sort_events(create_raw_events(fix_the_bug_entries)))
        markup = render_message(
            conversation.messages[0], conversation.tools, DisplaySettings(), query="BUG"
        )
        assert "fix the [reverse]bug[/reverse]" in markup


@pytest.mark.tui
@pytest.mark.asyncio
class TestSessionViewApp:
    """Tests for the interactive view."""

    async def test_loads_messages(self, write_session, fix_the_bug_entries, tmp_path: Path):
        directory = write_session("abc", fix_the_bug_entries)
        app = SessionViewApp(
            JsonlSessionClient(directory),
            "abc",
            preferences=PreferenceStore(tmp_path / "prefs.json"),
            watch_output=False,
        )
        async with app.run_test() as pilot:
            await _wait_until(pilot, lambda: len(_views(app)) == 2)
            assert [view.message.role for view in _views(app)] == ["user", "assistant"]
            assert not app.query_one("#status").display
            assert "assistant" in _views(app)[1].classes

    async def test_empty_session(self, write_session, tmp_path: Path):
        directory = write_session("abc", [])
        app = SessionViewApp(JsonlSessionClient(directory), "abc", watch_output=False)
        async with app.run_test() as pilot:
            await _wait_until(pilot, lambda: not app.controller.loading)
            await pilot.pause(0.1)
            assert _views(app) == []
            assert app.query_one("#status").display

    async def test_load_failure_shows_error(self):
        app = SessionViewApp(BrokenClient(), "abc")
        async with app.run_test() as pilot:
            await _wait_until(pilot, lambda: app.controller.error is not None)
            await pilot.pause(0.1)
            assert app.controller.error == LOAD_ERROR_MESSAGE
            assert app.query_one("#status").has_class("error")

    async def test_toggle_setting_persists(
        self, write_session, fix_the_bug_entries, tmp_path: Path
    ):
        directory = write_session("abc", fix_the_bug_entries)
        preferences = PreferenceStore(tmp_path / "prefs.json")
        app = SessionViewApp(
            JsonlSessionClient(directory), "abc", preferences=preferences, watch_output=False
        )
        async with app.run_test() as pilot:
            await _wait_until(pilot, lambda: len(_views(app)) == 2)
            await pilot.press("t")
            await pilot.pause(0.1)
            assert app.controller.settings.show_tool_calls is False
            assert preferences.get(SETTINGS_KEY)["showToolCalls"] is False

            await pilot.press("c")
            await pilot.pause(0.1)
            assert app.query_one(MessageList).has_class("compact")

    async def test_init_toggle_adds_message(
        self, write_session, fix_the_bug_entries, tmp_path: Path
    ):
        init = {"type": "system", "subtype": "init", "timestamp": "2025-01-01T09:00:00Z"}
        directory = write_session("abc", [init] + fix_the_bug_entries)
        app = SessionViewApp(
            JsonlSessionClient(directory),
            "abc",
            preferences=PreferenceStore(tmp_path / "prefs.json"),
            watch_output=False,
        )
        async with app.run_test() as pilot:
            await _wait_until(pilot, lambda: len(_views(app)) == 2)
            await pilot.press("i")
            await _wait_until(pilot, lambda: len(_views(app)) == 3)
            assert _views(app)[0].message.role == "system"

    async def test_search_open_and_close(
        self, write_session, fix_the_bug_entries, tmp_path: Path
    ):
        directory = write_session("abc", fix_the_bug_entries)
        app = SessionViewApp(
            JsonlSessionClient(directory),
            "abc",
            preferences=PreferenceStore(tmp_path / "prefs.json"),
            watch_output=False,
        )
        async with app.run_test() as pilot:
            await _wait_until(pilot, lambda: len(_views(app)) == 2)

            await pilot.press("ctrl+f")
            assert app.query_one("#search-bar").has_class("open")
            await pilot.press("b", "u", "g")
            await _wait_until(pilot, lambda: bool(app.controller.search.results))
            await pilot.pause(0.1)
            assert app.controller.search.active_query == "bug"
            assert _views(app)[0].has_class("search-current")

            await pilot.press("escape")
            await pilot.pause(0.1)
            assert not app.controller.search.is_open
            assert not app.query_one("#search-bar").has_class("open")

    async def test_new_output_is_appended(
        self, write_session, fix_the_bug_entries, tmp_path: Path
    ):
        directory = write_session("abc", fix_the_bug_entries)
        app = SessionViewApp(
            JsonlSessionClient(directory),
            "abc",
            preferences=PreferenceStore(tmp_path / "prefs.json"),
            watch_output=False,
        )
        async with app.run_test() as pilot:
            await _wait_until(pilot, lambda: len(_views(app)) == 2)
            first_view = _views(app)[0]

            reply = {
                "type": "assistant",
                "timestamp": "2025-01-01T10:00:03Z",
                "message": {
                    "role": "assistant",
                    "content": [{"type": "text", "text": "Fixed it."}],
                },
            }
            with open(directory / "abc.jsonl", "a", encoding="utf-8") as f:
                f.write(json.dumps(reply) + "\n")
            app.controller.notify_output_available("abc")

            await _wait_until(pilot, lambda: len(_views(app)) == 3)
            assert _views(app)[0] is first_view
            assert _views(app)[2].message.text == "Fixed it."
