#!/usr/bin/env python3
"""Tests for the conversation controller and its reload protocol."""

import asyncio
from typing import Any, Optional

import pytest

from session_view.builder import build_conversation, sort_events
from session_view.client import ApiResponse, SessionClientError
from session_view.factories import create_raw_events
from session_view.models import (
    ConversationMessage,
    DisplaySettings,
    MessageMetadata,
    TextSegment,
    ToolStatus,
)
from session_view.settings import SETTINGS_KEY, PreferenceStore
from session_view.sync import (
    LOAD_ERROR_MESSAGE,
    ConversationController,
    ConversationUpdate,
    UpdateKind,
    filter_messages,
    find_prompt_index,
    is_pure_append,
    is_waiting_for_response,
    merge_streams,
    plan_update,
)


class FakeClient:
    """In-memory session client; a session's event fetch can be held on a gate."""

    def __init__(
        self,
        sessions: dict[str, list[dict[str, Any]]],
        prompts: Optional[dict[str, list[dict[str, Any]]]] = None,
    ):
        self.sessions = sessions
        self.prompts = prompts or {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[str] = []
        self.fail = False

    async def get_conversation(self, session_id: str) -> ApiResponse:
        return ApiResponse(success=True, data=list(self.prompts.get(session_id, [])))

    async def get_json_messages(self, session_id: str) -> ApiResponse:
        self.calls.append(session_id)
        # Snapshot before waiting, like a request that was already answered
        data = list(self.sessions.get(session_id, []))
        gate = self.gates.get(session_id)
        if gate is not None:
            await gate.wait()
        if self.fail:
            raise SessionClientError("connection refused")
        return ApiResponse(success=True, data=data)


def _user(text: str, second: int, minute: int = 0) -> dict[str, Any]:
    return {
        "type": "user",
        "timestamp": f"2025-01-01T10:{minute:02d}:{second:02d}Z",
        "message": {"role": "user", "content": text},
    }


def _assistant(text: str, second: int) -> dict[str, Any]:
    return {
        "type": "assistant",
        "timestamp": f"2025-01-01T10:00:{second:02d}Z",
        "message": {"role": "assistant", "content": [{"type": "text", "text": text}]},
    }


def _controller(
    client: FakeClient, **kwargs: Any
) -> tuple[ConversationController, list[ConversationUpdate]]:
    kwargs.setdefault("reload_debounce", 0.01)
    kwargs.setdefault("batch_delay", 0.01)
    controller = ConversationController(client, **kwargs)
    updates: list[ConversationUpdate] = []
    controller.add_listener(updates.append)
    return controller, updates


@pytest.mark.asyncio
class TestReload:
    """Tests for loading and incremental reloads."""

    async def test_initial_load(self, fix_the_bug_entries):
        controller, updates = _controller(FakeClient({"s1": fix_the_bug_entries}))
        await controller.switch_session("s1")

        assert [u.kind for u in updates] == [UpdateKind.CLEAR, UpdateKind.REPLACE]
        assert [m.role for m in controller.messages] == ["user", "assistant"]
        assert not controller.loading
        assert controller.error is None
        assert not controller.is_reloading

    async def test_pure_append(self, fix_the_bug_entries):
        client = FakeClient({"s1": list(fix_the_bug_entries)})
        controller, updates = _controller(client)
        await controller.switch_session("s1")
        first_ids = [m.id for m in controller.messages]

        client.sessions["s1"].append(_user("thanks", 30))
        await controller.reload()

        assert updates[-1].kind == UpdateKind.APPEND
        assert [m.text for m in updates[-1].messages] == ["thanks"]
        assert [m.id for m in controller.messages][:2] == first_ids
        assert len(controller.messages) == 3

    async def test_insert_before_end_replaces(self):
        client = FakeClient({"s1": [_user("a", 10), _user("c", 30)]})
        controller, updates = _controller(client)
        await controller.switch_session("s1")

        client.sessions["s1"].append(_user("b", 20))
        await controller.reload()

        assert updates[-1].kind == UpdateKind.REPLACE
        assert [m.text for m in controller.messages] == ["a", "b", "c"]

    async def test_tool_status_refreshes_on_append(self, fix_the_bug_entries):
        pending = fix_the_bug_entries[:2]
        client = FakeClient({"s1": list(pending)})
        controller, updates = _controller(client)
        await controller.switch_session("s1")
        tool_call = controller.tools.get("t1")
        assert tool_call is not None and tool_call.status == ToolStatus.PENDING

        client.sessions["s1"] += [fix_the_bug_entries[2], _user("next", 30)]
        await controller.reload()

        assert updates[-1].kind == UpdateKind.APPEND
        tool_call = controller.tools.get("t1")
        assert tool_call is not None and tool_call.status == ToolStatus.SUCCESS

    async def test_unchanged_reload_replaces_with_same_messages(self, fix_the_bug_entries):
        controller, updates = _controller(FakeClient({"s1": fix_the_bug_entries}))
        await controller.switch_session("s1")
        before = list(controller.messages)
        await controller.reload()
        assert updates[-1].kind == UpdateKind.REPLACE
        assert controller.messages == before

    async def test_prompt_stream_is_merged(self):
        client = FakeClient(
            {"s1": [_assistant("answer", 5)]},
            prompts={
                "s1": [
                    {
                        "message_type": "user",
                        "content": "question",
                        "timestamp": "2025-01-01T10:00:01Z",
                    },
                    {
                        "message_type": "assistant",
                        "content": "ignored",
                        "timestamp": "2025-01-01T10:00:02Z",
                    },
                ]
            },
        )
        controller, _ = _controller(client)
        await controller.switch_session("s1")
        assert [(m.role, m.text) for m in controller.messages] == [
            ("user", "question"),
            ("assistant", "answer"),
        ]


@pytest.mark.asyncio
class TestReloadGuards:
    """Tests for overlapping reloads, session switches and failures."""

    async def test_concurrent_reload_runs_once_more(self, fix_the_bug_entries):
        client = FakeClient({"s1": list(fix_the_bug_entries)})
        controller, _ = _controller(client)
        await controller.switch_session("s1")

        gate = client.gates["s1"] = asyncio.Event()
        in_flight = asyncio.create_task(controller.reload())
        await asyncio.sleep(0.01)
        assert controller.is_reloading

        client.sessions["s1"].append(_user("late", 40))
        await controller.reload()
        assert client.calls == ["s1", "s1"]

        gate.set()
        await in_flight
        await asyncio.sleep(0.02)
        assert client.calls == ["s1", "s1", "s1"]
        assert controller.messages[-1].text == "late"
        assert not controller.is_reloading

    async def test_session_switch_discards_stale_reload(self, fix_the_bug_entries):
        client = FakeClient({"s1": fix_the_bug_entries, "s2": [_user("other session", 0)]})
        gate = client.gates["s1"] = asyncio.Event()
        controller, updates = _controller(client)

        first = asyncio.create_task(controller.switch_session("s1"))
        await asyncio.sleep(0)
        assert controller.loading

        await controller.switch_session("s2")
        assert [m.text for m in controller.messages] == ["other session"]

        gate.set()
        await first
        assert controller.session_id == "s2"
        assert [m.text for m in controller.messages] == ["other session"]
        assert controller.error is None
        assert not controller.loading
        assert all(u.kind != UpdateKind.APPEND for u in updates)

    async def test_switch_starts_clean(self, fix_the_bug_entries):
        client = FakeClient({"s1": fix_the_bug_entries, "s2": []})
        controller, updates = _controller(client)
        await controller.switch_session("s1")
        controller.search.apply_query("bug")
        assert controller.search.results

        await controller.switch_session("s2")
        assert controller.messages == []
        assert len(controller.tools) == 0
        assert controller.search.active_query == ""
        assert controller.search.results == []
        assert updates[-2].kind == UpdateKind.CLEAR

    async def test_failure_sets_error(self, fix_the_bug_entries):
        client = FakeClient({"s1": fix_the_bug_entries})
        client.fail = True
        controller, updates = _controller(client)
        await controller.switch_session("s1")

        assert controller.error == LOAD_ERROR_MESSAGE
        assert updates[-1].kind == UpdateKind.ERROR
        assert not controller.loading
        assert not controller.is_reloading

        client.fail = False
        await controller.reload()
        assert controller.error is None
        assert len(controller.messages) == 2

    async def test_notifications_are_debounced(self, fix_the_bug_entries):
        client = FakeClient({"s1": fix_the_bug_entries})
        controller, _ = _controller(client)
        await controller.switch_session("s1")

        for _ in range(5):
            controller.notify_output_available("s1")
        controller.notify_output_available("another-session")
        await asyncio.sleep(0.05)
        assert client.calls == ["s1", "s1"]

    async def test_close_cancels_pending_reload(self, fix_the_bug_entries):
        client = FakeClient({"s1": fix_the_bug_entries})
        controller, _ = _controller(client)
        await controller.switch_session("s1")

        controller.notify_output_available("s1")
        controller.close()
        await asyncio.sleep(0.05)
        assert client.calls == ["s1"]


@pytest.mark.asyncio
class TestProgressiveLoad:
    """Tests for publishing long histories in two batches."""

    def _entries(self, count: int) -> list[dict[str, Any]]:
        return [_user(f"prompt {i}", i % 60, minute=i // 60) for i in range(count)]

    async def test_tail_first_then_prefix(self):
        entries = self._entries(12)
        controller, updates = _controller(
            FakeClient({"s1": entries}), progressive_threshold=5, initial_batch_size=4
        )
        await controller.switch_session("s1")

        assert updates[-1].kind == UpdateKind.REPLACE
        assert [m.text for m in controller.messages] == [f"prompt {i}" for i in range(8, 12)]

        await asyncio.sleep(0.05)
        assert updates[-1].kind == UpdateKind.PREPEND
        assert len(updates[-1].messages) == 8
        full = build_conversation(sort_events(create_raw_events(entries)))
        assert controller.messages == full.messages

    async def test_small_history_loads_at_once(self):
        controller, updates = _controller(
            FakeClient({"s1": self._entries(5)}), progressive_threshold=5, initial_batch_size=2
        )
        await controller.switch_session("s1")
        await asyncio.sleep(0.05)
        assert [u.kind for u in updates] == [UpdateKind.CLEAR, UpdateKind.REPLACE]
        assert len(controller.messages) == 5

    async def test_background_batch_dropped_after_switch(self):
        client = FakeClient({"s1": self._entries(12), "s2": [_user("fresh", 0)]})
        controller, updates = _controller(client, progressive_threshold=5, initial_batch_size=4)
        await controller.switch_session("s1")
        await controller.switch_session("s2")
        await asyncio.sleep(0.05)

        assert [m.text for m in controller.messages] == ["fresh"]
        assert all(u.kind != UpdateKind.PREPEND for u in updates)

    async def test_reload_after_progressive_load_appends(self):
        entries = self._entries(12)
        client = FakeClient({"s1": list(entries)})
        controller, updates = _controller(client, progressive_threshold=5, initial_batch_size=4)
        await controller.switch_session("s1")
        await asyncio.sleep(0.05)

        client.sessions["s1"].append(_user("newest", 59, minute=5))
        await controller.reload()
        assert updates[-1].kind == UpdateKind.APPEND
        assert [m.text for m in updates[-1].messages] == ["newest"]

    async def test_duplicate_ids_across_batches_stay_stable(self):
        entries = self._entries(12)
        entries[2]["id"] = "m"
        entries[10]["id"] = "m"
        client = FakeClient({"s1": list(entries)})
        controller, updates = _controller(client, progressive_threshold=5, initial_batch_size=4)
        await controller.switch_session("s1")
        assert controller.messages[2].id == "m-10"

        await asyncio.sleep(0.05)
        full = build_conversation(sort_events(create_raw_events(entries)))
        assert controller.messages == full.messages
        assert controller.messages[2].id == "m"

        client.sessions["s1"].append(_user("newest", 59, minute=5))
        await controller.reload()
        assert updates[-1].kind == UpdateKind.APPEND


@pytest.mark.asyncio
class TestSettingsAndNavigation:
    async def test_session_init_hidden_until_enabled(self, tmp_path):
        entries = [
            {"type": "system", "subtype": "init", "timestamp": "2025-01-01T09:59:59Z", "cwd": "/w"},
            _user("hello", 0),
        ]
        preferences = PreferenceStore(tmp_path / "prefs.json")
        controller, updates = _controller(FakeClient({"s1": entries}), preferences=preferences)
        await controller.switch_session("s1")

        assert [m.role for m in controller.filtered_messages] == ["user"]
        assert len(controller.messages) == 2

        controller.update_settings(show_session_init=True)
        assert [m.role for m in controller.filtered_messages] == ["system", "user"]
        assert updates[-1].kind == UpdateKind.REPLACE
        assert preferences.get(SETTINGS_KEY)["showSessionInit"] is True

    async def test_unknown_setting_rejected(self):
        controller, _ = _controller(FakeClient({}))
        with pytest.raises(ValueError):
            controller.update_settings(show_everything=True)

    async def test_search_follows_reloads(self, fix_the_bug_entries):
        client = FakeClient({"s1": list(fix_the_bug_entries)})
        controller, _ = _controller(client)
        await controller.switch_session("s1")
        controller.search.apply_query("bug")
        assert len(controller.search.results) == 1

        client.sessions["s1"].append(_user("another bug", 30))
        await controller.reload()
        assert [r.message_index for r in controller.search.results] == [0, 2]

    async def test_scroll_to_prompt(self, fix_the_bug_entries):
        calls: list[tuple[int, Any, bool]] = []

        class RecordingList:
            scroll_offset = 0.0
            max_scroll_offset = 0.0

            def scroll_to_index(self, index, align, smooth):
                calls.append((index, align, smooth))

            def scroll_to_offset(self, offset, smooth):
                pass

        entries = list(fix_the_bug_entries) + [_user("second prompt", 30)]
        controller, _ = _controller(FakeClient({"s1": entries}), virtual_list=RecordingList())
        await controller.switch_session("s1")
        assert controller.viewport is not None
        await controller.viewport.wait_idle()
        calls.clear()

        assert controller.scroll_to_prompt(1)
        assert calls[0][0] == 2
        assert not controller.scroll_to_prompt(5)
        controller.close()


def _message(index: int, role: str, subtype: Optional[str] = None) -> ConversationMessage:
    return ConversationMessage(
        id=f"m{index}",
        role=role,
        timestamp="",
        segments=(TextSegment(content="x"),),
        metadata=MessageMetadata(system_subtype=subtype),
    )


class TestHelpers:
    def test_is_pure_append(self):
        a, b, c = _message(0, "user"), _message(1, "assistant"), _message(2, "user")
        assert is_pure_append([a, b], [a, b, c])
        assert not is_pure_append([a, b], [a, b])
        assert not is_pure_append([a, b], [b, a, c])
        assert not is_pure_append([], [a])

    def test_plan_update(self):
        a, b = _message(0, "user"), _message(1, "assistant")
        assert plan_update([a], [a, b]) == ConversationUpdate(UpdateKind.APPEND, (b,))
        assert plan_update([], [a, b]) == ConversationUpdate(UpdateKind.REPLACE, (a, b))

    def test_filter_messages(self):
        messages = [_message(0, "system", "init"), _message(1, "system", "error")]
        assert filter_messages(messages, DisplaySettings()) == messages[1:]
        assert filter_messages(messages, DisplaySettings(show_session_init=True)) == messages

    def test_find_prompt_index(self):
        messages = [_message(0, "user"), _message(1, "assistant"), _message(2, "user")]
        assert find_prompt_index(messages, 0) == 0
        assert find_prompt_index(messages, 1) == 2
        assert find_prompt_index(messages, 2) is None
        assert find_prompt_index(messages, -1) is None

    def test_is_waiting_for_response(self):
        user_last = [_message(0, "assistant"), _message(1, "user")]
        assistant_last = [_message(0, "user"), _message(1, "assistant")]
        assert is_waiting_for_response(assistant_last, "running")
        assert is_waiting_for_response(user_last, "waiting")
        assert not is_waiting_for_response(assistant_last, "waiting")
        assert not is_waiting_for_response([], "waiting")
        assert not is_waiting_for_response(user_last, "stopped")

    def test_merge_streams_ignores_failed_prompt_fetch(self):
        events = merge_streams(
            ApiResponse(success=False, error="unavailable"),
            ApiResponse(success=True, data=[_user("b", 2), _user("a", 1)]),
        )
        assert [e.timestamp for e in events] == ["2025-01-01T10:00:01Z", "2025-01-01T10:00:02Z"]
