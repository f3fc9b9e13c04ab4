"""Pytest configuration and shared fixtures."""

import json
from pathlib import Path
from typing import Any, Callable, Optional

import pytest


@pytest.fixture
def fix_the_bug_entries() -> list[dict[str, Any]]:
    """A prompt, a Bash tool call and its result."""
    return [
        {
            "type": "user",
            "timestamp": "2025-01-01T10:00:00Z",
            "message": {"role": "user", "content": "fix the bug"},
        },
        {
            "type": "assistant",
            "timestamp": "2025-01-01T10:00:01Z",
            "message": {
                "role": "assistant",
                "model": "claude-sonnet-4",
                "content": [
                    {
                        "type": "tool_use",
                        "id": "t1",
                        "name": "Bash",
                        "input": {"command": "ls"},
                    }
                ],
                "usage": {"input_tokens": 10, "output_tokens": 5},
            },
        },
        {
            "type": "user",
            "timestamp": "2025-01-01T10:00:02Z",
            "message": {
                "role": "user",
                "content": [
                    {"type": "tool_result", "tool_use_id": "t1", "content": "file.txt"}
                ],
            },
        },
    ]


@pytest.fixture
def sub_agent_entries() -> list[dict[str, Any]]:
    """A Task sub-agent t2 owning a nested Read call t3, plus their results."""
    return [
        {
            "type": "assistant",
            "timestamp": "2025-01-01T10:00:00Z",
            "message": {
                "role": "assistant",
                "model": "claude-sonnet-4",
                "content": [
                    {"type": "text", "text": "Delegating the review."},
                    {
                        "type": "tool_use",
                        "id": "t2",
                        "name": "Task",
                        "input": {
                            "subagent_type": "reviewer",
                            "description": "Review the patch",
                        },
                    },
                ],
            },
        },
        {
            "type": "assistant",
            "timestamp": "2025-01-01T10:00:01Z",
            "parent_tool_use_id": "t2",
            "message": {
                "role": "assistant",
                "model": "claude-sonnet-4",
                "content": [
                    {
                        "type": "tool_use",
                        "id": "t3",
                        "name": "Read",
                        "input": {"file_path": "/src/app.py"},
                    }
                ],
            },
        },
        {
            "type": "user",
            "timestamp": "2025-01-01T10:00:02Z",
            "parent_tool_use_id": "t2",
            "message": {
                "role": "user",
                "content": [
                    {"type": "tool_result", "tool_use_id": "t3", "content": "print('hi')"}
                ],
            },
        },
        {
            "type": "user",
            "timestamp": "2025-01-01T10:00:03Z",
            "message": {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": "t2",
                        "content": [{"type": "text", "text": "Looks good."}],
                    }
                ],
            },
        },
    ]


def _write_jsonl(path: Path, entries: list[Any]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        for entry in entries:
            f.write(json.dumps(entry) + "\n")


@pytest.fixture
def write_session(tmp_path: Path) -> Callable[..., Path]:
    """Write ``<id>.jsonl`` (and optionally ``<id>.prompts.jsonl``) into tmp_path."""

    def _write(
        session_id: str,
        entries: list[Any],
        prompts: Optional[list[Any]] = None,
    ) -> Path:
        _write_jsonl(tmp_path / f"{session_id}.jsonl", entries)
        if prompts is not None:
            _write_jsonl(tmp_path / f"{session_id}.prompts.jsonl", prompts)
        return tmp_path

    return _write
