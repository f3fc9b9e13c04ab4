#!/usr/bin/env python3
"""CLI interface for session-view."""

import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Optional

import click

from .builder import build_conversation
from .client import JsonlSessionClient, SessionClient, SessionClientError
from .factories import ToolRegistry
from .formatting import format_message
from .models import (
    Conversation,
    ConversationMessage,
    DisplaySettings,
    ToolCall,
    ToolCallSegment,
)
from .search import search_messages
from .settings import PreferenceStore, load_display_settings
from .sync import filter_messages, merge_streams
from .timings import (
    DEBUG_TIMING,
    get_timing_var,
    report_timing_statistics,
    set_timing_var,
    timing_stat,
)


def get_default_sessions_dir() -> Path:
    """Get the sessions directory, honouring SESSION_VIEW_DIR."""
    env_dir = os.getenv("SESSION_VIEW_DIR")
    if env_dir:
        return Path(env_dir)
    return Path.home() / ".session-view" / "sessions"


async def fetch_conversation(client: SessionClient, session_id: str) -> Conversation:
    """Fetch both streams of a session and build its conversation once."""
    conversation_response, events_response = await asyncio.gather(
        client.get_conversation(session_id),
        client.get_json_messages(session_id),
    )
    if not events_response.success:
        raise SessionClientError(events_response.error or "Failed to fetch session events")
    set_timing_var("_current_session_id", session_id)
    with timing_stat("_build_timings"):
        return build_conversation(merge_streams(conversation_response, events_response))


def _tool_to_dict(tools: ToolRegistry, tool_call: ToolCall) -> dict[str, Any]:
    return {
        "id": tool_call.id,
        "name": tool_call.name,
        "status": tool_call.status.value,
        "input": tool_call.input,
        "result": asdict(tool_call.result) if tool_call.result else None,
        "sub_agent_type": tool_call.sub_agent_type,
        "children": [_tool_to_dict(tools, child) for child in tools.children(tool_call)],
    }


def message_to_dict(message: ConversationMessage, tools: ToolRegistry) -> dict[str, Any]:
    """JSON-ready form of a message with tool calls resolved."""
    segments: list[dict[str, Any]] = []
    for segment in message.segments:
        data: dict[str, Any] = {"type": segment.type, **asdict(segment)}
        if isinstance(segment, ToolCallSegment):
            tool_call = tools.get(segment.tool_id)
            if tool_call is not None:
                data["tool"] = _tool_to_dict(tools, tool_call)
        segments.append(data)

    metadata = None
    if message.metadata is not None:
        metadata = {
            key: value
            for key, value in asdict(message.metadata).items()
            if value is not None and key != "session_info"
        }
    return {
        "id": message.id,
        "role": message.role,
        "timestamp": message.timestamp,
        "segments": segments,
        "metadata": metadata,
    }


def _echo_conversation(
    messages: list[ConversationMessage],
    tools: ToolRegistry,
    settings: DisplaySettings,
    output_format: str,
) -> None:
    if output_format == "json":
        click.echo(
            json.dumps(
                [message_to_dict(message, tools) for message in messages],
                indent=2,
                ensure_ascii=False,
                default=str,
            )
        )
        return
    for message in messages:
        click.echo("\n".join(format_message(message, tools, settings)))
        click.echo()


def _echo_search_results(messages: list[ConversationMessage], query: str) -> None:
    results = search_messages(messages, query)
    if not results:
        click.echo(f"No matches for {query!r}")
        return
    click.echo(f"{len(results)} matching messages for {query!r}")
    for result in results:
        message = messages[result.message_index]
        click.echo(f"\n#{result.message_index + 1} [{message.role}] {message.timestamp}")
        for match in result.matches:
            click.echo(f"  ...{match.snippet}...")


@click.command()
@click.argument("sessions_dir", type=click.Path(path_type=Path), required=False)
@click.option(
    "-s",
    "--session",
    "session_id",
    type=str,
    help="Session id to open (default: the most recently modified session)",
)
@click.option(
    "--dump",
    is_flag=True,
    help="Print the reconstructed conversation instead of launching the TUI",
)
@click.option(
    "-f",
    "--format",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format for --dump (default: text).",
)
@click.option(
    "--search",
    "query",
    type=str,
    help="Print messages matching QUERY instead of launching the TUI",
)
@click.option(
    "--show-init",
    is_flag=True,
    help="Include session init messages in --dump and --search output",
)
@click.option(
    "--preferences",
    "preferences_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Preferences file (default: ~/.session-view/preferences.json).",
)
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug logging and show full traceback on errors.",
)
def main(
    sessions_dir: Optional[Path],
    session_id: Optional[str],
    dump: bool,
    output_format: str,
    query: Optional[str],
    show_init: bool,
    preferences_path: Optional[Path],
    debug: bool,
) -> None:
    """View the conversation of an agent session.

    SESSIONS_DIR: Directory holding <session>.jsonl event logs and optional <session>.prompts.jsonl prompt logs. Defaults to $SESSION_VIEW_DIR or ~/.session-view/sessions.
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )

    try:
        if sessions_dir is None:
            sessions_dir = get_default_sessions_dir()
        if not sessions_dir.is_dir():
            click.echo(f"Error: Sessions directory {sessions_dir} does not exist", err=True)
            sys.exit(1)

        client = JsonlSessionClient(sessions_dir)
        if session_id is None:
            sessions = client.list_sessions()
            if not sessions:
                click.echo(f"Error: No sessions found in {sessions_dir}", err=True)
                sys.exit(1)
            session_id = sessions[0]
        elif not client.events_path(session_id).exists():
            click.echo(f"Error: Session {session_id} not found in {sessions_dir}", err=True)
            sys.exit(1)

        preferences = PreferenceStore(preferences_path)

        if not dump and query is None:
            from .tui import run_session_view

            run_session_view(client, session_id, preferences)
            return

        if DEBUG_TIMING:
            set_timing_var("_build_timings", [])

        settings = load_display_settings(preferences)
        if show_init:
            settings = settings.model_copy(update={"show_session_init": True})

        conversation = asyncio.run(fetch_conversation(client, session_id))
        messages = filter_messages(conversation.messages, settings)

        if query is not None:
            _echo_search_results(messages, query)
        else:
            _echo_conversation(messages, conversation.tools, settings, output_format)

        if DEBUG_TIMING:
            report_timing_statistics(
                [("Conversation builds", get_timing_var("_build_timings", []))]
            )

    except SessionClientError as e:
        click.echo(f"Error: {e}", err=True)
        if debug:
            import traceback

            traceback.print_exc()
        sys.exit(1)
    except Exception as e:
        click.echo(f"Error loading session: {e}", err=True)
        if debug:
            import traceback

            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
