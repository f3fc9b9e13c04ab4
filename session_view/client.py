#!/usr/bin/env python3
"""Session data clients.

The conversation controller consumes two async operations per session:

- ``get_conversation``: prior user prompts, rows of
  ``{message_type, content, timestamp}``
- ``get_json_messages``: the full mixed-type event log

``JsonlSessionClient`` serves both from a directory of JSONL files:
``<session_id>.jsonl`` holds the event log and
``<session_id>.prompts.jsonl`` the prompt rows.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from pydantic import BaseModel

logger = logging.getLogger(__name__)

EVENTS_SUFFIX = ".jsonl"
PROMPTS_SUFFIX = ".prompts.jsonl"
DEFAULT_POLL_INTERVAL = 1.0


class SessionClientError(Exception):
    """A session could not be fetched or parsed."""


class ApiResponse(BaseModel):
    success: bool
    data: Any = None
    error: Optional[str] = None


class SessionClient(Protocol):
    async def get_conversation(self, session_id: str) -> ApiResponse: ...

    async def get_json_messages(self, session_id: str) -> ApiResponse: ...


def read_jsonl(path: Path) -> list[Any]:
    """Read a JSONL file, skipping blank and malformed lines.

    A missing file reads as empty; other IO failures raise SessionClientError.
    """
    if not path.exists():
        return []

    entries: list[Any] = []
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError as e:
                    logger.debug("Skipping malformed line %d in %s: %s", line_no, path, e)
    except OSError as e:
        raise SessionClientError(f"Failed to read {path}: {e}") from e
    return entries


class JsonlSessionClient:
    """Serve session data from a directory of JSONL files."""

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def _session_path(self, session_id: str, suffix: str) -> Path:
        if not session_id or "/" in session_id or "\\" in session_id or session_id.startswith("."):
            raise SessionClientError(f"Invalid session id: {session_id!r}")
        return self.directory / f"{session_id}{suffix}"

    def events_path(self, session_id: str) -> Path:
        return self._session_path(session_id, EVENTS_SUFFIX)

    def prompts_path(self, session_id: str) -> Path:
        return self._session_path(session_id, PROMPTS_SUFFIX)

    async def get_conversation(self, session_id: str) -> ApiResponse:
        rows = await asyncio.to_thread(read_jsonl, self.prompts_path(session_id))
        return ApiResponse(success=True, data=rows)

    async def get_json_messages(self, session_id: str) -> ApiResponse:
        events = await asyncio.to_thread(read_jsonl, self.events_path(session_id))
        return ApiResponse(success=True, data=events)

    def list_sessions(self) -> list[str]:
        """Session ids with an event log, most recently modified first."""
        if not self.directory.is_dir():
            return []
        logs = [
            path
            for path in self.directory.glob(f"*{EVENTS_SUFFIX}")
            if not path.name.endswith(PROMPTS_SUFFIX)
        ]
        logs.sort(key=lambda path: path.stat().st_mtime, reverse=True)
        return [path.name[: -len(EVENTS_SUFFIX)] for path in logs]

    def output_signature(self, session_id: str) -> tuple[float, int]:
        """Modification time and total size of a session's files."""
        mtime = 0.0
        size = 0
        for path in (self.events_path(session_id), self.prompts_path(session_id)):
            try:
                stat = path.stat()
            except OSError:
                continue
            mtime = max(mtime, stat.st_mtime)
            size += stat.st_size
        return mtime, size


OutputCallback = Callable[[str], Union[None, Awaitable[None]]]


class OutputWatcher:
    """Poll a session's files and signal when new output is available.

    The callback receives the session id, so consumers can ignore
    notifications for sessions they no longer show.
    """

    def __init__(
        self,
        client: JsonlSessionClient,
        session_id: str,
        callback: OutputCallback,
        interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.client = client
        self.session_id = session_id
        self.callback = callback
        self.interval = interval
        self._task: Optional["asyncio.Task[None]"] = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        last = self.client.output_signature(self.session_id)
        while True:
            await asyncio.sleep(self.interval)
            current = self.client.output_signature(self.session_id)
            if current != last:
                last = current
                result = self.callback(self.session_id)
                if asyncio.iscoroutine(result):
                    await result
