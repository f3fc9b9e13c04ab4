#!/usr/bin/env python3
"""Full-text search over the displayed conversation.

Matching is a case-insensitive literal substring search over text segments.
The scan is bounded: only the first MAX_SEARCHED_MESSAGES messages are
searched, at most MAX_MATCHES_PER_MESSAGE matches are kept per message and
scanning stops after MAX_RESULT_MESSAGES matching messages.
"""

import asyncio
import re
from typing import Callable, Iterator, Optional, Sequence

from .models import ConversationMessage, SearchMatch, SearchResult, TextSegment

SEARCH_DEBOUNCE = 0.3
MAX_SEARCHED_MESSAGES = 200
MAX_RESULT_MESSAGES = 50
MAX_MATCHES_PER_MESSAGE = 5
SNIPPET_CONTEXT = 20


def _compile(query: str) -> "re.Pattern[str]":
    return re.compile(re.escape(query), re.IGNORECASE)


def iter_match_positions(text: str, query: str) -> Iterator[int]:
    """Start offsets of every case-insensitive occurrence, overlaps included."""
    if not query:
        return
    pattern = _compile(query)
    pos = 0
    while True:
        match = pattern.search(text, pos)
        if match is None:
            return
        yield match.start()
        pos = match.start() + 1


def highlight_spans(text: str, query: str) -> list[tuple[int, int]]:
    """Non-overlapping ``(start, end)`` spans to highlight in ``text``."""
    if not query:
        return []
    return [match.span() for match in _compile(query).finditer(text)]


def search_messages(
    messages: Sequence[ConversationMessage],
    query: str,
    *,
    max_messages: int = MAX_SEARCHED_MESSAGES,
    max_results: int = MAX_RESULT_MESSAGES,
    max_matches: int = MAX_MATCHES_PER_MESSAGE,
    context: int = SNIPPET_CONTEXT,
) -> list[SearchResult]:
    """Search text segments of ``messages`` for ``query``.

    ``message_index`` in each result is the position in ``messages``, so pass
    the same (filtered) list the view displays.
    """
    if not query.strip():
        return []

    results: list[SearchResult] = []
    for message_index, message in enumerate(messages[:max_messages]):
        matches: list[SearchMatch] = []
        for segment_index, segment in enumerate(message.segments):
            if not isinstance(segment, TextSegment):
                continue
            text = segment.content
            for start in iter_match_positions(text, query):
                if len(matches) >= max_matches:
                    break
                end = start + len(query)
                matches.append(
                    SearchMatch(
                        segment_index=segment_index,
                        snippet=text[max(0, start - context) : min(len(text), end + context)],
                        start=start,
                        end=end,
                    )
                )

        if matches:
            results.append(SearchResult(message_index=message_index, matches=tuple(matches)))
            if len(results) >= max_results:
                break

    return results


class SearchController:
    """Debounced search state with wraparound navigation.

    ``on_navigate`` receives the message index of the result navigated to,
    so the view can scroll it into view.
    """

    def __init__(
        self,
        *,
        debounce: float = SEARCH_DEBOUNCE,
        on_navigate: Optional[Callable[[int], None]] = None,
        on_results: Optional[Callable[[list[SearchResult]], None]] = None,
    ):
        self.debounce = debounce
        self.on_navigate = on_navigate
        self.on_results = on_results
        self.is_open = False
        self.query = ""
        self.active_query = ""
        self.results: list[SearchResult] = []
        self.current_index = 0
        self._messages: Sequence[ConversationMessage] = []
        self._debounce_task: Optional["asyncio.Task[None]"] = None

    # -- Query handling ---------------------------------------------------------

    def open(self) -> None:
        self.is_open = True

    def close(self) -> None:
        self.is_open = False
        self.set_query("")

    def reset(self) -> None:
        """Forget the query and results, e.g. on session switch."""
        self._cancel_debounce()
        self.is_open = False
        self.query = ""
        self._apply("")

    def set_query(self, query: str) -> None:
        """Record the typed query; it takes effect after the debounce delay."""
        self.query = query
        self._cancel_debounce()
        self._debounce_task = asyncio.create_task(self._apply_later(query))

    async def _apply_later(self, query: str) -> None:
        await asyncio.sleep(self.debounce)
        self._debounce_task = None
        self._apply(query)

    def _cancel_debounce(self) -> None:
        if self._debounce_task is not None:
            self._debounce_task.cancel()
            self._debounce_task = None

    @property
    def pending(self) -> bool:
        return self._debounce_task is not None

    def apply_query(self, query: str) -> None:
        """Apply a query immediately, bypassing the debounce."""
        self._cancel_debounce()
        self.query = query
        self._apply(query)

    def refresh(self, messages: Sequence[ConversationMessage]) -> None:
        """Re-run the active query against a new message list."""
        self._messages = messages
        self._apply(self.active_query)

    def _apply(self, query: str) -> None:
        self.active_query = query
        self.results = search_messages(self._messages, query)
        self.current_index = 0
        if self.on_results is not None:
            self.on_results(self.results)

    # -- Navigation -------------------------------------------------------------

    @property
    def current(self) -> Optional[SearchResult]:
        if not self.results:
            return None
        return self.results[self.current_index]

    def is_match(self, message_index: int) -> bool:
        return any(result.message_index == message_index for result in self.results)

    def navigate(self, index: int) -> Optional[SearchResult]:
        if not self.results:
            return None
        self.current_index = index % len(self.results)
        result = self.results[self.current_index]
        if self.on_navigate is not None:
            self.on_navigate(result.message_index)
        return result

    def next(self) -> Optional[SearchResult]:
        return self.navigate(self.current_index + 1)

    def previous(self) -> Optional[SearchResult]:
        return self.navigate(self.current_index - 1)

    @property
    def status(self) -> str:
        """Position label like ``3/12``, empty without results."""
        if not self.results:
            return ""
        return f"{self.current_index + 1}/{len(self.results)}"
