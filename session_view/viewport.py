#!/usr/bin/env python3
"""Auto-scroll state machine for a virtualized message list.

The controller keeps the view pinned to the newest message while the user
is there, and leaves it alone while they review history:

- a new user message always scrolls to the end
- a new assistant message scrolls to the end only if the view was at the
  bottom
- a session switch forces a jump to the end once content is available

Scrolling to the end is a two-phase protocol. Phase one asks the list to
scroll its last item into view. Item heights of a virtualized list are
measured asynchronously, so the target offset can still move after that
request; phase two waits a settle delay, then moves the scroll offset to
the maximum if it ended up more than an epsilon short of it.
"""

import asyncio
from enum import Enum
from typing import Any, Coroutine, Optional, Protocol, Sequence

from .models import ConversationMessage, Role

SETTLE_DELAY = 0.15
CONFIRM_DELAY = 0.2
USER_SCROLL_DELAY = 0.05
ASSISTANT_SCROLL_DELAY = 0.15
SESSION_JUMP_DELAY = 0.1
BOTTOM_EPSILON = 1.0


class ScrollAlign(str, Enum):
    START = "start"
    CENTER = "center"
    END = "end"


class ScrollReason(str, Enum):
    SESSION_SWITCH = "session_switch"
    NEW_USER_MESSAGE = "new_user_message"
    FOLLOW_ASSISTANT = "follow_assistant"


class VirtualList(Protocol):
    """Scroll contract of the rendering surface."""

    @property
    def scroll_offset(self) -> float: ...

    @property
    def max_scroll_offset(self) -> float: ...

    def scroll_to_index(self, index: int, align: ScrollAlign, smooth: bool) -> None: ...

    def scroll_to_offset(self, offset: float, smooth: bool) -> None: ...


class ViewportController:
    """Track bottom-pinning and drive scrolls of a VirtualList."""

    def __init__(
        self,
        virtual_list: VirtualList,
        *,
        settle_delay: float = SETTLE_DELAY,
        confirm_delay: float = CONFIRM_DELAY,
        user_scroll_delay: float = USER_SCROLL_DELAY,
        assistant_scroll_delay: float = ASSISTANT_SCROLL_DELAY,
        session_jump_delay: float = SESSION_JUMP_DELAY,
        epsilon: float = BOTTOM_EPSILON,
    ):
        self.virtual_list = virtual_list
        self.settle_delay = settle_delay
        self.confirm_delay = confirm_delay
        self.user_scroll_delay = user_scroll_delay
        self.assistant_scroll_delay = assistant_scroll_delay
        self.session_jump_delay = session_jump_delay
        self.epsilon = epsilon
        self._tasks: set["asyncio.Task[None]"] = set()
        self.reset()

    def reset(self) -> None:
        """Start over for a new session: pinned to the bottom, first load pending."""
        self.cancel_pending()
        self.is_at_bottom = True
        self.is_first_load = True
        self.last_rendered_message_id: Optional[str] = None
        self.item_count = 0

    @property
    def show_jump_to_latest(self) -> bool:
        return not self.is_at_bottom

    # -- Events -----------------------------------------------------------------

    def on_bottom_state_changed(self, at_bottom: bool) -> None:
        """The list reports whether its end is in view."""
        self.is_at_bottom = at_bottom

    def on_messages_changed(
        self,
        messages: Sequence[ConversationMessage],
        loading: bool = False,
    ) -> Optional[ScrollReason]:
        """React to a new message list; return why a scroll was scheduled."""
        self.item_count = len(messages)
        if loading or not messages:
            return None

        last = messages[-1]
        is_new = last.id != self.last_rendered_message_id
        reason: Optional[ScrollReason] = None

        if self.is_first_load:
            # First render pass of a session: jump without animation
            reason = ScrollReason.SESSION_SWITCH
            self._schedule_scroll_to_end(self.session_jump_delay, smooth=False)
        elif is_new:
            if last.role == Role.USER.value:
                reason = ScrollReason.NEW_USER_MESSAGE
            elif last.role == Role.ASSISTANT.value and self.is_at_bottom:
                reason = ScrollReason.FOLLOW_ASSISTANT
            if reason is not None:
                delay = (
                    self.user_scroll_delay
                    if reason == ScrollReason.NEW_USER_MESSAGE
                    else self.assistant_scroll_delay
                )
                self._schedule_scroll_to_end(delay, smooth=True)

        if is_new:
            self.last_rendered_message_id = last.id
        self.is_first_load = False
        return reason

    # -- Scrolling --------------------------------------------------------------

    def scroll_to_end(self, smooth: bool = True) -> None:
        """Phase one now, phase two after the settle delay."""
        if self.item_count == 0:
            return
        self.virtual_list.scroll_to_index(self.item_count - 1, ScrollAlign.END, smooth)
        self._spawn(self._settle_at_bottom())

    def jump_to_latest(self) -> None:
        self.scroll_to_end(smooth=True)

    def scroll_to_index(
        self,
        index: int,
        align: ScrollAlign = ScrollAlign.CENTER,
        smooth: bool = True,
    ) -> bool:
        if not 0 <= index < self.item_count:
            return False
        self.virtual_list.scroll_to_index(index, align, smooth)
        return True

    async def _settle_at_bottom(self) -> None:
        await asyncio.sleep(self.settle_delay)
        target = self.virtual_list.max_scroll_offset
        if target - self.virtual_list.scroll_offset > self.epsilon:
            self.virtual_list.scroll_to_offset(target, smooth=False)

    def _schedule_scroll_to_end(self, delay: float, smooth: bool) -> None:
        self._spawn(self._delayed_scroll_to_end(delay, smooth))

    async def _delayed_scroll_to_end(self, delay: float, smooth: bool) -> None:
        await asyncio.sleep(delay)
        self.scroll_to_end(smooth)
        # Heights of newly rendered items may still change; scroll once more
        await asyncio.sleep(self.confirm_delay)
        self.scroll_to_end(smooth)

    # -- Task bookkeeping -------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def cancel_pending(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    @property
    def has_pending_scrolls(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def wait_idle(self) -> None:
        """Wait until every scheduled scroll phase has run."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)
