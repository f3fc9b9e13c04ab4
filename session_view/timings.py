"""Phase timing for conversation builds.

Set SESSION_VIEW_DEBUG_TIMING to "1", "true" or "yes" to print how long
registry construction, message transforms and progressive batches take.
"""

import os
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, Union

DEBUG_TIMING = os.getenv("SESSION_VIEW_DEBUG_TIMING", "").lower() in ("1", "true", "yes")

_timing_data: dict[str, Any] = {}

BuildTiming = tuple[float, str]


def set_timing_var(name: str, value: Any) -> None:
    """Store a value (e.g. ``_build_timings``) while timing is enabled."""
    if DEBUG_TIMING:
        _timing_data[name] = value


def get_timing_var(name: str, default: Any = None) -> Any:
    return _timing_data.get(name, default)


def _emit(line: str) -> None:
    print(f"[TIMING] {line}", flush=True)


@contextmanager
def log_timing(
    phase: Union[str, Callable[[], str]],
    t_start: Optional[float] = None,
) -> Iterator[None]:
    """Print the duration of the wrapped block.

    ``phase`` may be a callable so the label can describe the work done,
    e.g. ``lambda: f"Transform messages ({len(events)} events)"``. With
    ``t_start`` the time elapsed since then is printed as well.
    """
    if not DEBUG_TIMING:
        yield
        return

    began = time.time()
    try:
        yield
    finally:
        now = time.time()
        label = phase() if callable(phase) else phase
        line = f"{label:40s} {now - began:8.3f}s"
        if t_start is not None:
            line += f" (total: {now - t_start:8.3f}s)"
        _emit(line)


@contextmanager
def timing_stat(list_name: str) -> Iterator[None]:
    """Append ``(duration, session id)`` to a list set with set_timing_var."""
    if not DEBUG_TIMING:
        yield
        return

    began = time.time()
    try:
        yield
    finally:
        timings = _timing_data.get(list_name)
        if timings is not None:
            timings.append(
                (time.time() - began, _timing_data.get("_current_session_id", ""))
            )


def report_timing_statistics(operations: list[tuple[str, list[BuildTiming]]]) -> None:
    """Summarise recorded builds per operation, slowest session first."""
    for name, timings in operations:
        if not timings:
            continue
        total = sum(duration for duration, _ in timings)
        _emit(f"{name}: {len(timings)} builds in {total:.3f}s")
        for duration, session_id in sorted(timings, reverse=True):
            _emit(f"  {session_id or '-'}: {duration * 1000:.1f}ms")
