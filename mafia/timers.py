"""
mafia.timers: named, cancelable phase timers
============================================

One asyncio task per key. Scheduling a key that is already pending cancels
the old task first, so a key never fires twice. The absolute deadline of the
most recent phase timer is pushed to a sink (the engine stores it on the Game
for "time remaining" queries).

Callbacks may be plain functions or coroutine functions. Their exceptions are
logged and swallowed; the slot is released whatever the callback does.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Any]
DeadlineSink = Callable[[Optional[int]], None]


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


@dataclass
class _Timer:
    key: str
    task: asyncio.Task
    deadline: int
    record_deadline: bool


class PhaseTimers:
    """Timer scheduler: at most one pending timer per key."""

    def __init__(
        self,
        deadline_sink: Optional[DeadlineSink] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._timers: dict[str, _Timer] = {}
        self._deadline_sink = deadline_sink
        self._deadline_key: Optional[str] = None
        self._clock = clock

    def bind(self, deadline_sink: Optional[DeadlineSink]) -> None:
        """Route recorded deadlines to deadline_sink."""
        self._deadline_sink = deadline_sink

    def schedule(
        self,
        key: str,
        duration_ms: int,
        callback: TimerCallback,
        record_deadline: bool = True,
    ) -> int:
        """
        Run callback once after duration_ms unless cancelled. Replaces any timer
        under key. Must be called from a running event loop. Returns the deadline.
        """
        existing = self._timers.pop(key, None)
        if existing is not None:
            self._stop(existing)
            logger.debug("Replaced phase timer: %s", key)

        deadline = self._clock() + duration_ms
        task = asyncio.get_running_loop().create_task(
            self._run(key, max(duration_ms, 0) / 1000, callback),
            name=f"phase-timer:{key}",
        )
        self._timers[key] = _Timer(key=key, task=task, deadline=deadline, record_deadline=record_deadline)
        if record_deadline:
            self._deadline_key = key
            self._publish(deadline)
        logger.info("Set phase timer: %s for %sms", key, duration_ms)
        return deadline

    def cancel(self, key: str) -> bool:
        """Cancel the timer under key. Returns False if there was none."""
        entry = self._timers.pop(key, None)
        if entry is None:
            return False
        self._stop(entry)
        self._release_deadline(key)
        logger.info("Cleared phase timer: %s", key)
        return True

    def cancel_prefix(self, prefix: str) -> int:
        """Cancel every timer whose key starts with prefix. Returns how many."""
        keys = [k for k in self._timers if k.startswith(prefix)]
        for key in keys:
            self.cancel(key)
        return len(keys)

    def cancel_all(self) -> None:
        logger.info("Clearing all timers (%d active)", len(self._timers))
        entries = list(self._timers.values())
        self._timers.clear()
        for entry in entries:
            self._stop(entry)
        self._deadline_key = None
        self._publish(None)

    def active(self, key: str) -> bool:
        return key in self._timers

    def keys(self) -> list[str]:
        return list(self._timers)

    def deadline(self, key: str) -> Optional[int]:
        entry = self._timers.get(key)
        return entry.deadline if entry else None

    def remaining_ms(self, key: str) -> Optional[int]:
        entry = self._timers.get(key)
        if entry is None:
            return None
        return max(0, entry.deadline - self._clock())

    async def _run(self, key: str, delay: float, callback: TimerCallback) -> None:
        try:
            await asyncio.sleep(delay)
            result = callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            logger.debug("Phase timer cancelled: %s", key)
            raise
        except Exception:
            logger.exception("Error in phase timer callback for %s", key)
        finally:
            entry = self._timers.get(key)
            if entry is not None and entry.task is _current_task():
                del self._timers[key]
                self._release_deadline(key)

    @staticmethod
    def _stop(entry: _Timer) -> None:
        # A callback that cancels or replaces its own key keeps running to completion.
        if entry.task is _current_task():
            return
        entry.task.cancel()

    def _release_deadline(self, key: str) -> None:
        if self._deadline_key == key:
            self._deadline_key = None
            self._publish(None)

    def _publish(self, deadline: Optional[int]) -> None:
        if self._deadline_sink is not None:
            self._deadline_sink(deadline)
