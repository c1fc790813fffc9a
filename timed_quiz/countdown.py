"""
Countdown scheduling for timed quiz attempts.
Ticks the attempt clock once per interval and forces submission at zero.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from .attempt_store import QuizAttemptStore
from .models import AttemptPhase

# Set up logger for timer operations
logger = logging.getLogger(__name__)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class TimerLifecycleLogger:
    """Structured logging for countdown lifecycle events."""

    @staticmethod
    def log_timer_start(attempt_id: str, remaining_seconds: int, interval: float) -> None:
        """Log countdown start."""
        logger.info(
            f"Timer lifecycle: COUNTDOWN_START - Attempt {attempt_id}, Remaining {remaining_seconds}s",
            extra={
                'event_type': 'timer_countdown_start',
                'attempt_id': attempt_id,
                'remaining_seconds': remaining_seconds,
                'interval': interval,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(attempt_id: str, remaining_time: int, total_duration: int) -> None:
        """Log timer update events (throttled to avoid spam)."""
        # Log only at specific intervals to avoid log spam
        if remaining_time % 60 == 0 or remaining_time <= 5:
            progress_percent = ((total_duration - remaining_time) / total_duration) * 100 if total_duration else 100.0
            logger.debug(
                f"Timer lifecycle: UPDATE - Attempt {attempt_id}, Remaining {remaining_time}s ({progress_percent:.1f}% complete)",
                extra={
                    'event_type': 'timer_update',
                    'attempt_id': attempt_id,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'progress_percent': progress_percent,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(attempt_id: str, completion_type: str, elapsed: float) -> None:
        """Log timer completion (expiry, phase change or cancellation)."""
        logger.info(
            f"Timer lifecycle: COMPLETED - Attempt {attempt_id}, Type {completion_type}, Ran {elapsed:.1f}s",
            extra={
                'event_type': 'timer_completed',
                'attempt_id': attempt_id,
                'completion_type': completion_type,
                'elapsed': elapsed,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_released(attempt_id: str, reason: str, task_cancelled: bool) -> None:
        """Log release of the countdown task."""
        logger.info(
            f"Timer lifecycle: RELEASED - Attempt {attempt_id}, Reason {reason}, Task cancelled {task_cancelled}",
            extra={
                'event_type': 'timer_released',
                'attempt_id': attempt_id,
                'reason': reason,
                'task_cancelled': task_cancelled,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(attempt_id: str, error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - Attempt {attempt_id}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'attempt_id': attempt_id,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )


class CountdownScheduler:
    """Drives the attempt clock and triggers auto-submission at zero."""

    def __init__(
        self,
        store: QuizAttemptStore,
        on_expire: Callable[[], Awaitable[Any]],
        on_tick: Optional[Callable[[int], Awaitable[Any]]] = None,
        interval: float = 1.0
    ):
        """
        Args:
            store: Attempt whose clock is driven
            on_expire: Awaited once when the clock reaches zero while Active
            on_tick: Run after every tick that leaves time on the clock, outside the clock loop
            interval: Seconds between ticks
        """
        self._store = store
        self._on_expire = on_expire
        self._on_tick = on_tick
        self._interval = interval
        self._task: Optional[asyncio.Task] = None
        self._tick_task: Optional[asyncio.Task] = None
        self._released = False

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def attempt_id(self) -> str:
        return self._store.attempt_id

    def start(self) -> None:
        """Acquire the countdown task. Does nothing if one is already running."""
        if self.is_running:
            logger.debug(f"Countdown already running for attempt {self.attempt_id}")
            return

        self._released = False
        TimerLifecycleLogger.log_timer_start(self.attempt_id, self._store.remaining_seconds, self._interval)
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        started_at = time.time()
        total = self._store.definition.time_limit_seconds
        completion_type = "phase_changed"

        loop = asyncio.get_running_loop()
        # Ticks follow the loop clock, not the time spent redrawing
        next_tick = loop.time() + self._interval

        try:
            while self._store.phase == AttemptPhase.ACTIVE and not self._released:
                await asyncio.sleep(max(0.0, next_tick - loop.time()))
                next_tick += self._interval

                if self._store.phase != AttemptPhase.ACTIVE or self._released:
                    break

                remaining = self._store.tick()
                TimerLifecycleLogger.log_timer_update(self.attempt_id, remaining, total)

                if remaining == 0:
                    completion_type = "natural_expiry"
                    self._released = True
                    await self._on_expire()
                    break

                self._schedule_tick_callback(remaining)

            if self._released and completion_type != "natural_expiry":
                completion_type = "released"

            TimerLifecycleLogger.log_timer_completion(self.attempt_id, completion_type, time.time() - started_at)

        except asyncio.CancelledError:
            TimerLifecycleLogger.log_timer_completion(
                self.attempt_id, "asyncio_cancelled", time.time() - started_at
            )
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                self.attempt_id, "countdown_execution_error", str(e), "run"
            )

    def _schedule_tick_callback(self, remaining: int) -> None:
        """Run on_tick beside the clock. A tick is skipped while the previous one is still drawing."""
        if self._on_tick is None:
            return
        if self._tick_task is not None and not self._tick_task.done():
            logger.debug(f"Skipping tick callback for attempt {self.attempt_id}: previous one still running")
            return
        self._tick_task = asyncio.create_task(self._deliver_tick(remaining))

    async def _deliver_tick(self, remaining: int) -> None:
        try:
            await self._on_tick(remaining)
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                self.attempt_id, "tick_callback_error", str(e), "on_tick"
            )

    def stop(self, reason: str) -> bool:
        """
        Release the countdown task and any tick callback still in flight.

        Never cancels the task it is called from: when auto-submission runs
        inside the countdown task, the task finishes on its own after the
        submission.

        Returns:
            True if a running countdown task was cancelled
        """
        self._released = True
        current = _current_task()
        task = self._task
        cancelled = False

        if task is not None and not task.done() and task is not current:
            task.cancel()
            cancelled = True

        tick_task = self._tick_task
        if tick_task is not None and not tick_task.done() and tick_task is not current:
            tick_task.cancel()

        TimerLifecycleLogger.log_timer_released(self.attempt_id, reason, cancelled)
        return cancelled

    async def wait_closed(self) -> None:
        """Wait for the countdown task and its tick callback to finish after stop() or expiry."""
        current = _current_task()
        for task in (self._task, self._tick_task):
            if task is None or task is current:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
