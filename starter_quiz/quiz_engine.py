"""
Quiz engine core logic for the Student Starter Quiz.
Handles question shuffling, answer checking, and the countdown tick.
"""
import random
import asyncio
import logging
import time
from typing import Callable, List, Optional, Sequence, TypeVar

from .models import Difficulty, EmptyPoolError, Question

# Set up logger for timer operations
logger = logging.getLogger(__name__)

T = TypeVar("T")


def shuffle(items: Sequence[T], rng: Optional[random.Random] = None) -> List[T]:
    """
    Return a uniformly random permutation of items.

    Fisher-Yates over a copy, walking from the last index down to 1 and
    swapping with a uniformly chosen index at or below it. The input is
    never modified.

    Args:
        items: Finite sequence to permute
        rng: Random source; the module-level generator when None

    Returns:
        New list containing the same elements in random order
    """
    source = rng if rng is not None else random
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = source.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def normalize_answer(text: Optional[str]) -> str:
    """Trim surrounding whitespace and case-fold."""
    return (text or "").strip().casefold()


def answers_match(submitted: Optional[str], expected: str) -> bool:
    """Exact comparison after normalizing both sides."""
    return normalize_answer(submitted) == normalize_answer(expected)


class TimerLifecycleLogger:
    """Structured logging for countdown tick lifecycle events."""

    @staticmethod
    def log_timer_start(owner: str, interval: float) -> None:
        """Log tick schedule start."""
        logger.debug(
            f"Timer lifecycle: COUNTDOWN_START - {owner}, Interval {interval:.3f}s",
            extra={
                'event_type': 'timer_countdown_start',
                'owner': owner,
                'interval': interval,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(owner: str, remaining_time: int, total_duration: int) -> None:
        """Log timer update events (throttled to avoid spam)."""
        if total_duration <= 0:
            return
        if remaining_time % 10 == 0 or remaining_time <= 5:
            progress_percent = ((total_duration - remaining_time) / total_duration) * 100
            logger.debug(
                f"Timer lifecycle: UPDATE - {owner}, Remaining {remaining_time}s ({progress_percent:.1f}% complete)",
                extra={
                    'event_type': 'timer_update',
                    'owner': owner,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'progress_percent': progress_percent,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(owner: str, completion_type: str) -> None:
        """Log timer completion (natural expiry or cancellation)."""
        logger.info(
            f"Timer lifecycle: COMPLETED - {owner}, Type {completion_type}",
            extra={
                'event_type': 'timer_completed',
                'owner': owner,
                'completion_type': completion_type,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(owner: str, error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - {owner}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'owner': owner,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_race_condition_detected(owner: str, details: str) -> None:
        """Log race condition detection."""
        logger.warning(
            f"Timer lifecycle: RACE_CONDITION - {owner}: {details}",
            extra={
                'event_type': 'timer_race_condition',
                'owner': owner,
                'details': details,
                'timestamp': time.time()
            }
        )


class TickHandle:
    """Cancellable handle for a recurring tick."""

    def __init__(self, owner: str = "quiz"):
        self._owner = owner
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None

    def cancel(self) -> None:
        """Stop further ticks. Safe to call more than once."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._task and not self._task.done():
            logger.debug(f"Cancelling tick task for {self._owner}")
            self._task.cancel()
        TimerLifecycleLogger.log_timer_completion(self._owner, "cancelled")

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def owner(self) -> str:
        return self._owner


class AsyncioTickScheduler:
    """Runs a callback every `interval` seconds on the running event loop."""

    def __init__(self, interval: float = 1.0):
        if interval <= 0:
            raise ValueError("Tick interval must be positive")
        self.interval = interval

    def schedule(self, callback: Callable[[], None], owner: str = "quiz") -> TickHandle:
        """
        Start a recurring tick.

        Args:
            callback: Called once per interval until the handle is cancelled
            owner: Label used in timer lifecycle logs

        Returns:
            Handle whose cancel() stops the tick before its next firing
        """
        handle = TickHandle(owner)
        TimerLifecycleLogger.log_timer_start(owner, self.interval)
        handle._task = asyncio.create_task(self._run(handle, callback))
        handle._task.add_done_callback(lambda task: self._task_done(handle, task))
        return handle

    def _task_done(self, handle: TickHandle, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        if task.exception() is not None:
            # The tick stops for good; its error was logged by _run
            handle._cancelled = True

    async def _run(self, handle: TickHandle, callback: Callable[[], None]) -> None:
        try:
            while not handle.cancelled:
                await asyncio.sleep(self.interval)
                if handle.cancelled:
                    break
                callback()
        except asyncio.CancelledError:
            # cancel() already logged the completion
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                handle.owner,
                "tick_callback_error",
                str(e),
                "tick"
            )
            raise


class QuizEngine:
    """Derives shuffled question pools from the question bank."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng

    def filter_questions(self, questions: Sequence[Question], difficulty: Difficulty) -> List[Question]:
        """Keep the questions tagged with the given difficulty, in bank order."""
        return [question for question in questions if question.difficulty == difficulty]

    def build_pool(self, questions: Sequence[Question], difficulty: Difficulty) -> List[Question]:
        """
        Filter questions by difficulty and shuffle the result.

        Args:
            questions: All questions of one category
            difficulty: Selected difficulty

        Returns:
            Shuffled list of matching questions

        Raises:
            EmptyPoolError: If no question matches the difficulty
        """
        filtered = self.filter_questions(questions, difficulty)
        if not filtered:
            raise EmptyPoolError(f"No {difficulty.value} questions available")
        return shuffle(filtered, self._rng)
