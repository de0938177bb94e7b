"""
Lifetime statistics, high scores and settings persistence.

The manager keeps the in-memory copy of every durable value and is the only
writer of the stats, high-score and settings keys. Reads happen once at
start-up (and per category/difficulty selection for high scores); writes are
fire-and-forget tasks carrying the full in-memory value, so a failed write is
healed by the next successful write of the same key.
"""
import asyncio
import logging
from dataclasses import replace
from typing import Awaitable, Callable, Dict, Iterable, Optional, Set, Tuple

from .models import Difficulty, LifetimeStats, PersistenceError, Settings
from .store import DurableStore

KEY_TIMER_ENABLED = "settings_timer_enabled"
KEY_STATS_QUIZZES = "stats_total_quizzes"
KEY_STATS_ANSWERED = "stats_total_answered"
KEY_STATS_CORRECT = "stats_total_correct"
KEY_STATS_BEST_STREAK = "stats_best_streak"


def high_score_key(category: str, difficulty: Difficulty) -> str:
    """Store key for the high score of one (category, difficulty) pair."""
    return f"highScore_{category}_{difficulty.value}"


class StatsManager:
    """Owns LifetimeStats, high scores and Settings and writes them back."""

    def __init__(
        self,
        store: DurableStore,
        notify: Optional[Callable[[str], None]] = None
    ):
        """
        Initialize the manager.

        Args:
            store: Durable key-value store
            notify: Receives user-facing notices such as write failures
        """
        self.logger = logging.getLogger(__name__)
        self.store = store
        self._notify = notify
        self.stats = LifetimeStats()
        self.settings = Settings()
        self._high_scores: Dict[str, int] = {}
        # Bumped on every in-memory change so slower reads cannot overwrite it
        self._high_score_versions: Dict[str, int] = {}
        self._pending: Set[asyncio.Task] = set()

    def set_notifier(self, notify: Optional[Callable[[str], None]]) -> None:
        self._notify = notify

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Read the timer setting and the lifetime counters."""
        timer_raw, quizzes, answered, correct, streak = await asyncio.gather(
            self._safe_get(KEY_TIMER_ENABLED),
            self._safe_get(KEY_STATS_QUIZZES),
            self._safe_get(KEY_STATS_ANSWERED),
            self._safe_get(KEY_STATS_CORRECT),
            self._safe_get(KEY_STATS_BEST_STREAK),
        )
        if timer_raw is not None:
            self.settings.timer_enabled = timer_raw == "1"
        self.stats = LifetimeStats(
            total_quizzes=self._parse_count(KEY_STATS_QUIZZES, quizzes),
            total_answered=self._parse_count(KEY_STATS_ANSWERED, answered),
            total_correct=self._parse_count(KEY_STATS_CORRECT, correct),
            best_streak=self._parse_count(KEY_STATS_BEST_STREAK, streak),
        )
        self.logger.info(
            f"Loaded lifetime stats: quizzes={self.stats.total_quizzes}, "
            f"answered={self.stats.total_answered}, correct={self.stats.total_correct}, "
            f"best_streak={self.stats.best_streak}, timer_enabled={self.settings.timer_enabled}"
        )

    async def _safe_get(self, key: str) -> Optional[str]:
        try:
            return await self.store.get(key)
        except PersistenceError as e:
            self.logger.warning(f"Could not read {key}, using default: {e}")
            return None

    def _parse_count(self, key: str, raw: Optional[str]) -> int:
        if raw is None:
            return 0
        try:
            value = int(raw)
        except (TypeError, ValueError):
            self.logger.warning(f"Corrupted value for {key}: {raw!r}, using 0")
            return 0
        if value < 0:
            self.logger.warning(f"Negative value for {key}: {value}, using 0")
            return 0
        return value

    # ------------------------------------------------------------------
    # High scores
    # ------------------------------------------------------------------

    def high_score(self, category: str, difficulty: Difficulty) -> int:
        """Last known stored high score; 0 until read."""
        return self._high_scores.get(high_score_key(category, difficulty), 0)

    def capped_high_score(self, category: str, difficulty: Difficulty, pool_size: int) -> int:
        """High score for display, capped at the current pool size."""
        return min(self.high_score(category, difficulty), max(pool_size, 0))

    async def read_high_score(self, category: str, difficulty: Difficulty) -> int:
        """Read one high score from the store and cache it."""
        key = high_score_key(category, difficulty)
        version = self._high_score_versions.get(key, 0)
        try:
            raw = await self.store.get(key)
        except PersistenceError as e:
            # Not cached: the next finish compares against the store again
            self.logger.warning(f"Could not read {key}, showing last known value: {e}")
            return self._high_scores.get(key, 0)
        value = self._parse_count(key, raw)
        if self._high_score_versions.get(key, 0) == version:
            self._high_scores[key] = value
        else:
            self.logger.debug(f"Discarded stale high score read for {key}")
        return self._high_scores.get(key, value)

    def request_high_score(self, category: str, difficulty: Difficulty) -> None:
        """Refresh the cached high score in the background."""
        self._spawn(self.read_high_score(category, difficulty), f"read {high_score_key(category, difficulty)}")

    def _set_high_score_in_memory(self, key: str, value: int) -> None:
        self._high_scores[key] = value
        self._high_score_versions[key] = self._high_score_versions.get(key, 0) + 1

    # ------------------------------------------------------------------
    # Session results
    # ------------------------------------------------------------------

    def observe_streak(self, current_streak: int) -> None:
        """Raise best_streak if the running streak exceeds it."""
        if current_streak > self.stats.best_streak:
            self.stats.best_streak = current_streak

    def record_finish(self, category: str, difficulty: Difficulty, score: int, pool_size: int) -> None:
        """
        Apply a finished session to memory and schedule both write-backs.

        Args:
            category: Session category
            difficulty: Session difficulty
            score: Correct answers in the session
            pool_size: Number of questions in the session
        """
        self.stats.total_quizzes += 1
        self.stats.total_answered += pool_size
        self.stats.total_correct += score
        self._spawn(self._write_stats(), "stats write-back")

        capped = min(score, pool_size)
        key = high_score_key(category, difficulty)
        if key in self._high_scores:
            if capped > self._high_scores[key]:
                self._set_high_score_in_memory(key, capped)
                self._spawn(self._write_value(key, str(capped)), f"high score {key}")
        else:
            self._spawn(self._compare_and_write_high_score(category, difficulty, capped), f"high score {key}")

        self.logger.info(
            f"Recorded finished session {category}/{difficulty.value}: score={score}/{pool_size}"
        )

    async def _compare_and_write_high_score(self, category: str, difficulty: Difficulty, capped: int) -> None:
        key = high_score_key(category, difficulty)
        stored = await self.read_high_score(category, difficulty)
        if key not in self._high_scores:
            self._report_write_failure(key, "stored high score could not be read")
            return
        if capped > stored:
            self._set_high_score_in_memory(key, capped)
            await self._write_value(key, str(capped))

    def _stats_pairs(self) -> Tuple[Tuple[str, str], ...]:
        return (
            (KEY_STATS_QUIZZES, str(self.stats.total_quizzes)),
            (KEY_STATS_ANSWERED, str(self.stats.total_answered)),
            (KEY_STATS_CORRECT, str(self.stats.total_correct)),
            (KEY_STATS_BEST_STREAK, str(self.stats.best_streak)),
        )

    async def _write_stats(self) -> bool:
        return await self._write_pairs(self._stats_pairs(), "lifetime stats")

    async def _write_value(self, key: str, value: str) -> bool:
        try:
            await self.store.set(key, value)
            return True
        except PersistenceError as e:
            self._report_write_failure(key, e)
            return False

    async def _write_pairs(self, pairs: Iterable[Tuple[str, str]], description: str) -> bool:
        try:
            await self.store.multi_set(list(pairs))
            return True
        except PersistenceError as e:
            self._report_write_failure(description, e)
            return False

    def _report_write_failure(self, what: str, error: Exception) -> None:
        self.logger.error(f"Failed to save {what}: {error}")
        self._post(f"Could not save {what}. Your progress is kept for this session.")

    def _post(self, message: str) -> None:
        if self._notify is not None:
            self._notify(message)

    # ------------------------------------------------------------------
    # Settings and reset
    # ------------------------------------------------------------------

    def set_timer_enabled(self, enabled: bool) -> None:
        """Update the timer setting and persist it immediately."""
        self.settings.timer_enabled = bool(enabled)
        self.logger.info(f"Timer setting changed to {self.settings.timer_enabled}")
        self._spawn(
            self._write_value(KEY_TIMER_ENABLED, "1" if self.settings.timer_enabled else "0"),
            "timer setting"
        )

    def reset_all(self, pairs: Iterable[Tuple[str, Difficulty]]) -> None:
        """
        Zero every high score and lifetime counter.

        Callers are responsible for confirming with the user first.

        Args:
            pairs: Every known (category, difficulty) pair
        """
        keys = [high_score_key(category, difficulty) for category, difficulty in pairs]
        for key in keys:
            self._set_high_score_in_memory(key, 0)
        self.stats = LifetimeStats()
        self.logger.warning(f"Resetting {len(keys)} high scores and all lifetime stats")
        self._spawn(self._write_reset(keys), "reset")

    async def _write_reset(self, keys) -> None:
        highs_ok = await self._write_pairs([(key, "0") for key in keys], "high scores")
        stats_ok = await self._write_pairs(self._stats_pairs(), "lifetime stats")
        if highs_ok and stats_ok:
            self._post("All stats have been reset.")

    def snapshot_stats(self) -> LifetimeStats:
        return replace(self.stats)

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    def _spawn(self, coro: Awaitable, description: str) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(lambda t: self._task_done(t, description))
        return task

    def _task_done(self, task: asyncio.Task, description: str) -> None:
        self._pending.discard(task)
        if task.cancelled():
            self.logger.debug(f"Background task cancelled: {description}")
            return
        error = task.exception()
        if error is not None:
            self.logger.error(f"Background task failed: {description}: {error}")

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait until every scheduled read and write has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
