"""
Quiz session controller for the Student Starter Quiz.
Owns the session state machine: selection, questions, countdown and results.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .models import (
    Difficulty,
    EmptyPoolError,
    Phase,
    QuizError,
    QuizSnapshot,
    ReviewItem,
    SessionConfig,
    SessionState,
    UnknownCategoryError,
)
from .question_bank import QuestionBank
from .quiz_engine import AsyncioTickScheduler, QuizEngine, TickHandle, TimerLifecycleLogger, answers_match
from .stats_manager import StatsManager

FEEDBACK_CORRECT = "Correct!"
FEEDBACK_INCORRECT = "Incorrect"
FEEDBACK_TIMEOUT = "Time's up!"


class InvalidTransitionError(QuizError):
    """Raised when an action is not valid in the current phase."""
    pass


# ----------------------------------------------------------------------
# Actions
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class SelectCategory:
    category: str


@dataclass(frozen=True)
class SelectDifficulty:
    difficulty: Difficulty


@dataclass(frozen=True)
class StartSession:
    pass


@dataclass(frozen=True)
class SetAnswerInput:
    text: str


@dataclass(frozen=True)
class SubmitAnswer:
    pass


@dataclass(frozen=True)
class ShowHint:
    pass


@dataclass(frozen=True)
class Advance:
    pass


@dataclass(frozen=True)
class AbortSession:
    pass


@dataclass(frozen=True)
class OpenSettings:
    pass


@dataclass(frozen=True)
class CloseSettings:
    pass


@dataclass(frozen=True)
class ToggleTimerSetting:
    pass


@dataclass(frozen=True)
class ResetAllStats:
    confirmed: bool = False


@dataclass(frozen=True)
class CancelReset:
    pass


@dataclass(frozen=True)
class DismissNotice:
    pass


@dataclass(frozen=True)
class Tick:
    """One countdown second for the question generation it was scheduled for."""
    generation: int


QUIZ_PHASES = (Phase.DIFFICULTY_SELECT, Phase.IN_QUESTION, Phase.IN_ANSWER_REVIEW, Phase.FINISHED)


class QuizMachine:
    """
    Explicit state machine for one user's quiz sessions.

    All state changes go through dispatch(), one action at a time on the
    event loop thread. Persistence is delegated to StatsManager and never
    delays a transition. The countdown is a TickHandle owned by the machine;
    it is cancelled before any transition away from the question it belongs
    to, and every tick carries its question generation so a late tick can
    never touch a later question.
    """

    def __init__(
        self,
        bank: QuestionBank,
        stats_manager: StatsManager,
        scheduler=None,
        engine: Optional[QuizEngine] = None
    ):
        """
        Initialize the machine.

        Args:
            bank: Read-only question bank
            stats_manager: Loaded stats/high-score/settings manager
            scheduler: Tick scheduler with schedule(callback, owner) -> TickHandle
            engine: Pool builder; a default QuizEngine when None
        """
        self.logger = logging.getLogger(__name__)
        self.bank = bank
        self.stats_manager = stats_manager
        self.scheduler = scheduler if scheduler is not None else AsyncioTickScheduler()
        self.engine = engine if engine is not None else QuizEngine()

        self.phase = Phase.CATEGORY_SELECT
        self.selected_category: Optional[str] = None
        self.selected_difficulty: Difficulty = Difficulty.EASY
        self.session: Optional[SessionState] = None
        self.confirm_reset_pending = False
        self.notices: List[str] = []

        self._tick_handle: Optional[TickHandle] = None
        self._generation = 0
        self._listeners: List[Callable[[QuizSnapshot], None]] = []

        self.stats_manager.set_notifier(self.post_notice)
        self.logger.info("QuizMachine initialized")

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def dispatch(self, action) -> QuizSnapshot:
        """
        Apply one action and return the resulting snapshot.

        Raises:
            InvalidTransitionError: If the action is not valid in the current phase
            UnknownCategoryError: If SelectCategory names an unknown category
        """
        handler = self._handlers().get(type(action))
        if handler is None:
            raise InvalidTransitionError(f"Unsupported action: {action!r}")
        handler(action)
        snapshot = self.snapshot
        for listener in list(self._listeners):
            listener(snapshot)
        return snapshot

    def subscribe(self, listener: Callable[[QuizSnapshot], None]) -> None:
        """Call listener with a fresh snapshot after every dispatched action."""
        self._listeners.append(listener)

    def post_notice(self, message: str) -> None:
        """Queue a user-visible notice."""
        self.notices.append(message)
        for listener in list(self._listeners):
            listener(self.snapshot)

    @property
    def timer_active(self) -> bool:
        return self._tick_handle is not None and not self._tick_handle.cancelled

    def _handlers(self):
        return {
            SelectCategory: self._select_category,
            SelectDifficulty: self._select_difficulty,
            StartSession: self._start_session,
            SetAnswerInput: self._set_answer_input,
            SubmitAnswer: self._submit_answer,
            ShowHint: self._show_hint,
            Advance: self._advance,
            AbortSession: self._abort_session,
            OpenSettings: self._open_settings,
            CloseSettings: self._close_settings,
            ToggleTimerSetting: self._toggle_timer_setting,
            ResetAllStats: self._reset_all_stats,
            CancelReset: self._cancel_reset,
            DismissNotice: self._dismiss_notice,
            Tick: self._tick,
        }

    def _require_phase(self, action, *phases: Phase) -> None:
        if self.phase not in phases:
            raise InvalidTransitionError(
                f"{type(action).__name__} is not valid in phase {self.phase.name}"
            )

    def _transition(self, new_phase: Phase, reason: str) -> None:
        self.logger.debug(f"Phase {self.phase.name} -> {new_phase.name} ({reason})")
        self.phase = new_phase

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _select_category(self, action: SelectCategory) -> None:
        self._require_phase(action, Phase.CATEGORY_SELECT)
        if not self.bank.has_category(action.category):
            raise UnknownCategoryError(f"Unknown category: {action.category}")
        self.selected_category = action.category
        self.selected_difficulty = Difficulty.EASY
        self.stats_manager.request_high_score(self.selected_category, self.selected_difficulty)
        self._transition(Phase.DIFFICULTY_SELECT, f"category {action.category}")

    def _select_difficulty(self, action: SelectDifficulty) -> None:
        self._require_phase(action, Phase.DIFFICULTY_SELECT)
        self.selected_difficulty = Difficulty.parse(action.difficulty)
        self.stats_manager.request_high_score(self.selected_category, self.selected_difficulty)

    def _start_session(self, action: StartSession) -> None:
        self._require_phase(action, Phase.DIFFICULTY_SELECT)
        category, difficulty = self.selected_category, self.selected_difficulty
        try:
            pool = self.engine.build_pool(self.bank.get(category), difficulty)
        except EmptyPoolError:
            self.logger.info(f"Empty pool for {category}/{difficulty.value}, returning to categories")
            self.post_notice(f"No {difficulty.value} questions exist for {category} yet.")
            self._discard_session()
            self._transition(Phase.CATEGORY_SELECT, "empty pool")
            return

        config = SessionConfig(
            category=category,
            difficulty=difficulty,
            timer_enabled=self.stats_manager.settings.timer_enabled
        )
        self.session = SessionState(config=config, pool=tuple(pool))
        self.logger.info(
            f"Started session {category}/{difficulty.value} with {len(pool)} questions, "
            f"timer={'on' if config.timer_enabled else 'off'}"
        )
        self._begin_question()
        self._transition(Phase.IN_QUESTION, "session started")

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------

    def _begin_question(self) -> None:
        """Reset per-question fields and start the countdown if enabled."""
        session = self.session
        self._cancel_tick()
        self._generation += 1

        timed = self.stats_manager.settings.timer_enabled
        session.answered_current = False
        session.remaining_seconds = session.config.difficulty.time_limit
        session.question_timed = timed
        session.timer_running = timed
        session.answer_input = ""
        session.feedback = ""
        session.show_answer = False
        session.hint_visible = False

        if timed:
            generation = self._generation
            self._tick_handle = self.scheduler.schedule(
                lambda: self.dispatch(Tick(generation)),
                owner=f"question {session.current_index + 1}"
            )

    def _cancel_tick(self) -> None:
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None

    def _set_answer_input(self, action: SetAnswerInput) -> None:
        self._require_phase(action, Phase.IN_QUESTION)
        self.session.answer_input = action.text

    def _show_hint(self, action: ShowHint) -> None:
        self._require_phase(action, Phase.IN_QUESTION)
        if self.session.current_question.hint:
            self.session.hint_visible = True

    def _submit_answer(self, action: SubmitAnswer) -> None:
        self._require_phase(action, Phase.IN_QUESTION, Phase.IN_ANSWER_REVIEW)
        if self.session.answered_current:
            self.logger.debug("Ignoring submit for an already answered question")
            return
        self._lock_answer(self.session.answer_input, timed_out=False)

    def _tick(self, action: Tick) -> None:
        session = self.session
        if action.generation != self._generation or session is None:
            TimerLifecycleLogger.log_race_condition_detected(
                "quiz", f"stale tick for generation {action.generation} (current {self._generation})"
            )
            return
        if self.phase != Phase.IN_QUESTION or not session.timer_running or session.answered_current:
            return
        if session.remaining_seconds <= 0:
            return

        session.remaining_seconds -= 1
        TimerLifecycleLogger.log_timer_update(
            f"question {session.current_index + 1}",
            session.remaining_seconds,
            session.config.difficulty.time_limit
        )
        if session.remaining_seconds == 0:
            TimerLifecycleLogger.log_timer_completion(f"question {session.current_index + 1}", "natural_expiry")
            self._lock_answer("", timed_out=True)

    def _lock_answer(self, submitted: str, timed_out: bool) -> None:
        """Record an answer for the current question and move to review."""
        session = self.session
        question = session.current_question
        self._cancel_tick()

        correct = not timed_out and answers_match(submitted, question.answer)
        if correct:
            session.score += 1
            session.current_streak += 1
            self.stats_manager.observe_streak(session.current_streak)
            session.feedback = FEEDBACK_CORRECT
        else:
            session.current_streak = 0
            session.feedback = FEEDBACK_TIMEOUT if timed_out else FEEDBACK_INCORRECT

        session.user_answers[session.current_index] = submitted
        session.answered_current = True
        session.timer_running = False
        session.show_answer = not correct
        session.hint_visible = False

        self.logger.debug(
            f"Question {session.current_index + 1}/{len(session.pool)}: "
            f"{'timeout' if timed_out else ('correct' if correct else 'incorrect')}, "
            f"score={session.score}, streak={session.current_streak}"
        )
        self._transition(Phase.IN_ANSWER_REVIEW, "answer locked")

    def _advance(self, action: Advance) -> None:
        self._require_phase(action, Phase.IN_ANSWER_REVIEW)
        session = self.session
        if not session.answered_current:
            raise InvalidTransitionError("Cannot advance before the question is answered")

        if not session.is_last_question:
            session.current_index += 1
            self._begin_question()
            self._transition(Phase.IN_QUESTION, "next question")
            return

        self._cancel_tick()
        self._transition(Phase.FINISHED, "last question answered")
        config = session.config
        self.stats_manager.record_finish(
            config.category, config.difficulty, session.score, len(session.pool)
        )

    def _abort_session(self, action: AbortSession) -> None:
        self._require_phase(action, *QUIZ_PHASES)
        self._cancel_tick()
        if self.session is not None and self.phase != Phase.FINISHED:
            self.logger.info("Session aborted; partial results discarded")
        self._discard_session()
        self._transition(Phase.CATEGORY_SELECT, "abort")

    def _discard_session(self) -> None:
        self.session = None
        self.selected_category = None
        self.selected_difficulty = Difficulty.EASY

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def _open_settings(self, action: OpenSettings) -> None:
        self._require_phase(action, Phase.CATEGORY_SELECT, Phase.FINISHED)
        self._discard_session()
        self.confirm_reset_pending = False
        self._transition(Phase.SETTINGS, "open settings")

    def _close_settings(self, action: CloseSettings) -> None:
        self._require_phase(action, Phase.SETTINGS)
        self.confirm_reset_pending = False
        self._transition(Phase.CATEGORY_SELECT, "close settings")

    def _toggle_timer_setting(self, action: ToggleTimerSetting) -> None:
        # Applies from the next question; a running countdown is left alone
        self.stats_manager.set_timer_enabled(not self.stats_manager.settings.timer_enabled)

    def _reset_all_stats(self, action: ResetAllStats) -> None:
        self._require_phase(action, Phase.SETTINGS)
        if not action.confirmed:
            self.confirm_reset_pending = True
            return
        self.confirm_reset_pending = False
        self.stats_manager.reset_all(self.bank.pairs())

    def _cancel_reset(self, action: CancelReset) -> None:
        self.confirm_reset_pending = False

    def _dismiss_notice(self, action: DismissNotice) -> None:
        if self.notices:
            self.notices.pop(0)

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> QuizSnapshot:
        """Read-only view of the current state."""
        common = dict(
            phase=self.phase,
            notices=tuple(self.notices),
            confirm_reset_pending=self.confirm_reset_pending,
            timer_enabled=self.stats_manager.settings.timer_enabled,
            stats=self.stats_manager.snapshot_stats(),
        )
        session = self.session

        if session is None:
            if self.selected_category is None:
                return QuizSnapshot(**common)
            pool_size = self.bank.pool_size(self.selected_category, self.selected_difficulty)
            return QuizSnapshot(
                category=self.selected_category,
                difficulty=self.selected_difficulty,
                total_questions=pool_size,
                high_score=self.stats_manager.capped_high_score(
                    self.selected_category, self.selected_difficulty, pool_size
                ),
                **common
            )

        config = session.config
        total = len(session.pool)
        question = session.current_question
        finished = self.phase == Phase.FINISHED
        show_answer = session.show_answer and not finished
        return QuizSnapshot(
            category=config.category,
            difficulty=config.difficulty,
            question=None if finished else question,
            question_number=session.current_index + 1,
            total_questions=total,
            remaining_seconds=session.remaining_seconds,
            timer_running=session.timer_running,
            question_timed=session.question_timed,
            score=session.score,
            high_score=self.stats_manager.capped_high_score(config.category, config.difficulty, total),
            current_streak=session.current_streak,
            answer_input=session.answer_input,
            answered=session.answered_current,
            feedback=session.feedback,
            show_answer=show_answer,
            correct_answer=question.answer if show_answer else None,
            has_hint=bool(question.hint) and not session.answered_current,
            hint=question.hint if session.hint_visible else None,
            review=self._build_review(session) if finished else (),
            session_accuracy=round(session.score / total * 100) if finished and total else 0,
            **common
        )

    def _build_review(self, session: SessionState) -> Tuple[ReviewItem, ...]:
        items = []
        for index, question in enumerate(session.pool):
            submitted = session.user_answers.get(index, "")
            items.append(ReviewItem(
                number=index + 1,
                question=question.text,
                submitted=submitted,
                correct=answers_match(submitted, question.answer),
                correct_answer=question.answer
            ))
        return tuple(items)
