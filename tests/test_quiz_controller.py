"""
Unit tests for the QuizMachine session state machine.
"""
import logging
import random
import unittest

from starter_quiz.models import Difficulty, Phase, UnknownCategoryError
from starter_quiz.question_bank import QuestionBank
from starter_quiz.quiz_controller import (
    AbortSession,
    Advance,
    CancelReset,
    CloseSettings,
    DismissNotice,
    InvalidTransitionError,
    OpenSettings,
    QuizMachine,
    ResetAllStats,
    SelectCategory,
    SelectDifficulty,
    SetAnswerInput,
    ShowHint,
    StartSession,
    SubmitAnswer,
    ToggleTimerSetting,
)
from starter_quiz.quiz_engine import QuizEngine
from starter_quiz.stats_manager import KEY_TIMER_ENABLED, high_score_key
from starter_quiz.store import MemoryStore
from tests.test_fixtures import AsyncTestHelpers, ManualTickScheduler, TestFixtures, async_test


class MachineTestCase(unittest.TestCase):
    """Shared setup: sample bank, memory store, manual clock."""

    def setUp(self):
        logging.disable(logging.CRITICAL)
        self.scheduler = ManualTickScheduler()
        self.store = MemoryStore()

    def tearDown(self):
        logging.disable(logging.NOTSET)

    async def create_machine(self, timer_enabled=False, bank=None):
        self.manager = await AsyncTestHelpers.create_loaded_manager(self.store)
        self.manager.settings.timer_enabled = timer_enabled
        return QuizMachine(
            bank or TestFixtures.create_sample_bank(),
            self.manager,
            scheduler=self.scheduler,
            engine=QuizEngine(random.Random(0))
        )

    def start(self, machine, category="UK Life", difficulty=Difficulty.EASY):
        machine.dispatch(SelectCategory(category))
        machine.dispatch(SelectDifficulty(difficulty))
        return machine.dispatch(StartSession())

    def answer(self, machine, text):
        machine.dispatch(SetAnswerInput(text))
        return machine.dispatch(SubmitAnswer())

    def correct_answer(self, machine):
        return machine.session.current_question.answer

    def assert_score_invariant(self, machine):
        session = machine.session
        if session is not None:
            self.assertTrue(0 <= session.score <= session.current_index + 1 <= len(session.pool))


class TestSelection(MachineTestCase):
    """Test cases for category and difficulty selection."""

    @async_test
    async def test_initial_phase(self):
        """Test that the machine starts on category selection."""
        machine = await self.create_machine()
        snapshot = machine.snapshot
        self.assertEqual(snapshot.phase, Phase.CATEGORY_SELECT)
        self.assertIsNone(snapshot.category)
        self.assertIsNone(machine.session)

    @async_test
    async def test_select_category_defaults_to_easy(self):
        """Test that choosing a category moves to difficulty selection on Easy."""
        machine = await self.create_machine()
        snapshot = machine.dispatch(SelectCategory("UK Life"))
        self.assertEqual(snapshot.phase, Phase.DIFFICULTY_SELECT)
        self.assertEqual(snapshot.category, "UK Life")
        self.assertEqual(snapshot.difficulty, Difficulty.EASY)
        self.assertEqual(snapshot.total_questions, 2)
        await self.manager.drain()

    @async_test
    async def test_unknown_category_rejected(self):
        """Test that unknown categories raise and leave the phase alone."""
        machine = await self.create_machine()
        with self.assertRaises(UnknownCategoryError):
            machine.dispatch(SelectCategory("Astrophysics"))
        self.assertEqual(machine.phase, Phase.CATEGORY_SELECT)

    @async_test
    async def test_selection_reads_high_score(self):
        """Test that the high score for the pair is read on selection."""
        self.store = MemoryStore({high_score_key("UK Life", Difficulty.MEDIUM): "2"})
        machine = await self.create_machine()
        machine.dispatch(SelectCategory("UK Life"))
        machine.dispatch(SelectDifficulty(Difficulty.MEDIUM))
        await self.manager.drain()
        self.assertEqual(machine.snapshot.high_score, 2)

    @async_test
    async def test_displayed_high_score_is_capped(self):
        """Test that a stored score above the pool size displays capped."""
        self.store = MemoryStore({high_score_key("UK Life", Difficulty.EASY): "9"})
        machine = await self.create_machine()
        machine.dispatch(SelectCategory("UK Life"))
        await self.manager.drain()
        self.assertEqual(machine.snapshot.high_score, 2)
        self.assertEqual(await self.store.get(high_score_key("UK Life", Difficulty.EASY)), "9")

    @async_test
    async def test_select_difficulty_accepts_strings(self):
        """Test that difficulty values may be given as text."""
        machine = await self.create_machine()
        machine.dispatch(SelectCategory("UK Life"))
        snapshot = machine.dispatch(SelectDifficulty("Hard"))
        self.assertEqual(snapshot.difficulty, Difficulty.HARD)
        await self.manager.drain()

    @async_test
    async def test_abort_from_difficulty_goes_back(self):
        """Test going back from difficulty selection."""
        machine = await self.create_machine()
        machine.dispatch(SelectCategory("UK Life"))
        snapshot = machine.dispatch(AbortSession())
        self.assertEqual(snapshot.phase, Phase.CATEGORY_SELECT)
        self.assertIsNone(snapshot.category)
        await self.manager.drain()


class TestStartSession(MachineTestCase):
    """Test cases for starting a session."""

    @async_test
    async def test_start_builds_shuffled_pool(self):
        """Test pool filtering and per-question reset on start."""
        machine = await self.create_machine(timer_enabled=True)
        snapshot = self.start(machine, difficulty=Difficulty.MEDIUM)

        self.assertEqual(snapshot.phase, Phase.IN_QUESTION)
        self.assertEqual({q.answer for q in machine.session.pool}, {"Pound", "Severn"})
        self.assertEqual(snapshot.question_number, 1)
        self.assertEqual(snapshot.total_questions, 2)
        self.assertEqual(snapshot.score, 0)
        self.assertEqual(snapshot.remaining_seconds, 10)
        self.assertTrue(snapshot.timer_running)
        self.assertEqual(machine.session.user_answers, {})
        self.assertEqual(machine.session.config.category, "UK Life")
        await self.manager.drain()

    @async_test
    async def test_empty_pool_redirects_with_notice(self):
        """Test that an empty pool returns to categories without a session."""
        machine = await self.create_machine()
        snapshot = self.start(machine, category="Sparse", difficulty=Difficulty.HARD)

        self.assertEqual(snapshot.phase, Phase.CATEGORY_SELECT)
        self.assertIsNone(machine.session)
        self.assertEqual(snapshot.notices, ("No Hard questions exist for Sparse yet.",))
        self.assertEqual(self.scheduler.handles, [])

        snapshot = machine.dispatch(DismissNotice())
        self.assertEqual(snapshot.notices, ())
        await self.manager.drain()

    @async_test
    async def test_start_resets_streak(self):
        """Test that a new session starts its streak at zero."""
        machine = await self.create_machine()
        self.start(machine)
        self.answer(machine, self.correct_answer(machine))
        self.assertEqual(machine.session.current_streak, 1)
        machine.dispatch(AbortSession())

        self.start(machine)
        self.assertEqual(machine.session.current_streak, 0)
        await self.manager.drain()


class TestAnswering(MachineTestCase):
    """Test cases for submitting answers."""

    @async_test
    async def test_correct_answer(self):
        """Test scoring, streak and feedback on a correct answer."""
        machine = await self.create_machine()
        self.start(machine)
        snapshot = self.answer(machine, "  " + self.correct_answer(machine).lower() + " ")

        self.assertEqual(snapshot.phase, Phase.IN_ANSWER_REVIEW)
        self.assertEqual(snapshot.score, 1)
        self.assertEqual(snapshot.current_streak, 1)
        self.assertEqual(snapshot.feedback, "Correct!")
        self.assertFalse(snapshot.show_answer)
        self.assertFalse(snapshot.can_reveal)
        self.assertTrue(snapshot.answered)
        self.assertEqual(self.manager.stats.best_streak, 1)
        self.assert_score_invariant(machine)
        await self.manager.drain()

    @async_test
    async def test_incorrect_answer_reveals_answer(self):
        """Test feedback and revealed answer on a wrong answer."""
        machine = await self.create_machine()
        self.start(machine)
        expected = self.correct_answer(machine)
        snapshot = self.answer(machine, "definitely wrong")

        self.assertEqual(snapshot.score, 0)
        self.assertEqual(snapshot.current_streak, 0)
        self.assertEqual(snapshot.feedback, "Incorrect")
        self.assertTrue(snapshot.can_reveal)
        self.assertEqual(snapshot.correct_answer, expected)
        self.assertEqual(machine.session.user_answers, {0: "definitely wrong"})
        await self.manager.drain()

    @async_test
    async def test_double_submit_is_noop(self):
        """Test that submitting twice changes nothing."""
        machine = await self.create_machine()
        self.start(machine)
        self.answer(machine, self.correct_answer(machine))
        before = (machine.session.score, dict(machine.session.user_answers), machine.session.current_streak)

        machine.dispatch(SubmitAnswer())
        machine.dispatch(SubmitAnswer())

        after = (machine.session.score, dict(machine.session.user_answers), machine.session.current_streak)
        self.assertEqual(before, after)
        await self.manager.drain()

    @async_test
    async def test_typing_after_answer_rejected(self):
        """Test that the answer input is locked once answered."""
        machine = await self.create_machine()
        self.start(machine)
        self.answer(machine, "x")
        with self.assertRaises(InvalidTransitionError):
            machine.dispatch(SetAnswerInput("y"))
        await self.manager.drain()

    @async_test
    async def test_streak_resets_on_mismatch(self):
        """Test streak counting across questions."""
        machine = await self.create_machine()
        self.start(machine, difficulty=Difficulty.HARD)
        self.answer(machine, self.correct_answer(machine))
        machine.dispatch(Advance())
        self.assertEqual(machine.session.current_streak, 1)
        self.answer(machine, "nope")
        self.assertEqual(machine.session.current_streak, 0)
        self.assertEqual(self.manager.stats.best_streak, 1)
        await self.manager.drain()

    @async_test
    async def test_hint(self):
        """Test hint availability and reveal."""
        bank = QuestionBank({"UK Life": TestFixtures.create_sample_questions()[:1]})
        machine = await self.create_machine(bank=bank)
        snapshot = self.start(machine)
        self.assertTrue(snapshot.has_hint)
        self.assertIsNone(snapshot.hint)

        snapshot = machine.dispatch(ShowHint())
        self.assertEqual(snapshot.hint, "Big Ben lives here.")

        snapshot = self.answer(machine, "London")
        self.assertFalse(snapshot.has_hint)
        self.assertIsNone(snapshot.hint)
        await self.manager.drain()

    @async_test
    async def test_unknown_action_rejected(self):
        """Test that objects which are not actions raise."""
        machine = await self.create_machine()
        with self.assertRaises(InvalidTransitionError):
            machine.dispatch("StartSession")

    @async_test
    async def test_advance_before_answer_rejected(self):
        """Test that Advance requires an answered question."""
        machine = await self.create_machine()
        self.start(machine)
        with self.assertRaises(InvalidTransitionError):
            machine.dispatch(Advance())
        await self.manager.drain()


class TestTimeout(MachineTestCase):
    """Test cases for timer-driven auto-failure."""

    @async_test
    async def test_countdown_decrements_by_one(self):
        """Test that each tick takes exactly one second off."""
        machine = await self.create_machine(timer_enabled=True)
        self.start(machine)
        for expected in (14, 13, 12):
            self.scheduler.tick()
            self.assertEqual(machine.snapshot.remaining_seconds, expected)
        await self.manager.drain()

    @async_test
    async def test_hard_timeout_after_seven_ticks(self):
        """Test the Hard question times out after 7 ticks without input."""
        machine = await self.create_machine(timer_enabled=True)
        self.start(machine, difficulty=Difficulty.HARD)
        machine.session.current_streak = 3

        self.scheduler.tick(6)
        self.assertEqual(machine.phase, Phase.IN_QUESTION)
        self.scheduler.tick(1)

        snapshot = machine.snapshot
        self.assertEqual(snapshot.phase, Phase.IN_ANSWER_REVIEW)
        self.assertEqual(snapshot.feedback, "Time's up!")
        self.assertEqual(snapshot.remaining_seconds, 0)
        self.assertTrue(snapshot.answered)
        self.assertFalse(snapshot.timer_running)
        self.assertEqual(machine.session.user_answers[machine.session.current_index], "")
        self.assertEqual(machine.session.current_streak, 0)
        self.assertTrue(snapshot.can_reveal)
        await self.manager.drain()

    @async_test
    async def test_typed_but_unsubmitted_answer_still_times_out(self):
        """Test that a timeout records '' even when text was typed."""
        machine = await self.create_machine(timer_enabled=True)
        self.start(machine, difficulty=Difficulty.HARD)
        machine.dispatch(SetAnswerInput(self.correct_answer(machine)))
        self.scheduler.tick(7)
        self.assertEqual(machine.session.user_answers, {0: ""})
        self.assertEqual(machine.session.score, 0)
        await self.manager.drain()

    @async_test
    async def test_next_question_restarts_countdown(self):
        """Test that advancing resets remaining time and the tick."""
        machine = await self.create_machine(timer_enabled=True)
        self.start(machine, difficulty=Difficulty.HARD)
        self.scheduler.tick(7)
        snapshot = machine.dispatch(Advance())

        self.assertEqual(snapshot.phase, Phase.IN_QUESTION)
        self.assertEqual(snapshot.remaining_seconds, 7)
        self.assertTrue(snapshot.timer_running)
        self.assertEqual(snapshot.feedback, "")
        self.assertEqual(len(self.scheduler.active_handles), 1)
        await self.manager.drain()

    @async_test
    async def test_toggle_applies_from_next_question(self):
        """Test that the timer setting does not alter a running countdown."""
        machine = await self.create_machine(timer_enabled=True)
        self.start(machine, difficulty=Difficulty.HARD)
        machine.dispatch(ToggleTimerSetting())

        self.scheduler.tick(2)
        self.assertEqual(machine.snapshot.remaining_seconds, 5)
        self.assertTrue(machine.snapshot.timer_running)

        self.answer(machine, "x")
        snapshot = machine.dispatch(Advance())
        self.assertFalse(snapshot.timer_running)
        self.assertFalse(snapshot.question_timed)
        self.scheduler.tick(10)
        self.assertEqual(machine.snapshot.remaining_seconds, 7)
        self.assertEqual(machine.phase, Phase.IN_QUESTION)
        await self.manager.drain()
        self.assertEqual(await self.store.get(KEY_TIMER_ENABLED), "0")


class TestFinishAndAbort(MachineTestCase):
    """Test cases for finishing and aborting sessions."""

    @async_test
    async def test_finish_writes_back_and_shows_review(self):
        """Test the results snapshot and write-back on finish."""
        machine = await self.create_machine()
        self.start(machine)
        first = machine.session.current_question
        self.answer(machine, first.answer)
        machine.dispatch(Advance())
        second = machine.session.current_question
        self.answer(machine, "wrong")
        snapshot = machine.dispatch(Advance())

        self.assertEqual(snapshot.phase, Phase.FINISHED)
        self.assertIsNone(snapshot.question)
        self.assertEqual(snapshot.score, 1)
        self.assertEqual(snapshot.session_accuracy, 50)
        self.assertEqual([item.correct for item in snapshot.review], [True, False])
        self.assertEqual(snapshot.review[1].question, second.text)
        self.assertEqual(snapshot.review[1].submitted, "wrong")
        self.assertEqual(snapshot.review[1].correct_answer, second.answer)
        self.assertEqual(snapshot.stats.total_quizzes, 1)
        self.assertEqual(snapshot.stats.total_answered, 2)
        self.assertEqual(snapshot.stats.total_correct, 1)

        await self.manager.drain()
        self.assertEqual(await self.store.get("stats_total_quizzes"), "1")
        self.assertEqual(await self.store.get(high_score_key("UK Life", Difficulty.EASY)), "1")
        self.assertEqual(machine.snapshot.high_score, 1)

    @async_test
    async def test_uk_life_easy_session_without_timer(self):
        """Test a full untimed session: London right, Right wrong."""
        machine = await self.create_machine(timer_enabled=False)
        self.start(machine)
        replies = {"London": "London", "Left": "Right"}

        for _ in range(2):
            snapshot = self.answer(machine, replies[self.correct_answer(machine)])
            self.assertFalse(snapshot.timer_running)
            snapshot = machine.dispatch(Advance())

        self.assertEqual(snapshot.phase, Phase.FINISHED)
        self.assertEqual(snapshot.score, 1)
        self.assertEqual(self.scheduler.handles, [])
        await self.manager.drain()
        self.assertEqual(await self.store.get("stats_total_quizzes"), "1")
        self.assertEqual(await self.store.get("stats_total_answered"), "2")
        self.assertEqual(await self.store.get("stats_total_correct"), "1")
        self.assertEqual(await self.store.get("stats_best_streak"), "1")
        self.assertEqual(await self.store.get("highScore_UK Life_Easy"), "1")

    @async_test
    async def test_abort_mid_session_writes_nothing(self):
        """Test that partial sessions never reach lifetime stats."""
        machine = await self.create_machine(timer_enabled=True)
        self.start(machine)
        self.answer(machine, self.correct_answer(machine))
        machine.dispatch(Advance())
        snapshot = machine.dispatch(AbortSession())

        self.assertEqual(snapshot.phase, Phase.CATEGORY_SELECT)
        self.assertIsNone(machine.session)
        self.assertEqual(self.scheduler.active_handles, [])
        self.assertEqual(snapshot.stats.total_quizzes, 0)
        await self.manager.drain()
        self.assertIsNone(await self.store.get("stats_total_quizzes"))

    @async_test
    async def test_invariant_holds_throughout(self):
        """Test 0 <= score <= index+1 <= len(pool) after every action."""
        machine = await self.create_machine(timer_enabled=True)
        machine.subscribe(lambda snapshot: self.assert_score_invariant(machine))
        self.start(machine, difficulty=Difficulty.MEDIUM)
        self.answer(machine, self.correct_answer(machine))
        machine.dispatch(Advance())
        self.scheduler.tick(10)
        machine.dispatch(Advance())
        self.assertEqual(machine.phase, Phase.FINISHED)
        await self.manager.drain()

    @async_test
    async def test_results_to_settings(self):
        """Test that settings open from results and return to categories."""
        machine = await self.create_machine()
        self.start(machine)
        self.answer(machine, "a")
        machine.dispatch(Advance())
        self.answer(machine, "b")
        machine.dispatch(Advance())

        snapshot = machine.dispatch(OpenSettings())
        self.assertEqual(snapshot.phase, Phase.SETTINGS)
        self.assertIsNone(machine.session)
        snapshot = machine.dispatch(CloseSettings())
        self.assertEqual(snapshot.phase, Phase.CATEGORY_SELECT)
        await self.manager.drain()


class TestSettingsPhase(MachineTestCase):
    """Test cases for settings and reset confirmation."""

    @async_test
    async def test_settings_not_reachable_mid_quiz(self):
        """Test that settings open only from categories or results."""
        machine = await self.create_machine()
        self.start(machine)
        with self.assertRaises(InvalidTransitionError):
            machine.dispatch(OpenSettings())
        await self.manager.drain()

    @async_test
    async def test_reset_requires_confirmation(self):
        """Test the confirm-then-reset flow."""
        self.store = MemoryStore({"stats_total_quizzes": "3"})
        machine = await self.create_machine()
        machine.dispatch(OpenSettings())

        snapshot = machine.dispatch(ResetAllStats())
        self.assertTrue(snapshot.confirm_reset_pending)
        self.assertEqual(snapshot.stats.total_quizzes, 3)

        snapshot = machine.dispatch(CancelReset())
        self.assertFalse(snapshot.confirm_reset_pending)
        self.assertEqual(snapshot.stats.total_quizzes, 3)

        machine.dispatch(ResetAllStats())
        snapshot = machine.dispatch(ResetAllStats(confirmed=True))
        self.assertFalse(snapshot.confirm_reset_pending)
        self.assertEqual(snapshot.stats.total_quizzes, 0)

        await self.manager.drain()
        self.assertEqual(await self.store.get("stats_total_quizzes"), "0")
        self.assertEqual(machine.snapshot.notices, ("All stats have been reset.",))

    @async_test
    async def test_reset_outside_settings_rejected(self):
        """Test that reset is only offered on the settings screen."""
        machine = await self.create_machine()
        with self.assertRaises(InvalidTransitionError):
            machine.dispatch(ResetAllStats(confirmed=True))

    @async_test
    async def test_toggle_timer_in_settings(self):
        """Test the timer switch."""
        machine = await self.create_machine(timer_enabled=True)
        machine.dispatch(OpenSettings())
        snapshot = machine.dispatch(ToggleTimerSetting())
        self.assertFalse(snapshot.timer_enabled)
        snapshot = machine.dispatch(ToggleTimerSetting())
        self.assertTrue(snapshot.timer_enabled)
        await self.manager.drain()
        self.assertEqual(await self.store.get(KEY_TIMER_ENABLED), "1")

    @async_test
    async def test_write_failure_surfaces_notice(self):
        """Test that a failed write becomes a notice without rollback."""
        from tests.test_fixtures import FailingStore
        self.store = FailingStore(fail_all_writes=True)
        machine = await self.create_machine()
        machine.dispatch(OpenSettings())
        snapshot = machine.dispatch(ToggleTimerSetting())
        self.assertTrue(snapshot.timer_enabled)
        await self.manager.drain()
        notices = machine.snapshot.notices
        self.assertEqual(len(notices), 1)
        self.assertIn(KEY_TIMER_ENABLED, notices[0])
        self.assertTrue(machine.snapshot.timer_enabled)


if __name__ == '__main__':
    unittest.main()
