"""
Core data models for the Student Starter Quiz.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple


class Difficulty(Enum):
    """Difficulty levels; each one maps to a per-question time limit."""
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"

    @property
    def time_limit(self) -> int:
        return DIFFICULTY_TIME_LIMITS[self]

    @classmethod
    def parse(cls, value) -> "Difficulty":
        """Accept a Difficulty, its value ("Hard") or its name ("HARD")."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for difficulty in cls:
                if value.strip().lower() in (difficulty.value.lower(), difficulty.name.lower()):
                    return difficulty
        raise ValueError(f"Unknown difficulty: {value!r}")


# Seconds allowed per question when the timer is enabled
DIFFICULTY_TIME_LIMITS: Dict[Difficulty, int] = {
    Difficulty.EASY: 15,
    Difficulty.MEDIUM: 10,
    Difficulty.HARD: 7,
}


class Phase(Enum):
    """Screens a quiz passes through."""
    CATEGORY_SELECT = "category"
    DIFFICULTY_SELECT = "difficulty"
    IN_QUESTION = "question"
    IN_ANSWER_REVIEW = "answer_review"
    FINISHED = "results"
    SETTINGS = "settings"


class QuizError(Exception):
    """Base exception for quiz errors."""
    pass


class UnknownCategoryError(QuizError):
    """Raised when a category is not present in the question bank."""
    pass


class EmptyPoolError(QuizError):
    """Raised when a (category, difficulty) pair has no questions."""
    pass


class PersistenceError(QuizError):
    """Raised when a durable store read or write fails."""
    pass


@dataclass(frozen=True)
class Question:
    """Represents a single quiz question."""
    text: str
    answer: str
    difficulty: Difficulty = Difficulty.EASY
    hint: Optional[str] = None


@dataclass(frozen=True)
class SessionConfig:
    """Choices made before a session starts."""
    category: str
    difficulty: Difficulty
    timer_enabled: bool = True


@dataclass
class SessionState:
    """Mutable state of a quiz session in progress."""
    config: SessionConfig
    pool: Tuple[Question, ...]
    current_index: int = 0
    score: int = 0
    user_answers: Dict[int, str] = field(default_factory=dict)
    answered_current: bool = False
    remaining_seconds: int = 0
    timer_running: bool = False
    question_timed: bool = False
    current_streak: int = 0
    answer_input: str = ""
    feedback: str = ""
    show_answer: bool = False
    hint_visible: bool = False

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_index < len(self.pool):
            return self.pool[self.current_index]
        return None

    @property
    def is_last_question(self) -> bool:
        return self.current_index + 1 >= len(self.pool)


@dataclass
class LifetimeStats:
    """Durable aggregate counters across all finished sessions."""
    total_quizzes: int = 0
    total_answered: int = 0
    total_correct: int = 0
    best_streak: int = 0

    @property
    def accuracy(self) -> int:
        """Overall accuracy as a rounded percentage."""
        if self.total_answered <= 0:
            return 0
        return round(self.total_correct / self.total_answered * 100)


@dataclass
class Settings:
    """Durable user settings."""
    timer_enabled: bool = True


@dataclass
class AppSettings:
    """Application configuration resolved from config.json and the environment."""
    store_backend: str = "json"
    store_path: str = "./data/quiz_store.json"
    redis_url: str = "redis://localhost:6379/0"
    redis_prefix: str = "starter_quiz:"
    bank_directory: Optional[str] = None
    tick_interval: float = 1.0


@dataclass(frozen=True)
class ReviewItem:
    """One row of the results review."""
    number: int
    question: str
    submitted: str
    correct: bool
    correct_answer: str


@dataclass(frozen=True)
class QuizSnapshot:
    """Read-only view of the machine for a presentation layer."""
    phase: Phase
    category: Optional[str] = None
    difficulty: Optional[Difficulty] = None
    question: Optional[Question] = None
    question_number: int = 0
    total_questions: int = 0
    remaining_seconds: int = 0
    timer_running: bool = False
    question_timed: bool = False
    score: int = 0
    high_score: int = 0
    current_streak: int = 0
    answer_input: str = ""
    answered: bool = False
    feedback: str = ""
    show_answer: bool = False
    correct_answer: Optional[str] = None
    has_hint: bool = False
    hint: Optional[str] = None
    notices: Tuple[str, ...] = ()
    confirm_reset_pending: bool = False
    timer_enabled: bool = True
    stats: LifetimeStats = field(default_factory=LifetimeStats)
    review: Tuple[ReviewItem, ...] = ()
    session_accuracy: int = 0

    @property
    def can_reveal(self) -> bool:
        """Whether the correct answer may be shown for the current question."""
        return self.show_answer and self.correct_answer is not None
