"""
Question bank for the Student Starter Quiz.
Holds the built-in categories and loads extra categories from JSON files.
"""
import json
import os
import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from pathlib import Path

from .models import Difficulty, Question, UnknownCategoryError


def _q(difficulty: Difficulty, text: str, answer: str, hint: Optional[str] = None) -> Question:
    return Question(text=text, answer=answer, difficulty=difficulty, hint=hint)


E, M, H = Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD

BUILTIN_BANK: Dict[str, Tuple[Question, ...]] = {
    "UK Life": (
        _q(E, "What is the capital of the UK?", "London", "Big Ben lives here."),
        _q(E, "What side of the road do people drive on in the UK?", "Left"),
        _q(M, "What is the UK currency called?", "Pound", "Also a gym move."),
        _q(M, "Name the UK's longest river.", "Severn", "Not Thames!"),
        _q(H, "Which country shares a land border with England?", "Scotland"),
        _q(H, "What is the upper house of the UK Parliament called?", "House of Lords"),
    ),
    "UAL Tips": (
        _q(E, "What does UAL stand for?", "University of the Arts London"),
        _q(E, "Name one UAL library.", "LCC Library"),
        _q(M, "Where can you find academic support at UAL?", "Academic Support Centre"),
        _q(M, "UAL ID cards are also known as?", "Passes", "Access..."),
        _q(H, "Which UAL service helps with careers and internships?", "Arts Temps"),
        _q(H, "Name the UAL virtual learning environment.", "Moodle"),
    ),
    "British Slang": (
        _q(E, 'What does "cheers" mean (most commonly)?', "Thanks"),
        _q(E, 'What is a "loo"?', "Toilet"),
        _q(M, 'If something is "brilliant", it is...', "Very good"),
        _q(M, '"Knackered" means...', "Tired", "Sleepy vibes."),
        _q(H, '"Chuffed" means...', "Pleased"),
        _q(H, 'A "quid" is one...', "Pound"),
    ),
}


class QuestionBank:
    """Read-only mapping from category name to its ordered questions."""

    MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB limit

    def __init__(self, categories: Optional[Dict[str, Sequence[Question]]] = None):
        """
        Initialize the bank.

        Args:
            categories: Category name -> questions; the built-in bank when None
        """
        source = BUILTIN_BANK if categories is None else categories
        self._categories: Dict[str, Tuple[Question, ...]] = {
            name: tuple(questions) for name, questions in source.items()
        }
        self.logger = logging.getLogger(__name__)
        self.load_errors: List[str] = []  # Track loading errors for reporting

    def categories(self) -> List[str]:
        """Category names in insertion order."""
        return list(self._categories)

    def has_category(self, category: str) -> bool:
        return category in self._categories

    def get(self, category: str) -> Tuple[Question, ...]:
        """
        Get all questions of a category.

        Raises:
            UnknownCategoryError: If the category does not exist
        """
        try:
            return self._categories[category]
        except KeyError:
            raise UnknownCategoryError(f"Unknown category: {category}") from None

    def pool(self, category: str, difficulty: Difficulty) -> List[Question]:
        """Questions of a category at one difficulty, in bank order."""
        return [q for q in self.get(category) if q.difficulty == difficulty]

    def pool_size(self, category: str, difficulty: Difficulty) -> int:
        return len(self.pool(category, difficulty)) if self.has_category(category) else 0

    def pairs(self) -> Iterable[Tuple[str, Difficulty]]:
        """Every known (category, difficulty) pair."""
        for category in self._categories:
            for difficulty in Difficulty:
                yield category, difficulty

    def get_question_count(self) -> int:
        return sum(len(questions) for questions in self._categories.values())

    # ------------------------------------------------------------------
    # JSON bank files
    # ------------------------------------------------------------------

    def load_directory(self, directory: str) -> int:
        """
        Load every *.json bank file in a directory into the bank.

        Invalid files are logged, recorded in load_errors and skipped; a
        missing directory is not an error.

        Args:
            directory: Path to the directory holding bank files

        Returns:
            Number of categories loaded
        """
        self.load_errors.clear()
        bank_directory = Path(directory)

        if not bank_directory.exists():
            self.logger.warning(f"Question bank directory not found: {bank_directory}")
            return 0

        try:
            json_files = sorted(bank_directory.glob("*.json"))
        except OSError as e:
            error_msg = f"System error scanning {bank_directory}: {e}"
            self.logger.error(error_msg)
            self.load_errors.append(error_msg)
            return 0

        loaded = 0
        for json_file in json_files:
            load_result = self._load_bank_file_safely(json_file)
            if load_result['success']:
                loaded += 1
            else:
                self.load_errors.append(f"{json_file.name}: {load_result['error']}")

        self.logger.info(f"Loaded {loaded} question bank files from {bank_directory}")
        if self.load_errors:
            self.logger.warning(f"Encountered {len(self.load_errors)} loading errors")
        return loaded

    def _load_bank_file_safely(self, json_file: Path) -> Dict[str, any]:
        """
        Load a single bank file with error handling.

        Returns:
            Dictionary with success status and error message if applicable
        """
        try:
            if not os.access(json_file, os.R_OK):
                return {
                    'success': False,
                    'error': "Permission denied: Cannot read file"
                }

            file_size = json_file.stat().st_size
            if file_size > self.MAX_FILE_SIZE:
                return {
                    'success': False,
                    'error': f"File too large ({file_size / 1024 / 1024:.1f}MB)"
                }

            with open(json_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            if not self.validate_bank_structure(data):
                return {
                    'success': False,
                    'error': "Invalid JSON structure or validation failed"
                }

            category = data["category"]
            questions = self._parse_questions(data)
            self._categories[category] = tuple(questions)
            self.logger.info(f"Loaded category '{category}' with {len(questions)} questions")
            return {'success': True}

        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in {json_file}: {e}")
            return {
                'success': False,
                'error': f"Invalid JSON: {e}"
            }
        except OSError as e:
            return {
                'success': False,
                'error': f"System error: {e}"
            }

    def validate_bank_structure(self, data: dict) -> bool:
        """
        Validate that JSON data has the correct bank structure.

        Expected structure:
        {
            "category": str,
            "questions": [
                {
                    "question": str,
                    "answer": str,
                    "difficulty": "Easy" | "Medium" | "Hard",
                    "hint": str  # Optional
                }
            ]
        }
        """
        if not isinstance(data, dict):
            self.logger.error("Bank data must be a JSON object")
            return False

        category = data.get("category")
        if not isinstance(category, str) or not category.strip():
            self.logger.error("Bank data must contain a non-empty 'category' string")
            return False

        questions = data.get("questions")
        if not isinstance(questions, list) or not questions:
            self.logger.error("'questions' must be a non-empty array")
            return False

        for i, question_data in enumerate(questions):
            if not isinstance(question_data, dict):
                self.logger.error(f"Question {i} must be an object")
                return False

            for required in ("question", "answer", "difficulty"):
                if not isinstance(question_data.get(required), str):
                    self.logger.error(f"Question {i} '{required}' field must be a string")
                    return False

            try:
                Difficulty.parse(question_data["difficulty"])
            except ValueError:
                self.logger.error(f"Question {i} has unknown difficulty {question_data['difficulty']!r}")
                return False

            if "hint" in question_data and not isinstance(question_data["hint"], (str, type(None))):
                self.logger.error(f"Question {i} 'hint' field must be a string")
                return False

        return True

    def _parse_questions(self, bank_data: dict) -> List[Question]:
        """Parse validated bank data into Question objects."""
        return [
            Question(
                text=question_data["question"],
                answer=question_data["answer"],
                difficulty=Difficulty.parse(question_data["difficulty"]),
                hint=question_data.get("hint") or None
            )
            for question_data in bank_data["questions"]
        ]
