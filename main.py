#!/usr/bin/env python3
"""
Student Starter Quiz - Main Entry Point

Boots the quiz core (store, question bank, lifetime stats) and prints the
saved progress: lifetime stats and the high score of every category and
difficulty. A presentation layer drives the same QuizApp through
QuizApp.machine.dispatch().

Usage:
    python main.py

Configuration:
    config.json in the working directory (optional)

Environment Variables:
    QUIZ_STORE_BACKEND: memory, json or redis (overrides config.json)
    QUIZ_STORE_PATH: JSON store file (overrides config.json)
    QUIZ_REDIS_URL: Redis connection URL (overrides config.json)
"""

import asyncio
import sys
import json
from pathlib import Path

from starter_quiz.app import QuizApp, apply_env_overrides, setup_logging


def load_config():
    """Load configuration from config.json file, or defaults when absent."""
    config_path = Path("config.json")

    if not config_path.exists():
        return {}

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        print(f"❌ Error: Invalid JSON in config.json: {e}")
        sys.exit(1)
    except OSError as e:
        print(f"❌ Error loading config.json: {e}")
        sys.exit(1)


async def show_progress(config):
    """Boot the app and print lifetime stats and high scores."""
    app = QuizApp(config)
    await app.setup()
    try:
        stats = app.stats_manager.stats
        print("Lifetime Stats")
        print(f"  Quizzes taken: {stats.total_quizzes}")
        print(f"  Questions answered: {stats.total_answered}")
        print(f"  Overall accuracy: {stats.accuracy}%")
        print(f"  Longest streak: {stats.best_streak}")
        print(f"  Timer enabled: {'yes' if app.stats_manager.settings.timer_enabled else 'no'}")
        print()
        print("High Scores")
        for category, difficulty in app.bank.pairs():
            pool_size = app.bank.pool_size(category, difficulty)
            if pool_size == 0:
                continue
            await app.stats_manager.read_high_score(category, difficulty)
            best = app.stats_manager.capped_high_score(category, difficulty, pool_size)
            print(f"  {category} / {difficulty.value}: {best} / {pool_size}")
    finally:
        await app.close()


if __name__ == "__main__":
    config = apply_env_overrides(load_config())
    setup_logging(config.get('logging', {}))
    try:
        asyncio.run(show_progress(config))
    except KeyboardInterrupt:
        print("\n👋 Stopped by user")
