"""
Application wiring for the Student Starter Quiz.
Builds the store, question bank, stats manager and state machine from config.
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from .config_manager import ConfigManager
from .models import PersistenceError
from .question_bank import QuestionBank
from .quiz_controller import QuizMachine
from .quiz_engine import AsyncioTickScheduler
from .stats_manager import StatsManager
from .store import DurableStore, JsonFileStore, MemoryStore, RedisStore

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Environment variables override config.json
ENV_OVERRIDES = {
    'QUIZ_STORE_BACKEND': ('store', 'backend'),
    'QUIZ_STORE_PATH': ('store', 'path'),
    'QUIZ_REDIS_URL': ('store', 'redis_url'),
}


def setup_logging(log_config: Optional[Dict[str, Any]] = None) -> logging.Logger:
    """Set up console, file and error-file logging."""
    log_config = log_config or {}
    log_level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)
    log_directory = Path(log_config.get('log_directory', './logs/'))
    log_directory.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_directory / "quiz.log", encoding='utf-8'),
        ]
    )

    error_handler = logging.FileHandler(log_directory / "errors.log", encoding='utf-8')
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(error_handler)

    # Reduce client library noise
    logging.getLogger('redis').setLevel(logging.WARNING)

    return logging.getLogger(__name__)


def apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of config with QUIZ_* environment variables applied."""
    merged = {section: dict(values) for section, values in config.items() if isinstance(values, dict)}
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            merged.setdefault(section, {})[key] = value
    return merged


class QuizApp:
    """Owns the collaborators of one quiz process."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.app_config = config or {}
        self.config_manager = ConfigManager()
        self.bank: Optional[QuestionBank] = None
        self.store: Optional[DurableStore] = None
        self.stats_manager: Optional[StatsManager] = None
        self.machine: Optional[QuizMachine] = None

    async def setup(self) -> QuizMachine:
        """Build every component and load durable state."""
        logger.info("Setting up quiz components...")

        errors = self.config_manager.apply_config(self.app_config)
        for error in errors:
            logger.warning(f"Configuration value ignored: {error}")
        settings = self.config_manager.get_app_settings()

        self.bank = QuestionBank()
        if settings.bank_directory:
            self.bank.load_directory(settings.bank_directory)

        self.store = await self.create_store()
        self.stats_manager = StatsManager(self.store)
        await self.stats_manager.load()

        self.machine = QuizMachine(
            self.bank,
            self.stats_manager,
            scheduler=AsyncioTickScheduler(settings.tick_interval)
        )
        logger.info("Quiz setup completed successfully")
        return self.machine

    async def create_store(self) -> DurableStore:
        """Create the configured store, falling back to memory if Redis is unreachable."""
        settings = self.config_manager.get_app_settings()
        if settings.store_backend == "redis":
            store = RedisStore(settings.redis_url, settings.redis_prefix)
            try:
                await store.connect()
                return store
            except PersistenceError as e:
                # Keep running; progress is not saved across restarts
                logger.error(f"{e}; falling back to in-memory store")
                return MemoryStore()
        if settings.store_backend == "json":
            return JsonFileStore(settings.store_path)
        return MemoryStore()

    async def close(self) -> None:
        """Finish pending writes and release the store."""
        if self.stats_manager is not None:
            await self.stats_manager.drain()
        if self.store is not None:
            await self.store.close()
        logger.info("Quiz application closed")
