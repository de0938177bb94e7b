"""
Configuration manager for Student Starter Quiz application settings.
"""
import logging
from typing import Any, Dict, List, Optional
from pathlib import Path

from .models import AppSettings


class ConfigManager:
    """Manages application configuration: storage backend, banks and timing."""

    # Default configuration values
    DEFAULT_STORE_BACKEND = "json"
    DEFAULT_STORE_PATH = "./data/quiz_store.json"
    DEFAULT_REDIS_URL = "redis://localhost:6379/0"
    DEFAULT_REDIS_PREFIX = "starter_quiz:"
    DEFAULT_BANK_DIRECTORY = None  # Built-in bank only
    DEFAULT_TICK_INTERVAL = 1.0

    # Validation limits
    STORE_BACKENDS = ("memory", "json", "redis")
    MIN_TICK_INTERVAL = 0.01
    MAX_TICK_INTERVAL = 5.0

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._settings = AppSettings()

    def get_app_settings(self) -> AppSettings:
        """
        Get current application settings.

        Returns:
            Copy of the AppSettings currently in effect
        """
        return AppSettings(
            store_backend=self._settings.store_backend,
            store_path=self._settings.store_path,
            redis_url=self._settings.redis_url,
            redis_prefix=self._settings.redis_prefix,
            bank_directory=self._settings.bank_directory,
            tick_interval=self._settings.tick_interval
        )

    def set_store_backend(self, backend: str) -> Dict[str, Any]:
        """
        Select the durable store backend.

        Args:
            backend: One of "memory", "json" or "redis"

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(backend, str):
            error_msg = f"Store backend must be a string, got {type(backend).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a backend name, got {type(backend).__name__}"
            }

        normalized = backend.strip().lower()
        if normalized not in self.STORE_BACKENDS:
            error_msg = f"Unknown store backend: {backend}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Unknown storage backend '{backend}'. Use one of: {', '.join(self.STORE_BACKENDS)}"
            }

        self._settings.store_backend = normalized
        self.logger.info(f"Store backend set to {normalized}")
        return {
            'success': True,
            'message': f"Store backend set to {normalized}",
            'user_message': f"✅ Progress will be saved using the {normalized} store"
        }

    def set_store_path(self, path: str) -> Dict[str, Any]:
        """
        Set the file used by the JSON store.

        Args:
            path: Path of the JSON store file

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(path, str) or not path.strip():
            error_msg = "Store path must be a non-empty string"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Store file path cannot be empty"
            }

        store_path = Path(path)
        if store_path.exists() and store_path.is_dir():
            error_msg = f"Store path is a directory: {path}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Store path must be a file, not a directory: {path}"
            }

        self._settings.store_path = str(store_path)
        self.logger.info(f"Store path set to {store_path}")
        return {
            'success': True,
            'message': f"Store path set to {store_path}",
            'user_message': f"✅ Progress file set to {store_path}"
        }

    def set_redis_url(self, url: str, prefix: Optional[str] = None) -> Dict[str, Any]:
        """
        Set the Redis connection URL and optional key prefix.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(url, str) or not url.startswith(("redis://", "rediss://", "unix://")):
            error_msg = f"Invalid Redis URL: {url}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Redis URL must start with redis://, rediss:// or unix://"
            }

        if prefix is not None and not isinstance(prefix, str):
            error_msg = f"Redis prefix must be a string, got {type(prefix).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Redis key prefix must be text"
            }

        self._settings.redis_url = url
        if prefix is not None:
            self._settings.redis_prefix = prefix
        self.logger.info("Redis URL updated")
        return {
            'success': True,
            'message': "Redis URL updated",
            'user_message': "✅ Redis connection settings updated"
        }

    def set_redis_prefix(self, prefix: str) -> Dict[str, Any]:
        """
        Set the Redis key prefix, keeping the current URL.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(prefix, str):
            error_msg = f"Redis prefix must be a string, got {type(prefix).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Redis key prefix must be text"
            }

        self._settings.redis_prefix = prefix
        self.logger.info(f"Redis key prefix set to {prefix!r}")
        return {
            'success': True,
            'message': f"Redis key prefix set to {prefix!r}",
            'user_message': f"✅ Redis keys will start with '{prefix}'"
        }

    def set_bank_directory(self, directory: Optional[str]) -> Dict[str, Any]:
        """
        Set the directory of extra JSON question banks.

        Args:
            directory: Path to bank files, or None for the built-in bank only

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if directory is None:
            self._settings.bank_directory = None
            self.logger.info("Using built-in question bank only")
            return {
                'success': True,
                'message': "Using built-in question bank only",
                'user_message': "✅ Using the built-in question bank"
            }

        if not isinstance(directory, str) or not directory.strip():
            error_msg = "Bank directory must be a non-empty string"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Directory path cannot be empty"
            }

        try:
            normalized_path = str(Path(directory).resolve())
        except (OSError, ValueError) as e:
            error_msg = f"Invalid directory path format: {e}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid path format: {directory}"
            }

        self._settings.bank_directory = normalized_path
        self.logger.info(f"Bank directory set to {normalized_path}")
        return {
            'success': True,
            'message': f"Bank directory set to {normalized_path}",
            'user_message': f"✅ Question bank directory set to {normalized_path}"
        }

    def set_tick_interval(self, interval: float) -> Dict[str, Any]:
        """
        Set the countdown tick interval in seconds.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(interval, bool) or not isinstance(interval, (int, float)):
            error_msg = f"Tick interval must be a number, got {type(interval).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(interval).__name__}"
            }

        if interval < self.MIN_TICK_INTERVAL or interval > self.MAX_TICK_INTERVAL:
            error_msg = (
                f"Tick interval must be between {self.MIN_TICK_INTERVAL} and "
                f"{self.MAX_TICK_INTERVAL} seconds"
            )
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ {error_msg}"
            }

        self._settings.tick_interval = float(interval)
        self.logger.info(f"Tick interval set to {interval} seconds")
        return {
            'success': True,
            'message': f"Tick interval set to {interval} seconds",
            'user_message': f"✅ Timer ticks every {interval} seconds"
        }

    def apply_config(self, config: Dict[str, Any]) -> List[str]:
        """
        Apply a config.json dictionary, keeping defaults for rejected values.

        Returns:
            Error messages for every rejected value
        """
        errors: List[str] = []
        store_config = config.get('store', {})
        quiz_config = config.get('quiz', {})

        results = []
        if 'backend' in store_config:
            results.append(self.set_store_backend(store_config['backend']))
        if 'path' in store_config:
            results.append(self.set_store_path(store_config['path']))
        if 'redis_url' in store_config:
            results.append(self.set_redis_url(store_config['redis_url'], store_config.get('redis_prefix')))
        elif 'redis_prefix' in store_config:
            results.append(self.set_redis_prefix(store_config['redis_prefix']))
        if 'bank_directory' in quiz_config:
            results.append(self.set_bank_directory(quiz_config['bank_directory']))
        if 'tick_interval' in quiz_config:
            results.append(self.set_tick_interval(quiz_config['tick_interval']))

        for result in results:
            if not result['success']:
                errors.append(result['error'])
        if errors:
            self.logger.warning(f"Ignored {len(errors)} invalid configuration values")
        return errors

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._settings = AppSettings(
            store_backend=self.DEFAULT_STORE_BACKEND,
            store_path=self.DEFAULT_STORE_PATH,
            redis_url=self.DEFAULT_REDIS_URL,
            redis_prefix=self.DEFAULT_REDIS_PREFIX,
            bank_directory=self.DEFAULT_BANK_DIRECTORY,
            tick_interval=self.DEFAULT_TICK_INTERVAL
        )
        self.logger.info("All settings reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }

        if self._settings.store_backend not in self.STORE_BACKENDS:
            validation_result["valid"] = False
            validation_result["issues"].append(
                f"Invalid store backend: {self._settings.store_backend}"
            )

        if self._settings.store_backend == "json" and not self._settings.store_path:
            validation_result["valid"] = False
            validation_result["issues"].append("JSON store selected without a store path")

        if (not isinstance(self._settings.tick_interval, (int, float)) or
                self._settings.tick_interval < self.MIN_TICK_INTERVAL or
                self._settings.tick_interval > self.MAX_TICK_INTERVAL):
            validation_result["valid"] = False
            validation_result["issues"].append(
                f"Invalid tick interval: {self._settings.tick_interval}"
            )

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        if self._settings.store_backend == "json":
            store_str = f"json ({self._settings.store_path})"
        elif self._settings.store_backend == "redis":
            store_str = f"redis ({self._settings.redis_url})"
        else:
            store_str = self._settings.store_backend

        return (
            f"Quiz Settings:\n"
            f"• Store: {store_str}\n"
            f"• Extra banks: {self._settings.bank_directory or 'none'}\n"
            f"• Tick interval: {self._settings.tick_interval} seconds"
        )
