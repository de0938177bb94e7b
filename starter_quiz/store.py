"""
Durable key-value stores for settings, high scores and lifetime stats.
"""
import abc
import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from .models import PersistenceError

logger = logging.getLogger(__name__)


class DurableStore(abc.ABC):
    """Async string-to-string key-value store."""

    @abc.abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when the key is absent."""

    @abc.abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store one value."""

    @abc.abstractmethod
    async def multi_set(self, pairs: Iterable[Tuple[str, str]]) -> None:
        """Store several values as one write."""

    async def close(self) -> None:
        """Release any underlying resources."""


class MemoryStore(DurableStore):
    """Process-local store; nothing survives a restart."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def multi_set(self, pairs: Iterable[Tuple[str, str]]) -> None:
        self._data.update(dict(pairs))

    def dump(self) -> Dict[str, str]:
        return dict(self._data)


class JsonFileStore(DurableStore):
    """Keeps every key in one JSON object on disk."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._data: Optional[Dict[str, str]] = None
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            data = await self._ensure_loaded()
            return data.get(key)

    async def set(self, key: str, value: str) -> None:
        await self.multi_set([(key, value)])

    async def multi_set(self, pairs: Iterable[Tuple[str, str]]) -> None:
        updates = dict(pairs)
        async with self._lock:
            data = await self._ensure_loaded()
            merged = {**data, **updates}
            await asyncio.to_thread(self._write_file, merged)
            self._data = merged

    async def _ensure_loaded(self) -> Dict[str, str]:
        if self._data is None:
            self._data = await asyncio.to_thread(self._read_file)
        return self._data

    def _read_file(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            # Unreadable contents are replaced on the next write
            logger.error(f"Invalid JSON in store file {self.path}: {e}")
            return {}
        except OSError as e:
            raise PersistenceError(f"Failed to read store file {self.path}: {e}") from e

        if not isinstance(data, dict):
            logger.error(f"Store file {self.path} does not hold a JSON object")
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write_file(self, data: Dict[str, str]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PersistenceError(f"Failed to write store file {self.path}: {e}") from e


class RedisStore(DurableStore):
    """Redis-backed store; keys are namespaced with a prefix."""

    def __init__(self, url: str, prefix: str = "starter_quiz:", client: Optional[redis.Redis] = None):
        self.url = url
        self.prefix = prefix
        self.redis_client: Optional[redis.Redis] = client

    async def connect(self) -> None:
        """
        Connect and ping the server.

        Raises:
            PersistenceError: If the server cannot be reached
        """
        try:
            if self.redis_client is None:
                self.redis_client = redis.from_url(self.url, decode_responses=True)
            await self.redis_client.ping()
            logger.info("Connected to Redis store")
        except (RedisError, OSError) as e:
            raise PersistenceError(f"Redis connection failed: {e}") from e

    async def close(self) -> None:
        if self.redis_client:
            await self.redis_client.aclose()

    def _get_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _client(self) -> redis.Redis:
        if self.redis_client is None:
            raise PersistenceError("Redis store is not connected")
        return self.redis_client

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self._client().get(self._get_key(key))
        except (RedisError, OSError) as e:
            raise PersistenceError(f"Redis read of {key} failed: {e}") from e
        if isinstance(value, bytes):
            value = value.decode('utf-8')
        return value

    async def set(self, key: str, value: str) -> None:
        try:
            await self._client().set(self._get_key(key), value)
        except (RedisError, OSError) as e:
            raise PersistenceError(f"Redis write of {key} failed: {e}") from e

    async def multi_set(self, pairs: Iterable[Tuple[str, str]]) -> None:
        mapping = {self._get_key(key): value for key, value in pairs}
        if not mapping:
            return
        try:
            await self._client().mset(mapping)
        except (RedisError, OSError) as e:
            raise PersistenceError(f"Redis multi-write failed: {e}") from e
