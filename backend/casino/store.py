"""Key/value store for tables, players and other room records.

Records are JSON-compatible dicts addressed by ``(kind, key)``.  The room
service only talks to the ``Store`` interface, so the in-memory backend
can be swapped for Redis without touching game logic.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

STORE_BACKEND = os.getenv("STORE_BACKEND", "memory")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
KEY_PREFIX = "casino"


class Store(ABC):
    @abstractmethod
    async def get(self, kind: str, key: str) -> Optional[dict[str, Any]]:
        ...

    @abstractmethod
    async def put(self, kind: str, key: str, data: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def delete(self, kind: str, key: str) -> None:
        ...

    @abstractmethod
    async def keys(self, kind: str) -> list[str]:
        ...

    async def all(self, kind: str) -> list[dict[str, Any]]:
        records = []
        for key in await self.keys(kind):
            data = await self.get(kind, key)
            if data is not None:
                records.append(data)
        return records

    async def close(self) -> None:
        pass


class MemoryStore(Store):
    """Process-local store.  Returns copies so callers never share state."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}

    async def get(self, kind: str, key: str) -> Optional[dict[str, Any]]:
        data = self._data.get(kind, {}).get(key)
        return copy.deepcopy(data) if data is not None else None

    async def put(self, kind: str, key: str, data: dict[str, Any]) -> None:
        self._data.setdefault(kind, {})[key] = copy.deepcopy(data)

    async def delete(self, kind: str, key: str) -> None:
        self._data.get(kind, {}).pop(key, None)

    async def keys(self, kind: str) -> list[str]:
        return list(self._data.get(kind, {}))


class RedisStore(Store):
    """Redis backend: one string key per record plus a set index per kind."""

    def __init__(self, url: str = REDIS_URL) -> None:
        self._url = url
        self._client: Optional[redis.Redis] = None

    def _redis(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self._url, decode_responses=True)
        return self._client

    @staticmethod
    def _record_key(kind: str, key: str) -> str:
        return f"{KEY_PREFIX}:{kind}:{key}"

    @staticmethod
    def _index_key(kind: str) -> str:
        return f"{KEY_PREFIX}:{kind}"

    async def get(self, kind: str, key: str) -> Optional[dict[str, Any]]:
        raw = await self._redis().get(self._record_key(kind, key))
        if raw is None:
            return None
        return json.loads(raw)

    async def put(self, kind: str, key: str, data: dict[str, Any]) -> None:
        r = self._redis()
        await r.set(self._record_key(kind, key), json.dumps(data))
        await r.sadd(self._index_key(kind), key)

    async def delete(self, kind: str, key: str) -> None:
        r = self._redis()
        await r.delete(self._record_key(kind, key))
        await r.srem(self._index_key(kind), key)

    async def keys(self, kind: str) -> list[str]:
        return sorted(await self._redis().smembers(self._index_key(kind)))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


_store: Optional[Store] = None


def get_store() -> Store:
    global _store
    if _store is None:
        if STORE_BACKEND == "redis":
            logger.info("Using Redis store at %s", REDIS_URL)
            _store = RedisStore(REDIS_URL)
        else:
            _store = MemoryStore()
    return _store


def set_store(store: Optional[Store]) -> None:
    """Install a store (tests, alternate backends).  None resets to default."""
    global _store
    _store = store


async def close() -> None:
    global _store
    if _store is not None:
        await _store.close()
        _store = None
