"""
Key-Value Store - Persistenz des Agent-Gedaechtnisses ueber Neustarts.

Vertrag: get(key) -> Optional[JSON], set(key, JSON), append(key, item).
Implementierung ueber Redis (redis.asyncio). Kaputte oder unlesbare
Werte degradieren zu None, damit die Engine mit leerem Zustand startet.
"""

import json
import logging
from typing import Any, Optional, Protocol

import redis.asyncio as redis

from .circuit_breaker import call_with_breaker, redis_breaker
from .config import settings
from .exceptions import StorageError

logger = logging.getLogger(__name__)

KEY_PREFIX = "homeagent:"


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def append(self, key: str, item: Any, max_items: int) -> None: ...

    async def get_list(self, key: str) -> list: ...


def decode_json(key: str, raw: Any) -> Optional[Any]:
    """Parst einen gespeicherten Wert, None bei Korruption."""
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning("%s", StorageError(f"Wert '{key}' nicht lesbar, starte leer: {e}"))
        return None


class RedisKeyValueStore:
    """JSON-Werte in Redis. Ohne Verbindung wird nichts persistiert."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, prefix: str = KEY_PREFIX):
        self.redis = redis_client
        self._prefix = prefix

    async def initialize(self) -> None:
        """Verbindet mit Redis, bei Fehler laeuft der Store ohne Persistenz."""
        if self.redis is not None:
            return
        try:
            self.redis = redis.from_url(settings.redis_url, decode_responses=True)
            await self.redis.ping()
            logger.info("Redis verbunden")
        except (redis.RedisError, OSError) as e:
            logger.warning("Redis nicht verfuegbar: %s", e)
            self.redis = None

    async def close(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None

    async def get(self, key: str) -> Optional[Any]:
        if not self.redis:
            return None
        raw = await call_with_breaker(redis_breaker, self.redis.get, self._prefix + key, fallback=None)
        return decode_json(key, raw)

    async def get_list(self, key: str) -> list:
        """Liest eine per append() gefuellte Liste, kaputte Eintraege fallen weg."""
        if not self.redis:
            return []
        items = await call_with_breaker(
            redis_breaker, self.redis.lrange, self._prefix + key, 0, -1, fallback=None,
        )
        return [v for v in (decode_json(key, item) for item in items or []) if v is not None]

    async def set(self, key: str, value: Any) -> None:
        if not self.redis:
            return
        try:
            payload = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Wert fuer '{key}' nicht serialisierbar: {e}") from e
        await call_with_breaker(redis_breaker, self.redis.set, self._prefix + key, payload, fallback=None)

    async def append(self, key: str, item: Any, max_items: int = 500) -> None:
        """Haengt an eine Liste an und kappt auf die letzten max_items Eintraege."""
        if not self.redis:
            return
        full_key = self._prefix + key
        pipe = self.redis.pipeline()
        pipe.rpush(full_key, json.dumps(item, ensure_ascii=False))
        pipe.ltrim(full_key, -max_items, -1)
        await call_with_breaker(redis_breaker, pipe.execute, fallback=None)
