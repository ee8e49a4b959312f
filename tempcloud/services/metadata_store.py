"""Metadata stores: key-value storage with best-effort per-entry TTL"""

import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from tempcloud.errors import StoreUnavailableError
from tempcloud.utils.logger import get_logger

logger = get_logger(__name__)


class MetadataStore(ABC):
    """
    Contract for the metadata store

    ``ttl`` is advisory: entries may outlive it or vanish right at it, and
    callers must never rely on it as the only expiry mechanism.
    """

    @abstractmethod
    async def put(self, key: str, value: str, ttl: int) -> None:
        ...

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def compare_and_swap(
        self, key: str, expected: str, new_value: Optional[str], ttl: int = 0
    ) -> bool:
        """
        Atomically replace ``key`` if it still holds ``expected``

        Args:
            key: Entry key
            expected: Value previously read
            new_value: Replacement, or None to delete the entry
            ttl: TTL in seconds for the replacement

        Returns:
            True if the swap happened, False if the entry changed meanwhile
        """

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class InMemoryMetadataStore(MetadataStore):
    """
    Process-local metadata store for development and tests

    Entries expire lazily on read according to the injected clock. No method
    awaits between reading and writing an entry, so every operation is atomic
    on a single event loop.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, deadline = entry
        if deadline is not None and self._clock() >= deadline:
            del self._entries[key]
            return None
        return value

    def _deadline(self, ttl: int) -> Optional[float]:
        return self._clock() + ttl if ttl and ttl > 0 else None

    async def put(self, key: str, value: str, ttl: int) -> None:
        self._entries[key] = (value, self._deadline(ttl))

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def compare_and_swap(
        self, key: str, expected: str, new_value: Optional[str], ttl: int = 0
    ) -> bool:
        if self._live(key) != expected:
            return False
        if new_value is None:
            del self._entries[key]
        else:
            self._entries[key] = (new_value, self._deadline(ttl))
        return True

    def __len__(self) -> int:
        return sum(1 for key in list(self._entries) if self._live(key) is not None)


class RedisMetadataStore(MetadataStore):
    """Metadata store backed by Redis (``SET ... EX``, CAS through WATCH/MULTI)"""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        password: Optional[str] = None,
        db: int = 0,
        timeout: float = 5.0,
        client: Optional[aioredis.Redis] = None,
    ):
        self._client = client if client is not None else aioredis.Redis(
            host=host,
            port=port,
            password=password,
            db=db,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
            decode_responses=True,
        )

    async def put(self, key: str, value: str, ttl: int) -> None:
        try:
            await self._client.set(key, value, ex=max(int(ttl), 1))
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Redis put failed for {key}: {e}")
            raise StoreUnavailableError("Metadata store unavailable") from e

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(key)
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Redis get failed for {key}: {e}")
            raise StoreUnavailableError("Metadata store unavailable") from e

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Redis delete failed for {key}: {e}")
            raise StoreUnavailableError("Metadata store unavailable") from e

    async def compare_and_swap(
        self, key: str, expected: str, new_value: Optional[str], ttl: int = 0
    ) -> bool:
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                current = await pipe.get(key)
                if current != expected:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                if new_value is None:
                    pipe.delete(key)
                else:
                    pipe.set(key, new_value, ex=max(int(ttl), 1))
                await pipe.execute()
                return True
        except WatchError:
            logger.debug(f"Concurrent modification of {key}, swap rejected")
            return False
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Redis compare-and-swap failed for {key}: {e}")
            raise StoreUnavailableError("Metadata store unavailable") from e

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        await self._client.aclose()
