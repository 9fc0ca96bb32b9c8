"""
Locking utilities for serializing work per dataset or per tournament.

KeyedLocks hands out one asyncio.Lock per key inside a process. When a Redis
URL is configured, DistributedLock extends the same guarantee across
processes with SET NX EX.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Hashable, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from league.config import Config

logger = logging.getLogger(__name__)


class KeyedLocks:
    """One asyncio.Lock per key, dropped again once nobody holds or waits on it"""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: Hashable):
        """Wait for the key's lock and hold it for the block"""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


class DistributedLock:
    """Cross-process lock stored as a Redis key with an expiry"""

    def __init__(self, client: 'redis.Redis', key: str, timeout: int = None):
        self.client = client
        self.key = key
        self.timeout = timeout or Config.RUN_LOCK_TIMEOUT_SECONDS

    async def acquire(self) -> bool:
        """Try once to take the lock; False when another holder has it"""
        return bool(await self.client.set(self.key, "1", ex=self.timeout, nx=True))

    async def release(self) -> None:
        await self.client.delete(self.key)


async def create_redis_client(redis_url: Optional[str] = None) -> Optional['redis.Redis']:
    """
    Connect to Redis for distributed locking.

    Returns None when no URL is configured or the server is unreachable,
    in which case callers fall back to in-process locking only.
    """
    redis_url = redis_url or Config.REDIS_URL
    if not redis_url:
        return None

    client = redis.from_url(redis_url)
    try:
        await client.ping()
    except RedisError as e:
        logger.warning(f"Redis unavailable for distributed locking: {e}")
        await client.aclose()
        return None

    logger.info("Connected to Redis for distributed locking")
    return client
