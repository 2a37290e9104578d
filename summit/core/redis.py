"""
Per-user lock for inbound SMS processing: Redis OR in-process asyncio.
Controlled by FF_USE_REDIS flag (plus REDIS_URL).

Two texts from the same person can arrive within milliseconds. Both read the
same session row; without serialization the second would act on a stale step.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from redis.exceptions import LockError, RedisError

from .config import get_settings
from .flags import get_flags

logger = logging.getLogger(__name__)

LOCK_PREFIX = "summit:sms-lock"
LOCK_TIMEOUT = 30            # seconds a crashed holder keeps the lock
LOCK_WAIT = 10               # seconds to wait for another message to finish

_redis_client = None
_local_locks: dict[str, asyncio.Lock] = {}
_local_holders: dict[str, int] = {}


class UserBusyError(Exception):
    """Another message for this user still holds the Redis lock."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"Lock for user {user_id} is busy")


async def _get_redis():
    global _redis_client
    if _redis_client is None:
        import redis.asyncio as aioredis

        settings = get_settings()
        _redis_client = aioredis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
        )
    return _redis_client


@asynccontextmanager
async def _local_lock(user_id: str) -> AsyncIterator[None]:
    """In-process lock, dropped from the registry once nobody holds or waits on it."""
    lock = _local_locks.get(user_id)
    if lock is None:
        lock = _local_locks[user_id] = asyncio.Lock()
    _local_holders[user_id] = _local_holders.get(user_id, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _local_holders[user_id] -= 1
        if not _local_holders[user_id]:
            del _local_holders[user_id]
            _local_locks.pop(user_id, None)


async def _acquire_redis_lock(user_id: str):
    """
    A held redis Lock, or None when Redis is off or unreachable.
    Raises UserBusyError when the lock is held elsewhere past LOCK_WAIT.
    """
    flags = get_flags()
    if not flags.use_redis or not get_settings().redis_url:
        return None

    try:
        client = await _get_redis()
        lock = client.lock(f"{LOCK_PREFIX}:{user_id}", timeout=LOCK_TIMEOUT, blocking_timeout=LOCK_WAIT)
        acquired = await lock.acquire()
    except RedisError as e:
        logger.warning("Redis lock unavailable (%s), using local lock", e)
        return None

    if not acquired:
        # A local lock would not exclude the holder in another worker
        logger.warning("Timed out waiting for Redis lock for user %s", user_id)
        raise UserBusyError(user_id)
    return lock


@asynccontextmanager
async def user_lock(user_id: Optional[str]) -> AsyncIterator[None]:
    """
    Serialize processing per user. Unknown senders are not locked.
    Raises UserBusyError when another worker holds the Redis lock too long.
    """
    if not user_id:
        yield
        return

    lock = await _acquire_redis_lock(user_id)
    if lock is None:
        async with _local_lock(user_id):
            yield
        return

    try:
        yield
    finally:
        try:
            await lock.release()
        except (LockError, RedisError) as e:
            # Expired under us (LOCK_TIMEOUT) or connection dropped
            logger.warning("Releasing Redis lock for user %s failed: %s", user_id, e)


async def close_redis() -> None:
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
