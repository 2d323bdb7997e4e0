"""
Exclusive run locks for retention jobs.

One lock per job type ("retention-apply", "retention-actions") keeps two
runs of the same kind from overlapping. The in-memory backend covers a
single API process; the Redis backend covers several API processes and
Celery workers sharing one database.
"""
import logging
import threading
from typing import Dict, Optional

import redis

logger = logging.getLogger(__name__)

APPLY_LOCK_KEY = "retention-apply"
ACTIONS_LOCK_KEY = "retention-actions"


class InMemoryLockManager:
    """Non-blocking named locks inside one process"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    def acquire(self, key: str) -> bool:
        return self._lock_for(key).acquire(blocking=False)

    def release(self, key: str) -> None:
        lock = self._lock_for(key)
        if lock.locked():
            lock.release()

    def extend(self, key: str) -> None:
        """Process-local locks never expire"""
        return None

    def is_locked(self, key: str) -> bool:
        return self._lock_for(key).locked()


class RedisLockManager:
    """
    Named locks backed by redis-py's Lock with a TTL.

    The TTL protects against a worker dying while holding the lock; a live
    run extends it on every progress flush.
    """

    def __init__(self, redis_url: str, ttl_seconds: int = 1800, prefix: str = "docservice:lock:",
                 client: Optional[redis.Redis] = None):
        self.client = client or redis.from_url(
            redis_url,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix
        self._held: Dict[str, redis.lock.Lock] = {}
        self._guard = threading.Lock()

    def acquire(self, key: str) -> bool:
        lock = self.client.lock(
            self.prefix + key,
            timeout=self.ttl_seconds,
            blocking=False,
            thread_local=False,
        )
        if not lock.acquire(blocking=False):
            return False
        with self._guard:
            self._held[key] = lock
        logger.debug(f"Acquired redis lock {key}")
        return True

    def release(self, key: str) -> None:
        with self._guard:
            lock = self._held.pop(key, None)
        if lock is None:
            return
        try:
            lock.release()
        except redis.exceptions.LockError as e:
            # Expired and possibly taken over by another worker
            logger.warning(f"Redis lock {key} was no longer owned on release: {e}")

    def extend(self, key: str) -> None:
        with self._guard:
            lock = self._held.get(key)
        if lock is None:
            return
        try:
            lock.reacquire()
        except redis.exceptions.LockError as e:
            logger.warning(f"Could not extend redis lock {key}: {e}")

    def is_locked(self, key: str) -> bool:
        return bool(self.client.exists(self.prefix + key))


def build_lock_manager(settings):
    """Lock backend selected by settings.retention_lock_backend"""
    if settings.retention_lock_backend == "redis":
        logger.info(f"Using redis retention locks: {settings.redis_url}")
        return RedisLockManager(settings.redis_url, ttl_seconds=settings.retention_lock_ttl_seconds)
    return InMemoryLockManager()
