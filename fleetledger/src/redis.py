from redis import Redis
from typing import Optional
from redis.lock import Lock

from fleetledger.src import exceptions
from fleetledger.src.constants import (
    REDIS_HOST,
    REDIS_PORT,
    REDIS_PASSWORD,
    MUTEX_LOCK_TIMEOUT,
    MUTEX_LOCK_MAX_WAIT_TIME,
)

# Redis client (single connection)
redisClient = Redis(
    host=REDIS_HOST,
    port=REDIS_PORT,
    password=REDIS_PASSWORD,
    decode_responses=True,
)


def lockName(tableName: str, pk: Optional[int] = None) -> str:
    """Key of the mutex guarding a whole table or a single row of it."""
    return f"lock:{tableName}" if pk is None else f"lock:{tableName}:{pk}"


def acquireLock(
    tableName: str,
    pk: Optional[int] = None,
    timeOut: int = MUTEX_LOCK_TIMEOUT,
    blockingTimeOut: int = MUTEX_LOCK_MAX_WAIT_TIME,
) -> Lock:
    """
    Acquire a Redis based mutex before a destructive change of a row,
    ex:- deleting a route or toggling its lock.

    Args:
        tableName (str): Name of the table to lock.
        pk (Optional[int]): Primary key for row level locking.
        timeOut (int): Lock expiration in seconds (auto-released after this).
        blockingTimeOut (int): Maximum time (in seconds) to wait for the lock.

    Raises:
        exceptions.LockAcquireTimeout: If the lock could not be acquired within blockingTimeOut.
    """
    try:
        lock = redisClient.lock(lockName(tableName, pk), timeout=timeOut)
        if lock.acquire(blocking=True, blocking_timeout=blockingTimeOut):
            return lock
        raise exceptions.LockAcquireTimeout()
    except Exception as e:
        exceptions.handle(e)


def releaseLock(lock: Optional[Lock]) -> None:
    """Release a lock taken by `acquireLock`, ignoring a missing or foreign one."""
    if lock and lock.locked() and lock.owned():
        lock.release()
