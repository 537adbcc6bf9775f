"""
Redis-backed distributed lock for billing jobs.

Per-account serialization uses database row locks (see LedgerService);
this lock covers coarse work that must not overlap across workers, such as
a reconciliation run.

Usage:
    from billing.locks import DistributedLock

    with DistributedLock("billing:reconciliation:run", ttl=600, blocking=False):
        run_reconciliation()
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

from django_redis import get_redis_connection

from billing.exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis


class DistributedLock:
    """
    Token-owned Redis lock with TTL.

    The TTL bounds how long a crashed holder can block others. Only the
    holder's token can release or extend the lock.

    Args:
        key: Lock identifier (prefixed with "lock:")
        ttl: Seconds until the lock auto-expires
        blocking: Wait for the lock instead of failing immediately
        timeout: Maximum wait in seconds when blocking
        error_class: LockAcquisitionError subclass raised on failure
    """

    # Compare-and-delete: only the token owner may release
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    end
    return 0
    """

    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    end
    return 0
    """

    POLL_INTERVAL = 0.05

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
        error_class: type[LockAcquisitionError] = LockAcquisitionError,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self.error_class = error_class
        self._token: str | None = None
        self._redis: Redis | None = None

    @property
    def redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Acquire the lock.

        Raises:
            LockAcquisitionError (or error_class): If not acquired
        """
        token = str(uuid.uuid4())
        deadline = time.monotonic() + (self.timeout if self.blocking else 0)

        while True:
            if self.redis.set(self.key, token, nx=True, ex=self.ttl):
                self._token = token
                return True
            if time.monotonic() >= deadline:
                break
            time.sleep(self.POLL_INTERVAL)

        if self.blocking:
            message = f"Could not acquire lock '{self.key}' within {self.timeout}s"
        else:
            message = f"Lock '{self.key}' is already held"
        raise self.error_class(
            message,
            details={"key": self.key, "timeout": self.timeout if self.blocking else 0},
        )

    def release(self) -> bool:
        """Release the lock if still owned. Safe to call twice."""
        if self._token is None:
            return False
        released = self.redis.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(released)

    def extend(self, ttl: int | None = None) -> bool:
        """Reset the remaining TTL (to `ttl` or the original TTL)."""
        if self._token is None:
            return False
        extended = self.redis.eval(
            self.EXTEND_SCRIPT, 1, self.key, self._token, ttl or self.ttl
        )
        return bool(extended)

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        self.release()
        return False


__all__ = ["DistributedLock"]
