# chatcart/services/lock_service.py
import hashlib
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

import redis
from redis.exceptions import RedisError

from chatcart.exceptions import ConcurrencyError, InfrastructureError
from chatcart.utils.logging import get_logger
from chatcart.utils.retry import redis_retry

logger = get_logger(__name__)

DEFAULT_LOCK_TIMEOUT = 5.0

#LUA porownaj i usun, atomicity
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""

#redis wykonuje lua atomowo, nie mozna wcisnac sie miedzy GET a DEL
#wiec inny proces nie skasuje locka ktorego nie jest wlascicielem


def cart_lock_key(customer_key: str) -> str:
    digest = hashlib.sha256(customer_key.encode("utf-8")).hexdigest()
    return f"cart:lock:{digest}"


@dataclass(frozen=True)
class LockHandle:
    key: str
    token: str


class LockService:
    """
    -acquire(key, timeout) -> LockHandle albo ConcurrencyError
    -release(handle)
    -hold(key, timeout) jako context manager, release na kazdej sciezce wyjscia
    """

    def acquire(self, key: str, timeout: float = DEFAULT_LOCK_TIMEOUT) -> LockHandle:
        raise NotImplementedError

    def release(self, handle: LockHandle) -> bool:
        raise NotImplementedError

    @contextmanager
    def hold(self, key: str, timeout: float = DEFAULT_LOCK_TIMEOUT) -> Iterator[LockHandle]:
        handle = self.acquire(key, timeout)
        try:
            yield handle
        finally:
            self.release(handle)


class RedisLockService(LockService):
    """Distributed lock: SET NX with a lease, polled until the timeout."""

    def __init__(
        self,
        url: str | None = None,
        client: redis.Redis | None = None,
        lease_seconds: float = 30.0,
        poll_interval: float = 0.05,
    ):
        if client is None:
            client = redis.Redis.from_url(url, decode_responses=True)
        self.redis = client
        self.lease_ms = int(lease_seconds * 1000)
        self.poll_interval = poll_interval

    @redis_retry()
    def _try_set(self, key: str, token: str) -> bool:
        #SET cart:lock:<hash> "<token>" NX PX 30000
        return bool(
            self.redis.set(
                name=key,
                value=token,
                nx=True,  #tylko jesli klucz nie istnieje
                px=self.lease_ms,  #lease, lock wygasa sam jesli proces padnie
            )
        )

    @redis_retry()
    def _delete_if_owner(self, key: str, token: str) -> bool:
        return bool(self.redis.eval(_RELEASE_LUA, 1, key, token))

    def acquire(self, key: str, timeout: float = DEFAULT_LOCK_TIMEOUT) -> LockHandle:
        token = uuid.uuid4().hex
        deadline = time.monotonic() + timeout

        while True:
            try:
                if self._try_set(key, token):
                    logger.debug(f"Acquired lock {key}")
                    return LockHandle(key=key, token=token)
            except RedisError as e:
                raise InfrastructureError(f"Lock backend unavailable: {e}") from e

            if time.monotonic() >= deadline:
                logger.warning(f"Timed out after {timeout}s waiting for lock {key}")
                raise ConcurrencyError(
                    "Another request is updating this cart. Please try again.",
                    lock_key=key,
                    timeout=timeout,
                )
            time.sleep(self.poll_interval)

    def release(self, handle: LockHandle) -> bool:
        try:
            released = self._delete_if_owner(handle.key, handle.token)
        except RedisError as e:
            # lease wygasnie sam, nie przerywamy operacji ktora juz sie udala
            logger.error(f"Failed to release lock {handle.key}: {e}")
            return False

        if not released:
            logger.warning(f"Lock {handle.key} was no longer owned at release (lease expired?)")
        return released


class LocalLockService(LockService):
    """In-process keyed mutex for single-node deployments and tests."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        # holders + waiters per key; the entry goes away at zero
        self._users: dict[str, int] = {}
        self._owners: dict[str, str] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _checkin(self, key: str) -> None:
        # caller holds self._guard
        self._users[key] -= 1
        if self._users[key] == 0:
            del self._users[key]
            del self._locks[key]

    def acquire(self, key: str, timeout: float = DEFAULT_LOCK_TIMEOUT) -> LockHandle:
        lock = self._checkout(key)
        if not lock.acquire(timeout=timeout):
            with self._guard:
                self._checkin(key)
            logger.warning(f"Timed out after {timeout}s waiting for lock {key}")
            raise ConcurrencyError(
                "Another request is updating this cart. Please try again.",
                lock_key=key,
                timeout=timeout,
            )

        token = uuid.uuid4().hex
        with self._guard:
            self._owners[key] = token
        return LockHandle(key=key, token=token)

    def release(self, handle: LockHandle) -> bool:
        with self._guard:
            if self._owners.get(handle.key) != handle.token:
                return False
            del self._owners[handle.key]
            lock = self._locks[handle.key]
            lock.release()
            self._checkin(handle.key)
        return True

    def is_locked(self, key: str) -> bool:
        with self._guard:
            return key in self._owners

    def tracked_keys(self) -> int:
        with self._guard:
            return len(self._locks)
