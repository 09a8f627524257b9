import uuid
from contextlib import contextmanager

import redis
from redis.exceptions import RedisError
from tenacity import retry, retry_if_result, stop_after_delay, wait_fixed

from cartsync.domain.errors import CartLocked, StoreUnavailable
from cartsync.utils.settings import REDIS_URL, USER_LOCK_TTL_SECONDS, USER_LOCK_WAIT_SECONDS
from cartsync.utils.logging import get_logger

logger = get_logger(__name__)

#LUA compare and delete, atomic
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""

#redis runs the script as one uninterruptible operation,
#nobody can slip in between GET and DEL so a lock that already expired
#and was taken by someone else is never deleted by the old owner

#LUA compare and extend
_EXTEND_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('EXPIRE', KEYS[1], ARGV[2])
else
    return 0
end
"""


class LockService:
    """
    -per-user cart lock (clear / checkout / sync are mutually exclusive)
    -run lock for the sync job
    -atomic release via lua
    """

    def __init__(self, url: str | None = None, client: redis.Redis | None = None):
        self.redis = client or redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @staticmethod
    def user_key(user_id: str) -> str:
        return f"cartlock:{user_id}"

    @staticmethod
    def job_key(name: str) -> str:
        return f"{name}:run"

    def acquire(self, key: str, ttl: int) -> str | None:
        token = uuid.uuid4().hex
        try:
            #SET cartlock:42 "<token>" NX EX 30
            ok = self.redis.set(name=key, value=token, nx=True, ex=ttl)
        except RedisError as e:
            raise StoreUnavailable(f"Lock {key} unavailable: {e}") from e
        return token if ok else None

    def release(self, key: str, token: str) -> bool:
        try:
            res = self.redis.eval(_RELEASE_LUA, 1, key, token)
        except RedisError as e:
            # lock expires by itself after ttl
            logger.warning(f"Release of lock {key} failed: {e}")
            return False
        return bool(res)

    def extend(self, key: str, token: str, ttl: int) -> bool:
        try:
            res = self.redis.eval(_EXTEND_LUA, 1, key, token, ttl)
        except RedisError as e:
            logger.warning(f"Extend of lock {key} failed: {e}")
            return False
        return bool(res)

    def _poll(self, key: str, ttl: int, wait: float) -> str | None:
        @retry(
            stop=stop_after_delay(wait),
            wait=wait_fixed(0.05),
            retry=retry_if_result(lambda token: token is None),
            retry_error_callback=lambda state: None,
        )
        def _try():
            return self.acquire(key, ttl)

        return _try()

    @contextmanager
    def user_lock(self, user_id: str, wait: float | None = None, ttl: int = USER_LOCK_TTL_SECONDS):
        """
        Holds the cart lock of one user for the duration of the block.
        Polls until `wait` seconds pass, then raises CartLocked.
        """
        key = self.user_key(user_id)
        wait = USER_LOCK_WAIT_SECONDS if wait is None else wait

        token = self._poll(key, ttl, wait)

        if token is None:
            raise CartLocked(user_id)

        logger.debug(f"Acquired lock {key}")
        try:
            yield token
        finally:
            self.release(key, token)

    def acquire_job_lock(self, name: str, ttl: int) -> str | None:
        key = self.job_key(name)
        logger.info(f"Acquire job lock {key}")
        return self.acquire(key, ttl)

    def release_job_lock(self, name: str, token: str) -> bool:
        key = self.job_key(name)
        logger.info(f"Release job lock {key}")
        return self.release(key, token)

    def extend_job_lock(self, name: str, token: str, ttl: int) -> bool:
        return self.extend(self.job_key(name), token, ttl)
